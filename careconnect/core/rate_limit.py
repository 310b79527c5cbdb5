import logging

import redis

from .errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window failure counter kept in Redis.

    Only failed attempts are recorded, so a user who signs in successfully is
    never locked out by their own traffic.
    """

    def __init__(self, client, max_attempts: int, window_seconds: int, prefix: str = "rate_limit"):
        self.client = client
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.prefix = prefix

    def _key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    def check(self, identifier: str) -> None:
        """Raise RateLimitError once the window's failure budget is spent."""
        key = self._key(identifier)
        try:
            attempts = self.client.get(key)
            if attempts is None or int(attempts) < self.max_attempts:
                return
            retry_after = self.client.ttl(key)
        except redis.RedisError as exc:
            logger.warning(f"Rate limit check skipped, Redis unavailable: {exc}")
            return

        if retry_after is None or retry_after < 0:
            retry_after = self.window_seconds
        raise RateLimitError(
            retry_after,
            "Too many authentication attempts. Please wait before trying again.",
        )

    def consume(self, identifier: str) -> None:
        """Count this request and raise RateLimitError once the budget is exceeded."""
        key = self._key(identifier)
        try:
            attempts = self.client.incr(key)
            if attempts == 1:
                self.client.expire(key, self.window_seconds)
            if attempts <= self.max_attempts:
                return
            retry_after = self.client.ttl(key)
        except redis.RedisError as exc:
            logger.warning(f"Request limit skipped, Redis unavailable: {exc}")
            return

        if retry_after is None or retry_after < 0:
            retry_after = self.window_seconds
        raise RateLimitError(
            retry_after,
            "Too many requests from this IP, please try again later.",
        )

    def hit(self, identifier: str) -> None:
        """Record one failed attempt."""
        key = self._key(identifier)
        try:
            attempts = self.client.incr(key)
            if attempts == 1:
                self.client.expire(key, self.window_seconds)
        except redis.RedisError as exc:
            logger.warning(f"Failed attempt not recorded, Redis unavailable: {exc}")
