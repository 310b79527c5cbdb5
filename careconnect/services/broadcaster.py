"""
In-process publish/subscribe channel for presence changes.

Subscribers hold a bounded queue. ``publish`` never blocks and never fails:
an event is delivered to the subscribers connected at publish time, in publish
order, and is dropped for any subscriber whose queue is full. Nothing is kept
for subscribers that connect later.
"""
import asyncio
import itertools
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.config import settings
from ..schemas.presence import PresenceProfile, PresenceStatus

logger = logging.getLogger(__name__)

STATUS_EVENT = "practitioner:status"


class Subscription:
    _ids = itertools.count(1)

    def __init__(self, user_id: Optional[int] = None, max_size: int = 100):
        self.id = next(self._ids)
        self.user_id = user_id
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue(maxsize=max_size)
        self.dropped = 0

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()

    def pending(self) -> List[Dict[str, Any]]:
        """Drain and return everything queued so far."""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    def __repr__(self):
        return f"<Subscription(id={self.id}, user_id={self.user_id})>"


class PresenceBroadcaster:
    def __init__(self, max_queue_size: Optional[int] = None):
        if max_queue_size is None:
            max_queue_size = settings.PRESENCE_QUEUE_SIZE
        self.max_queue_size = max_queue_size
        self._subscriptions: Dict[int, Subscription] = {}
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, user_id: Optional[int] = None) -> Subscription:
        subscription = Subscription(user_id=user_id, max_size=self.max_queue_size)
        self._subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)

    def publish(
        self,
        user_id: int,
        is_active: bool,
        last_activity: Optional[datetime] = None,
        profile: Optional[PresenceProfile] = None,
    ) -> int:
        """Fan a status event out to current subscribers. Returns how many got it."""
        status = PresenceStatus(
            user_id=user_id,
            is_active=is_active,
            last_activity=last_activity,
            practitioner=profile,
        )
        data = status.model_dump(mode="json", by_alias=True)
        if profile is None:
            data.pop("practitioner")
        event = {"event": STATUS_EVENT, "data": data}
        self.published += 1

        delivered = 0
        # Copy so a subscriber leaving mid-publish does not break iteration
        for subscription in list(self._subscriptions.values()):
            try:
                subscription.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning(f"Dropping presence event for slow {subscription!r}")
        return delivered


# Process-wide channel
broadcaster = PresenceBroadcaster()


def get_broadcaster() -> PresenceBroadcaster:
    """Get the presence broadcaster."""
    return broadcaster
