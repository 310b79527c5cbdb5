from datetime import datetime
from typing import Callable, List, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import get_db, get_redis, get_clock
from ..core.errors import AuthError, AuthorizationError
from ..core.rate_limit import RateLimiter
from ..core.security import security, verify_token, UserRole, TokenPayload
from ..models.user import User
from ..services.audit_service import AuditLogger, RequestContext
from ..services.availability_service import AvailabilityCalendar
from ..services.presence_service import PresenceTracker

def get_client_ip(request: Request) -> Optional[str]:
    """Client address, honouring the first hop of X-Forwarded-For behind a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None

async def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent") or "Unknown",
        path=request.url.path,
    )

async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """Raw bearer token from the Authorization header, if any."""
    if credentials is None:
        return None
    return credentials.credentials

async def get_current_user_token(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    if not token:
        raise AuthError("Access token required")

    token_payload = verify_token(token)
    if not token_payload or not token_payload.sub:
        raise AuthError("Invalid or expired token")

    # Picked up by the request audit
    request.state.user_id = token_payload.sub
    request.state.user_role = token_payload.role
    return token_payload

async def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    user = db.query(User).filter(User.id == token_payload.sub).first()
    if not user:
        raise AuthError("Invalid or expired token")

    return user

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_checker

async def get_practitioner_user(
    current_user: User = Depends(require_role([UserRole.PRACTITIONER]))
) -> User:
    """Require practitioner role."""
    return current_user

# Service dependencies
def get_presence_tracker(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> PresenceTracker:
    return PresenceTracker(db, clock=clock)

def get_availability_calendar(
    db: Session = Depends(get_db),
    tracker: PresenceTracker = Depends(get_presence_tracker),
) -> AvailabilityCalendar:
    return AvailabilityCalendar(db, presence=tracker)

def get_audit_logger(db: Session = Depends(get_db)) -> AuditLogger:
    return AuditLogger(db)

# Rate limiting dependencies
def get_api_rate_limiter(redis_client=Depends(get_redis)) -> RateLimiter:
    """Every API request per client IP."""
    return RateLimiter(
        redis_client,
        max_attempts=settings.API_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.API_RATE_LIMIT_WINDOW_SECONDS,
        prefix="rate_limit:api",
    )

async def enforce_api_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_api_rate_limiter),
) -> None:
    limiter.consume(get_client_ip(request))

def get_auth_rate_limiter(redis_client=Depends(get_redis)) -> RateLimiter:
    """Failed signup/login attempts per client IP."""
    return RateLimiter(
        redis_client,
        max_attempts=settings.AUTH_RATE_LIMIT_MAX_ATTEMPTS,
        window_seconds=settings.AUTH_RATE_LIMIT_WINDOW_SECONDS,
        prefix="rate_limit:auth",
    )
