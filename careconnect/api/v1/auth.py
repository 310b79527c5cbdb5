from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.errors import AppError
from ...core.rate_limit import RateLimiter
from ...core.security import UserRole
from ...api.deps import (
    get_auth_rate_limiter, get_bearer_token,
    get_presence_tracker, get_request_context
)
from ...services.audit_service import RequestContext
from ...services.auth_service import AuthService
from ...services.broadcaster import PresenceBroadcaster, get_broadcaster
from ...services.presence_service import (
    PresenceTracker, announce_active, announce_inactive
)
from ...schemas.auth import (
    UserSignup, UserLogin, UserResponse, AuthResponse, VerifyResponse,
    MessageResponse
)

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user_data: UserSignup,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
    limiter: RateLimiter = Depends(get_auth_rate_limiter),
):
    """Register a new user and return a session token."""
    limiter.check(context.ip_address)

    auth_service = AuthService(db, context)
    try:
        user, token = auth_service.signup(user_data)
    except AppError:
        limiter.hit(context.ip_address)
        raise

    return AuthResponse(
        message="User created successfully",
        token=token,
        user=UserResponse.model_validate(user),
    )

@router.post("/login", response_model=AuthResponse)
async def login(
    login_data: UserLogin,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
    limiter: RateLimiter = Depends(get_auth_rate_limiter),
    tracker: PresenceTracker = Depends(get_presence_tracker),
    broadcaster: PresenceBroadcaster = Depends(get_broadcaster),
):
    """Authenticate user and return a session token."""
    limiter.check(context.ip_address)

    auth_service = AuthService(db, context)
    try:
        user, token = auth_service.login(login_data)
    except AppError:
        limiter.hit(context.ip_address)
        raise

    if user.role == UserRole.PRACTITIONER:
        # Best effort: a presence failure never fails the login
        announce_active(tracker, broadcaster, user, context, include_profile=True)

    return AuthResponse(
        message="Login successful",
        token=token,
        user=UserResponse.model_validate(user),
    )

@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
    tracker: PresenceTracker = Depends(get_presence_tracker),
    broadcaster: PresenceBroadcaster = Depends(get_broadcaster),
):
    """Log out; practitioners are marked inactive."""
    token_payload = AuthService(db, context).logout(token)
    request.state.user_id = token_payload.sub
    request.state.user_role = token_payload.role

    if token_payload.role == UserRole.PRACTITIONER:
        announce_inactive(tracker, broadcaster, token_payload.sub)

    return MessageResponse(message="Logout successful")

@router.get("/verify", response_model=VerifyResponse)
async def verify(
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    """Verify if token is valid and return its user."""
    user = AuthService(db, context).verify(token)
    return VerifyResponse(valid=True, user=UserResponse.model_validate(user))
