import logging
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import AuthError, ConflictError
from ..core.security import (
    verify_password, get_password_hash, create_access_token,
    verify_token, pwd_context, TokenPayload
)
from ..models.audit_log import AuditAction, AuditStatus
from ..models.user import User
from ..schemas.auth import UserLogin, UserSignup
from .audit_service import AuditLogger, RequestContext

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"

class AuthService:
    def __init__(self, db: Session, context: Optional[RequestContext] = None):
        self.db = db
        self.context = context or RequestContext()
        self.audit = AuditLogger(db)

    def _audit(self, action: AuditAction, status: AuditStatus, details: str,
               user_id: Optional[int] = None, user_role=None) -> None:
        self.audit.log_request(
            self.context, action, status=status,
            user_id=user_id, user_role=user_role, details=details,
        )

    def signup(self, user_data: UserSignup) -> Tuple[User, str]:
        """Register a new user and issue their first token."""
        # Check if user already exists
        existing_user = self.db.query(User).filter(
            User.email == user_data.email
        ).first()

        if existing_user:
            self._audit(AuditAction.SIGNUP, AuditStatus.FAILURE, "Email already exists")
            raise ConflictError("User with this email already exists")

        new_user = User(
            email=user_data.email,
            password_hash=get_password_hash(user_data.password),
            first_name=user_data.first_name,
            last_name=user_data.last_name,
            role=user_data.role,
        )

        self.db.add(new_user)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent signup for the same email
            self.db.rollback()
            self._audit(AuditAction.SIGNUP, AuditStatus.FAILURE, "Email already exists")
            raise ConflictError("User with this email already exists")
        self.db.refresh(new_user)

        token = create_access_token(new_user.id, new_user.email, new_user.role)

        self._audit(
            AuditAction.SIGNUP, AuditStatus.SUCCESS, "User created",
            user_id=new_user.id, user_role=new_user.role,
        )
        return new_user, token

    def login(self, login_data: UserLogin) -> Tuple[User, str]:
        """Check credentials and issue a token.

        Unknown email and wrong password produce the same error.
        """
        user = self.db.query(User).filter(
            User.email == login_data.email
        ).first()

        if not user:
            # Spend the same time as a real check so response timing does not reveal the email
            pwd_context.dummy_verify()
            self._audit(AuditAction.LOGIN, AuditStatus.FAILURE, "Invalid credentials")
            raise AuthError(INVALID_CREDENTIALS)

        if not verify_password(login_data.password, user.password_hash):
            self._audit(
                AuditAction.LOGIN, AuditStatus.FAILURE, "Invalid password",
                user_id=user.id, user_role=user.role,
            )
            raise AuthError(INVALID_CREDENTIALS)

        token = create_access_token(user.id, user.email, user.role)

        self._audit(
            AuditAction.LOGIN, AuditStatus.SUCCESS, "Login successful",
            user_id=user.id, user_role=user.role,
        )
        return user, token

    def logout(self, token: Optional[str]) -> TokenPayload:
        """Check the token and record the logout. Presence cleanup is the caller's concern."""
        if not token:
            self._audit(AuditAction.LOGOUT, AuditStatus.FAILURE, "No token provided")
            raise AuthError("Access token required")

        token_payload = verify_token(token)
        if not token_payload or not token_payload.sub:
            self._audit(AuditAction.LOGOUT, AuditStatus.FAILURE, "Invalid or expired token")
            raise AuthError("Invalid or expired token")

        self._audit(
            AuditAction.LOGOUT, AuditStatus.SUCCESS, "Logout successful",
            user_id=token_payload.sub, user_role=token_payload.role,
        )
        return token_payload

    def verify(self, token: Optional[str]) -> User:
        """Resolve a bearer token to its user, re-reading the user row."""
        if not token:
            self._audit(AuditAction.VERIFY_TOKEN, AuditStatus.FAILURE, "No token provided")
            raise AuthError("No token provided")

        token_payload = verify_token(token)
        if not token_payload or not token_payload.sub:
            self._audit(AuditAction.VERIFY_TOKEN, AuditStatus.FAILURE, "Invalid or expired token")
            raise AuthError("Invalid token")

        user = self.db.query(User).filter(User.id == token_payload.sub).first()
        if not user:
            self._audit(
                AuditAction.VERIFY_TOKEN, AuditStatus.FAILURE, "User not found",
                user_role=token_payload.role,
            )
            raise AuthError("Invalid token")

        self._audit(
            AuditAction.VERIFY_TOKEN, AuditStatus.SUCCESS, "Token verified",
            user_id=user.id, user_role=user.role,
        )
        return user
