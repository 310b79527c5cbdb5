import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.security import UserRole
from ..models.audit_log import AuditLog, AuditAction, AuditStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Who is calling and from where, for audit rows and presence records."""
    ip_address: Optional[str] = None
    user_agent: str = "Unknown"
    path: str = ""


EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
NAME_PATTERN = re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b")


def sanitize_details(details: Optional[str], max_length: Optional[int] = None) -> Optional[str]:
    """Strip identifying substrings (emails, "First Last" names) from free text."""
    if details is None:
        return None
    if max_length is None:
        max_length = settings.AUDIT_DETAIL_MAX_LENGTH
    text = EMAIL_PATTERN.sub("[EMAIL_REDACTED]", str(details))
    text = NAME_PATTERN.sub("[NAME_REDACTED]", text)
    return text[:max_length]


class AuditLogger:
    """Fire-and-forget writer for the audit trail.

    A failed write is logged and rolled back; it never reaches the caller.
    Callers commit their own work before auditing.
    """

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: Union[AuditAction, str],
        resource: str,
        status: AuditStatus = AuditStatus.SUCCESS,
        user_id: Optional[int] = None,
        user_role: Union[UserRole, str, None] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[str] = None,
    ) -> None:
        if isinstance(user_role, UserRole):
            user_role = user_role.value
        entry = AuditLog(
            user_id=user_id,
            user_role=user_role or "anonymous",
            action=action.value if isinstance(action, AuditAction) else action,
            resource=resource,
            ip_address=ip_address,
            user_agent=user_agent,
            status=status,
            details=sanitize_details(details),
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error writing audit log for action {entry.action}")

    def log_request(
        self,
        context: RequestContext,
        action: Union[AuditAction, str],
        status: AuditStatus = AuditStatus.SUCCESS,
        user_id: Optional[int] = None,
        user_role: Union[UserRole, str, None] = None,
        details: Optional[str] = None,
        resource: Optional[str] = None,
    ) -> None:
        """``log`` with the request's path, IP and user agent filled in."""
        self.log(
            action,
            resource or context.path,
            status=status,
            user_id=user_id,
            user_role=user_role,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            details=details,
        )
