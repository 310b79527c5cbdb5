from .user import User
from .presence import ActiveSession
from .availability import PractitionerAvailability, DayOfWeek
from .audit_log import AuditLog, AuditAction, AuditStatus

__all__ = [
    "User",
    "ActiveSession",
    "PractitionerAvailability",
    "DayOfWeek",
    "AuditLog",
    "AuditAction",
    "AuditStatus",
]
