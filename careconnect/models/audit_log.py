from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
import enum

from ..core.database import Base

class AuditStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"

class AuditAction(str, enum.Enum):
    SIGNUP = "SIGNUP"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    VERIFY_TOKEN = "VERIFY_TOKEN"
    VIEW_AVAILABILITY = "VIEW_AVAILABILITY"
    UPDATE_AVAILABILITY = "UPDATE_AVAILABILITY"
    DELETE_AVAILABILITY = "DELETE_AVAILABILITY"
    VIEW_PRACTITIONERS = "VIEW_PRACTITIONERS"

class AuditLog(Base):
    """Append-only record of a security relevant action."""

    __tablename__ = "audit_logs"
    
    id = Column(Integer, primary_key=True, index=True)
    
    # Actor; null for anonymous requests and for users deleted since
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    user_role = Column(String(20), nullable=False, default="anonymous")
    
    action = Column(String(50), nullable=False)
    resource = Column(String(255), nullable=False)
    
    # Request information
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    
    status = Column(SQLEnum(AuditStatus), nullable=False)
    details = Column(Text, nullable=True)  # Redacted before storage
    
    timestamp = Column(DateTime, server_default=func.now(), index=True)
    
    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', status='{self.status}')>"
