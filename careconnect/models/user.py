from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ..core.database import Base
from ..core.security import UserRole

class User(Base):
    __tablename__ = "users"
    
    id = Column(Integer, primary_key=True, index=True)
    # Stored exactly as submitted; lookups are case-sensitive
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    # No role-change operation exists; the role is fixed at signup
    role = Column(SQLEnum(UserRole), nullable=False, index=True)
    
    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    
    # Relationships
    active_session = relationship(
        "ActiveSession", back_populates="user", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )
    availability = relationship(
        "PractitionerAvailability", back_populates="practitioner",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
    
    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
