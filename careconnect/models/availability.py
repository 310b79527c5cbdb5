from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, CheckConstraint, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class DayOfWeek(str, enum.Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

# Canonical display order, Monday first
DAY_ORDER = {day.value: index for index, day in enumerate(DayOfWeek, start=1)}

_DAY_NAMES = ", ".join(f"'{day.value}'" for day in DayOfWeek)

class PractitionerAvailability(Base):
    __tablename__ = "practitioner_availability"
    __table_args__ = (
        UniqueConstraint("practitioner_id", "day_of_week", name="uq_availability_practitioner_day"),
        CheckConstraint(f"day_of_week IN ({_DAY_NAMES})", name="ck_availability_day_of_week"),
    )
    
    id = Column(Integer, primary_key=True, index=True)
    practitioner_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    day_of_week = Column(String(9), nullable=False)
    # "HH:MM", 24-hour clock
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    
    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    
    practitioner = relationship("User", back_populates="availability")
    
    def __repr__(self):
        return (
            f"<PractitionerAvailability(id={self.id}, practitioner_id={self.practitioner_id}, "
            f"day='{self.day_of_week}', {self.start_time}-{self.end_time})>"
        )
