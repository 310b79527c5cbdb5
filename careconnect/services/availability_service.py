import logging
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.security import UserRole
from ..models.availability import DAY_ORDER, DayOfWeek, PractitionerAvailability
from ..models.user import User
from .presence_service import PresenceTracker

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([0-1][0-9]|2[0-3]):[0-5][0-9]$")

_day_order = case(DAY_ORDER, value=PractitionerAvailability.day_of_week)


def to_minutes(value: str) -> int:
    """Minutes since midnight for an "HH:MM" string."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def validate_slot(day_of_week, start_time, end_time) -> Tuple[DayOfWeek, str, str]:
    """Check a slot before it touches storage. Raises ValidationError."""
    try:
        day = DayOfWeek(day_of_week)
    except ValueError:
        raise ValidationError("Invalid day of week", field="dayOfWeek") from None

    for field, value in (("startTime", start_time), ("endTime", end_time)):
        if not value:
            raise ValidationError(f"{field} is required", field=field)
        if not isinstance(value, str) or not TIME_PATTERN.match(value):
            raise ValidationError(
                f"Invalid {field} format. Use HH:MM (24-hour format)", field=field
            )

    if to_minutes(end_time) <= to_minutes(start_time):
        raise ValidationError("End time must be after start time", field="endTime")

    return day, start_time, end_time


class AvailabilityCalendar:
    """Weekly recurring availability, one slot per practitioner per day."""

    def __init__(self, db: Session, presence: Optional[PresenceTracker] = None):
        self.db = db
        self.presence = presence

    def upsert(
        self, practitioner_id: int, day_of_week: str, start_time: str, end_time: str
    ) -> PractitionerAvailability:
        """Create the slot for this day or overwrite the existing one."""
        day, start_time, end_time = validate_slot(day_of_week, start_time, end_time)

        slot = self._get_slot(practitioner_id, day)
        if slot is None:
            slot = self._insert_slot(practitioner_id, day, start_time, end_time)
            if slot is not None:
                return slot
            # Lost an insert race: the winner's row now exists, overwrite it
            slot = self._get_slot(practitioner_id, day)
            if slot is None:
                raise ConflictError(
                    "Availability already exists for this day. Please update instead."
                )

        slot.start_time = start_time
        slot.end_time = end_time
        self.db.commit()
        self.db.refresh(slot)
        return slot

    def _get_slot(self, practitioner_id: int, day: DayOfWeek) -> Optional[PractitionerAvailability]:
        return self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id == practitioner_id,
            PractitionerAvailability.day_of_week == day.value,
        ).first()

    def _insert_slot(self, practitioner_id, day, start_time, end_time) -> Optional[PractitionerAvailability]:
        slot = PractitionerAvailability(
            practitioner_id=practitioner_id,
            day_of_week=day.value,
            start_time=start_time,
            end_time=end_time,
        )
        self.db.add(slot)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Concurrent insert for practitioner {practitioner_id} on {day.value}")
            return None
        self.db.refresh(slot)
        return slot

    def list_slots(self, practitioner_id: int) -> List[PractitionerAvailability]:
        """All of a practitioner's slots, Monday first."""
        return self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id == practitioner_id
        ).order_by(_day_order).all()

    def delete_slot(self, slot_id: int, practitioner_id: int) -> None:
        """Delete a slot owned by ``practitioner_id``.

        A missing slot and someone else's slot both raise NotFoundError.
        """
        deleted = self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.id == slot_id,
            PractitionerAvailability.practitioner_id == practitioner_id,
        ).delete(synchronize_session=False)
        self.db.commit()

        if not deleted:
            raise NotFoundError("Availability not found")

    def list_all_with_availability(
        self, practitioner_ids: Optional[Iterable[int]] = None
    ) -> Dict[int, dict]:
        """Roster read: identity, slots and activity for each practitioner.

        With no ids every practitioner is returned. Entries keep the order of
        practitioner ids.
        """
        query = self.db.query(User).filter(User.role == UserRole.PRACTITIONER)
        if practitioner_ids is not None:
            practitioner_ids = list(practitioner_ids)
            if not practitioner_ids:
                return OrderedDict()
            query = query.filter(User.id.in_(practitioner_ids))
        practitioners = query.order_by(User.id).all()
        if not practitioners:
            return OrderedDict()

        ids = [practitioner.id for practitioner in practitioners]

        slots_by_practitioner: Dict[int, List[PractitionerAvailability]] = {}
        slots = self.db.query(PractitionerAvailability).filter(
            PractitionerAvailability.practitioner_id.in_(ids)
        ).order_by(PractitionerAvailability.practitioner_id, _day_order).all()
        for slot in slots:
            slots_by_practitioner.setdefault(slot.practitioner_id, []).append(slot)

        active = self._active_map(ids)

        roster = OrderedDict()
        for practitioner in practitioners:
            last_activity = active.get(practitioner.id)
            roster[practitioner.id] = {
                "id": practitioner.id,
                "first_name": practitioner.first_name,
                "last_name": practitioner.last_name,
                "name": practitioner.full_name,
                "email": practitioner.email,
                "availability": slots_by_practitioner.get(practitioner.id, []),
                "is_active": last_activity is not None,
                "last_activity": last_activity,
            }
        return roster

    def _active_map(self, ids: List[int]) -> dict:
        if self.presence is None:
            return {}
        try:
            return self.presence.list_active(ids)
        except SQLAlchemyError:
            logger.exception("Presence lookup failed, roster shows everyone inactive")
            return {}
