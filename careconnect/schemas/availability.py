"""Availability and roster schemas."""
from typing import List, Optional

from . import CamelModel, UTCDateTime


class AvailabilityCreate(CamelModel):
    """Raw slot input; day and time formats are checked by the calendar service."""
    day_of_week: str
    start_time: str
    end_time: str


class AvailabilityResponse(CamelModel):
    id: int
    practitioner_id: int
    day_of_week: str
    start_time: str
    end_time: str


class AvailabilityListResponse(CamelModel):
    availability: List[AvailabilityResponse]


class AvailabilityUpsertResponse(CamelModel):
    message: str
    availability: AvailabilityResponse


class PractitionerRosterEntry(CamelModel):
    id: int
    first_name: str
    last_name: str
    name: str
    email: str
    availability: List[AvailabilityResponse] = []
    is_active: bool = False
    last_activity: Optional[UTCDateTime] = None


class PractitionerRosterResponse(CamelModel):
    practitioners: List[PractitionerRosterEntry]
