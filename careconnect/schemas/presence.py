"""Presence event schemas shared by the HTTP and WebSocket surfaces."""
from typing import Any, Dict, List, Optional

from pydantic import Field

from . import CamelModel, UTCDateTime


class PresenceProfile(CamelModel):
    id: int
    first_name: str
    last_name: str
    email: str


class PresenceStatus(CamelModel):
    """Payload of a ``practitioner:status`` event."""
    user_id: int
    is_active: bool
    last_activity: Optional[UTCDateTime] = None
    practitioner: Optional[PresenceProfile] = None


class PresenceSnapshot(CamelModel):
    practitioners: List[PresenceStatus]


class HeartbeatMessage(CamelModel):
    user_id: int


class HeartbeatResponse(CamelModel):
    message: str
    last_activity: Optional[UTCDateTime] = None


class SocketEnvelope(CamelModel):
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)
