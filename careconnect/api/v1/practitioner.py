from fastapi import APIRouter, Depends

from ...api.deps import (
    get_audit_logger, get_availability_calendar, get_current_user,
    get_practitioner_user, get_presence_tracker, get_request_context
)
from ...core.errors import AppError
from ...models.audit_log import AuditAction, AuditStatus
from ...models.user import User
from ...schemas.auth import MessageResponse
from ...schemas.availability import (
    AvailabilityCreate, AvailabilityListResponse, AvailabilityResponse,
    AvailabilityUpsertResponse, PractitionerRosterEntry, PractitionerRosterResponse
)
from ...schemas.presence import HeartbeatResponse
from ...services.audit_service import AuditLogger, RequestContext
from ...services.availability_service import AvailabilityCalendar
from ...services.broadcaster import PresenceBroadcaster, get_broadcaster
from ...services.presence_service import PresenceTracker, announce_active

router = APIRouter(prefix="/practitioner", tags=["Practitioners"])

@router.get("/availability", response_model=AvailabilityListResponse)
async def get_own_availability(
    current_user: User = Depends(get_practitioner_user),
    calendar: AvailabilityCalendar = Depends(get_availability_calendar),
    audit: AuditLogger = Depends(get_audit_logger),
    context: RequestContext = Depends(get_request_context),
):
    """List the practitioner's weekly availability, Monday first."""
    user_id, role = current_user.id, current_user.role
    slots = [AvailabilityResponse.model_validate(slot) for slot in calendar.list_slots(user_id)]

    audit.log_request(
        context, AuditAction.VIEW_AVAILABILITY,
        user_id=user_id, user_role=role,
        details="Viewed own availability",
    )
    return AvailabilityListResponse(availability=slots)

@router.post("/availability", response_model=AvailabilityUpsertResponse)
async def set_availability(
    slot_data: AvailabilityCreate,
    current_user: User = Depends(get_practitioner_user),
    calendar: AvailabilityCalendar = Depends(get_availability_calendar),
    audit: AuditLogger = Depends(get_audit_logger),
    context: RequestContext = Depends(get_request_context),
):
    """Set or replace the availability for one day of the week."""
    # Read before the upsert; a failed commit expires the instance
    user_id, role = current_user.id, current_user.role
    try:
        slot = calendar.upsert(
            user_id,
            slot_data.day_of_week,
            slot_data.start_time,
            slot_data.end_time,
        )
    except AppError as exc:
        audit.log_request(
            context, AuditAction.UPDATE_AVAILABILITY, status=AuditStatus.FAILURE,
            user_id=user_id, user_role=role, details=exc.detail,
        )
        raise

    saved = AvailabilityResponse.model_validate(slot)
    audit.log_request(
        context, AuditAction.UPDATE_AVAILABILITY,
        user_id=user_id, user_role=role,
        details=f"Saved availability for {saved.day_of_week}",
    )
    return AvailabilityUpsertResponse(
        message="Availability saved successfully",
        availability=saved,
    )

@router.delete("/availability/{availability_id}", response_model=MessageResponse)
async def delete_availability(
    availability_id: int,
    current_user: User = Depends(get_practitioner_user),
    calendar: AvailabilityCalendar = Depends(get_availability_calendar),
    audit: AuditLogger = Depends(get_audit_logger),
    context: RequestContext = Depends(get_request_context),
):
    """Delete one of the practitioner's own slots."""
    user_id, role = current_user.id, current_user.role
    try:
        calendar.delete_slot(availability_id, user_id)
    except AppError as exc:
        audit.log_request(
            context, AuditAction.DELETE_AVAILABILITY, status=AuditStatus.FAILURE,
            user_id=user_id, user_role=role, details=exc.detail,
        )
        raise

    audit.log_request(
        context, AuditAction.DELETE_AVAILABILITY,
        user_id=user_id, user_role=role, details="Availability deleted",
    )
    return MessageResponse(message="Availability deleted successfully")

@router.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    current_user: User = Depends(get_practitioner_user),
    tracker: PresenceTracker = Depends(get_presence_tracker),
    broadcaster: PresenceBroadcaster = Depends(get_broadcaster),
    context: RequestContext = Depends(get_request_context),
):
    """HTTP fallback for the WebSocket heartbeat."""
    last_activity = announce_active(tracker, broadcaster, current_user, context)
    return HeartbeatResponse(message="Heartbeat updated", last_activity=last_activity)

@router.get("/all", response_model=PractitionerRosterResponse)
async def list_practitioners(
    current_user: User = Depends(get_current_user),
    calendar: AvailabilityCalendar = Depends(get_availability_calendar),
    audit: AuditLogger = Depends(get_audit_logger),
    context: RequestContext = Depends(get_request_context),
):
    """Every practitioner with their availability and active status."""
    user_id, role = current_user.id, current_user.role
    roster = calendar.list_all_with_availability()

    # Copy out of the ORM rows before the audit commit expires them
    practitioners = []
    for entry in roster.values():
        slots = [AvailabilityResponse.model_validate(slot) for slot in entry["availability"]]
        practitioners.append(PractitionerRosterEntry(**{**entry, "availability": slots}))

    audit.log_request(
        context, AuditAction.VIEW_PRACTITIONERS,
        user_id=user_id, user_role=role,
        details=f"Viewed {len(practitioners)} practitioners",
    )
    return PractitionerRosterResponse(practitioners=practitioners)
