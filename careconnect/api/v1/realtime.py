"""
Presence WebSocket.

Messages in both directions are JSON envelopes ``{"event": ..., "data": {...}}``.
Clients send ``practitioner:heartbeat``; the server sends a
``practitioner:snapshot`` on connect, ``practitioner:status`` on every presence
change, and ``error`` for rejected messages.
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.database import get_clock, get_session_factory
from ...core.security import TokenPayload, UserRole, verify_token
from ...models.user import User
from ...schemas.presence import (
    HeartbeatMessage, PresenceSnapshot, PresenceStatus, SocketEnvelope
)
from ...services.audit_service import RequestContext
from ...services.broadcaster import PresenceBroadcaster, Subscription, get_broadcaster
from ...services.presence_service import PresenceTracker, announce_active, practitioner_ids

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Realtime"])

HEARTBEAT_EVENT = "practitioner:heartbeat"
SNAPSHOT_EVENT = "practitioner:snapshot"
ERROR_EVENT = "error"


def _error(code: str, message: str) -> Dict[str, Any]:
    return {"event": ERROR_EVENT, "data": {"error": code, "message": message}}


def _token_expired(token_payload: TokenPayload, clock) -> bool:
    """Session tokens outlive the connect check; re-check before acting on a message."""
    if token_payload.exp is None:
        return False
    expires_at = datetime.fromtimestamp(token_payload.exp, tz=timezone.utc).replace(tzinfo=None)
    return clock() >= expires_at


def _snapshot(session_factory: Callable[[], Session], clock) -> Dict[str, Any]:
    """Currently active practitioners, for viewers that just connected."""
    with session_factory() as db:
        try:
            ids = practitioner_ids(db)
        except SQLAlchemyError:
            logger.exception("Error loading practitioners for presence snapshot")
            ids = []
        active = PresenceTracker(db, clock=clock).list_active(ids)

    snapshot = PresenceSnapshot(practitioners=[
        PresenceStatus(user_id=user_id, is_active=True, last_activity=last_activity)
        for user_id, last_activity in active.items()
    ])
    return {
        "event": SNAPSHOT_EVENT,
        "data": snapshot.model_dump(mode="json", by_alias=True, exclude_none=True),
    }


async def _forward(websocket: WebSocket, subscription: Subscription) -> None:
    """Pump broadcaster events to one socket until it goes away."""
    try:
        while True:
            event = await subscription.get()
            await websocket.send_json(event)
    except (WebSocketDisconnect, RuntimeError):
        logger.debug(f"Stopped forwarding to {subscription!r}")


def _handle_heartbeat(
    data: Dict[str, Any],
    user_id: int,
    role: UserRole,
    context: RequestContext,
    session_factory: Callable[[], Session],
    clock,
    broadcaster: PresenceBroadcaster,
) -> Optional[Dict[str, Any]]:
    """Apply a heartbeat. Returns an error event to send back, or None."""
    if role != UserRole.PRACTITIONER:
        return _error("AUTHORIZATION_ERROR", "Access denied. Practitioner only.")
    try:
        heartbeat = HeartbeatMessage.model_validate(data)
    except SchemaValidationError:
        return _error("VALIDATION_ERROR", "userId is required")
    # A connection may only keep its own user alive
    if heartbeat.user_id != user_id:
        return _error("AUTHORIZATION_ERROR", "Heartbeat user does not match connection")

    with session_factory() as db:
        user = db.get(User, user_id)
        if user is None:
            return _error("AUTH_ERROR", "Invalid token")
        tracker = PresenceTracker(db, clock=clock)
        announce_active(tracker, broadcaster, user, context)
    return None


@router.websocket("/ws/presence")
async def presence_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    clock: Callable[[], datetime] = Depends(get_clock),
    broadcaster: PresenceBroadcaster = Depends(get_broadcaster),
):
    """Presence channel; authenticate with ``?token=<session token>``."""
    token_payload = verify_token(token) if token else None
    if not token_payload or not token_payload.sub:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    with session_factory() as db:
        user = db.get(User, token_payload.sub)
        user_id, role = (user.id, user.role) if user else (None, None)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    context = RequestContext(
        ip_address=websocket.client.host if websocket.client else None,
        user_agent=websocket.headers.get("user-agent") or "Unknown",
        path=websocket.url.path,
    )

    # Subscribe before the snapshot so no change falls between the two
    subscription = broadcaster.subscribe(user_id)
    forwarder = None
    logger.info(f"Presence socket opened for user {user_id}")
    try:
        await websocket.send_json(_snapshot(session_factory, clock))
        forwarder = asyncio.create_task(_forward(websocket, subscription))

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))

            raw = message.get("text")
            if raw is None:
                await websocket.send_json(_error("VALIDATION_ERROR", "Binary messages are not supported"))
                continue
            try:
                envelope = SocketEnvelope.model_validate(json.loads(raw))
            except (ValueError, SchemaValidationError):
                await websocket.send_json(_error("VALIDATION_ERROR", "Malformed message"))
                continue

            if _token_expired(token_payload, clock):
                await websocket.send_json(_error("AUTH_ERROR", "Token expired"))
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                logger.info(f"Presence socket for user {user_id} closed on token expiry")
                return

            if envelope.event == HEARTBEAT_EVENT:
                reply = _handle_heartbeat(
                    envelope.data, user_id, role, context,
                    session_factory, clock, broadcaster,
                )
            else:
                reply = _error("VALIDATION_ERROR", f"Unknown event: {envelope.event}")

            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info(f"Presence socket closed for user {user_id}")
    finally:
        broadcaster.unsubscribe(subscription)
        if forwarder is not None:
            forwarder.cancel()
