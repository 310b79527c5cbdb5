"""
Practitioner presence tracking.

A user is "active" while their single ``active_sessions`` row is fresher than
the freshness window. Staleness is computed at read time; there is no sweeper,
so an absent row and a stale row mean the same thing.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import utcnow
from ..core.security import UserRole
from ..models.presence import ActiveSession
from ..models.user import User
from ..schemas.presence import PresenceProfile
from .audit_service import RequestContext
from .broadcaster import PresenceBroadcaster

logger = logging.getLogger(__name__)


class PresenceTracker:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        freshness_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.clock = clock
        if freshness_window is None:
            freshness_window = timedelta(minutes=settings.PRESENCE_FRESHNESS_MINUTES)
        self.freshness_window = freshness_window

    def mark_active(
        self,
        user_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[datetime]:
        """Upsert the user's presence row with the current time.

        Returns the stored last-activity timestamp, or None when the write
        failed. Failures are logged and never raised.
        """
        now = self.clock()
        try:
            try:
                return self._upsert(user_id, now, ip_address, user_agent)
            except IntegrityError:
                # Another request inserted the row first; update it instead
                self.db.rollback()
                return self._upsert(user_id, now, ip_address, user_agent)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error updating active session for user {user_id}")
            return None

    def _upsert(self, user_id, now, ip_address, user_agent) -> datetime:
        record = self.db.query(ActiveSession).filter(
            ActiveSession.user_id == user_id
        ).first()

        if record is None:
            record = ActiveSession(user_id=user_id, last_activity=now)
            self.db.add(record)
        elif record.last_activity is None or record.last_activity < now:
            record.last_activity = now
        # An older write never moves the timestamp backwards

        record.ip_address = ip_address
        record.user_agent = user_agent
        self.db.commit()
        return record.last_activity

    def mark_inactive(self, user_id: int) -> bool:
        """Delete the user's presence row. Returns False when the delete failed."""
        try:
            self.db.query(ActiveSession).filter(
                ActiveSession.user_id == user_id
            ).delete(synchronize_session=False)
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Error removing active session for user {user_id}")
            return False

    def is_active(self, user_id: int) -> bool:
        return user_id in self.list_active([user_id])

    def list_active(self, user_ids: Iterable[int]) -> Dict[int, datetime]:
        """Map each active user among ``user_ids`` to their last activity.

        Users missing from the result are inactive. A storage failure reports
        everyone as inactive.
        """
        user_ids = list(user_ids)
        if not user_ids:
            return {}
        try:
            rows = self._fresh_sessions(user_ids)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Error fetching active sessions, reporting all as inactive")
            return {}
        return {row.user_id: row.last_activity for row in rows}

    def _fresh_sessions(self, user_ids: List[int]) -> List[ActiveSession]:
        cutoff = self.clock() - self.freshness_window
        return self.db.query(ActiveSession).filter(
            ActiveSession.user_id.in_(user_ids),
            ActiveSession.last_activity >= cutoff,
        ).all()


def practitioner_ids(db: Session) -> List[int]:
    """Ids of every practitioner account, for roster and snapshot reads."""
    rows = db.query(User.id).filter(User.role == UserRole.PRACTITIONER).order_by(User.id).all()
    return [row.id for row in rows]


def announce_active(
    tracker: PresenceTracker,
    broadcaster: PresenceBroadcaster,
    user: User,
    context: RequestContext,
    include_profile: bool = False,
) -> Optional[datetime]:
    """Mark ``user`` active and tell every viewer. Nothing is published if the write failed."""
    last_activity = tracker.mark_active(user.id, context.ip_address, context.user_agent)
    if last_activity is None:
        return None

    logger.info(f"Practitioner {user.id} marked as active")
    profile = PresenceProfile.model_validate(user) if include_profile else None
    broadcaster.publish(user.id, True, last_activity, profile)
    return last_activity


def announce_inactive(
    tracker: PresenceTracker,
    broadcaster: PresenceBroadcaster,
    user_id: int,
) -> bool:
    """Remove ``user_id``'s presence and tell every viewer."""
    if not tracker.mark_inactive(user_id):
        return False

    logger.info(f"Practitioner {user_id} marked as inactive")
    broadcaster.publish(user_id, False, None)
    return True
