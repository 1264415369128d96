import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, update
from sqlalchemy.orm import Session as DBSession

from app.core.config import settings
from app.core.errors import AccessDenied, NotFound, ValidationFailure
from app.models.interaction_log import InteractionLog
from app.models.session import Session, SessionStatus

logger = logging.getLogger(__name__)


def as_utc(dt: datetime | None) -> datetime | None:
    """Some drivers hand back naive datetimes; stored values are always UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class SessionService:
    def __init__(self, db: DBSession):
        self.db = db

    def get_session(self, session_id: str) -> Session | None:
        return self.db.query(Session).filter(Session.id == session_id).one_or_none()

    def get_owned_session(self, session_id: str, user_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise NotFound("session not found", code="SESSION_NOT_FOUND")
        if session.user_id != user_id:
            raise AccessDenied("session belongs to another user", code="SESSION_ACCESS_DENIED")
        return session

    def is_live(self, session: Session, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return bool(session.is_active) and as_utc(session.expires_at) > now

    def get_active_for(self, user_id: str, category: str, mode: str) -> Session | None:
        """Newest live session for (user, category, mode); stale ones are expired on the way."""
        now = datetime.now(timezone.utc)
        candidates = (
            self.db.query(Session)
            .filter(
                Session.user_id == user_id,
                Session.category == category,
                Session.mode == mode,
                Session.is_active.is_(True),
            )
            .order_by(Session.created_at.desc())
            .all()
        )
        for session in candidates:
            if self.is_live(session, now):
                return session
            self._close(session, SessionStatus.EXPIRED)
        return None

    def consume_time(self, session: Session, seconds: int) -> Session:
        """
        Decrement remaining_seconds (floored at 0) with a single guarded UPDATE.
        The first consumption moves created -> active; reaching 0 exhausts the session.
        """
        if seconds <= 0:
            raise ValidationFailure("seconds must be positive", code="INVALID_SECONDS")
        if not self.is_live(session):
            raise ValidationFailure("session is not active", code="SESSION_EXPIRED")
        remaining_after = case(
            (Session.remaining_seconds > seconds, Session.remaining_seconds - seconds),
            else_=0,
        )
        result = self.db.execute(
            update(Session)
            .where(Session.id == session.id, Session.is_active.is_(True))
            .values(
                remaining_seconds=remaining_after,
                status=case(
                    (Session.remaining_seconds > seconds, SessionStatus.ACTIVE),
                    else_=SessionStatus.EXHAUSTED,
                ),
                is_active=case((Session.remaining_seconds > seconds, True), else_=False),
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        self.db.refresh(session)
        if result.rowcount == 0:
            raise ValidationFailure("session is not active", code="SESSION_EXPIRED")
        if not session.is_active:
            logger.info("session_exhausted", extra={"session_id": session.id, "user_id": session.user_id})
        return session

    def add_time(self, session: Session, seconds: int) -> Session:
        """Add budget under a row lock; expiry never moves earlier."""
        if seconds <= 0:
            raise ValidationFailure("seconds must be positive", code="INVALID_SECONDS")
        locked = (
            self.db.query(Session)
            .filter(Session.id == session.id)
            .with_for_update()
            .one()
        )
        now = datetime.now(timezone.utc)
        locked.remaining_seconds = (locked.remaining_seconds or 0) + seconds
        new_expiry = now + timedelta(seconds=locked.remaining_seconds)
        current_expiry = as_utc(locked.expires_at)
        locked.expires_at = max(current_expiry, new_expiry) if current_expiry else new_expiry
        self.db.add(locked)
        self.db.flush()
        logger.info(
            "session_time_added",
            extra={"session_id": locked.id, "user_id": locked.user_id, "seconds": seconds},
        )
        return locked

    def needs_payment_prompt(self, session: Session) -> bool:
        return session.remaining_seconds <= settings.payment_prompt_threshold_seconds

    def _close(self, session: Session, status: str) -> None:
        session.is_active = False
        session.status = status
        self.db.add(session)
        self.db.flush()

    def cancel(self, session: Session) -> Session:
        """Deactivate; rows are never deleted so results stay queryable."""
        if session.status not in SessionStatus.TERMINAL:
            self._close(session, SessionStatus.CANCELLED)
        elif session.is_active:
            session.is_active = False
            self.db.add(session)
            self.db.flush()
        return session

    def expire_stale(self, now: datetime | None = None) -> int:
        """Close every still-active session whose expiry has passed. Returns the count."""
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(Session)
            .where(Session.is_active.is_(True), Session.expires_at <= now)
            .values(is_active=False, status=SessionStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        return result.rowcount or 0

    def record_interaction(self, session: Session, role: str, content: str) -> InteractionLog:
        entry = InteractionLog(session_id=session.id, user_id=session.user_id, role=role, content=content)
        self.db.add(entry)
        self.db.flush()
        return entry

    def recent_interactions(self, session_id: str, limit: int | None = None) -> list[InteractionLog]:
        limit = limit or settings.interaction_history_limit
        rows = (
            self.db.query(InteractionLog)
            .filter(InteractionLog.session_id == session_id)
            .order_by(InteractionLog.created_at.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    @staticmethod
    def to_dict(session: Session) -> dict:
        return {
            "id": session.id,
            "user_id": session.user_id,
            "category": session.category,
            "form_type": session.form_type,
            "mode": session.mode,
            "remaining_seconds": session.remaining_seconds,
            "is_active": session.is_active,
            "status": session.status,
            "funding_source": session.funding_source,
            "expires_at": as_utc(session.expires_at).isoformat() if session.expires_at else None,
            "created_at": as_utc(session.created_at).isoformat() if session.created_at else None,
        }
