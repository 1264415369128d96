from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import AccessDenied, NotFound, ValidationFailure
from app.models.session import Session, SessionMode, SessionStatus
from app.services.sessions.service import SessionService


def _session(db, seconds=120, expires_in=120, user_id="user-1", mode=SessionMode.INTERACTIVE):
    session = Session(
        user_id=user_id,
        category="LOVE",
        mode=mode,
        remaining_seconds=seconds,
        is_active=True,
        status=SessionStatus.CREATED,
        funding_source="free_allowance",
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )
    db.add(session)
    db.commit()
    return session


class TestConsumeTime:
    def test_first_use_activates(self, db):
        session = SessionService(db).consume_time(_session(db), 30)
        assert session.remaining_seconds == 90
        assert session.status == SessionStatus.ACTIVE
        assert session.is_active is True

    def test_floor_at_zero_exhausts(self, db):
        session = SessionService(db).consume_time(_session(db, seconds=20), 45)
        assert session.remaining_seconds == 0
        assert session.status == SessionStatus.EXHAUSTED
        assert session.is_active is False

    def test_exhausted_session_refuses_more(self, db):
        service = SessionService(db)
        session = service.consume_time(_session(db, seconds=10), 10)
        with pytest.raises(ValidationFailure) as exc:
            service.consume_time(session, 1)
        assert exc.value.code == "SESSION_EXPIRED"

    def test_non_positive_seconds_rejected(self, db):
        with pytest.raises(ValidationFailure):
            SessionService(db).consume_time(_session(db), 0)


class TestAddTime:
    def test_expiry_never_moves_earlier(self, db):
        session = _session(db, seconds=10, expires_in=3600)
        original = session.expires_at

        session = SessionService(db).add_time(session, 60)

        assert session.remaining_seconds == 70
        assert session.expires_at.replace(tzinfo=timezone.utc) >= original.replace(tzinfo=timezone.utc)


class TestLifecycle:
    def test_expire_stale_closes_only_overdue(self, db):
        service = SessionService(db)
        overdue = _session(db, expires_in=-10)
        fresh = _session(db, expires_in=600)

        assert service.expire_stale() == 1
        db.commit()
        db.expire_all()

        assert service.get_session(overdue.id).status == SessionStatus.EXPIRED
        assert service.get_session(overdue.id).is_active is False
        assert service.get_session(fresh.id).is_active is True

    def test_cancel_keeps_row(self, db):
        service = SessionService(db)
        session = service.cancel(_session(db))
        db.commit()
        assert session.status == SessionStatus.CANCELLED
        assert service.get_session(session.id) is not None

    def test_ownership(self, db):
        service = SessionService(db)
        session = _session(db, user_id="owner")
        with pytest.raises(AccessDenied):
            service.get_owned_session(session.id, "intruder")
        with pytest.raises(NotFound):
            service.get_owned_session("missing", "owner")

    def test_payment_prompt_threshold(self, db):
        service = SessionService(db)
        assert service.needs_payment_prompt(_session(db, seconds=25)) is True
        assert service.needs_payment_prompt(_session(db, seconds=300)) is False

    def test_recent_interactions_are_capped(self, db):
        service = SessionService(db)
        session = _session(db)
        for i in range(12):
            service.record_interaction(session, "user", f"message {i}")
        db.commit()
        assert len(service.recent_interactions(session.id)) == 10
        assert len(service.recent_interactions(session.id, limit=3)) == 3
