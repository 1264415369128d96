from datetime import datetime, timedelta, timezone

from app.models.session import Session, SessionMode, SessionStatus
from app.workers.tasks import expire_sessions, regenerate_artifact

from tests.helpers import FakeGenerator


def _expired_session(session_factory):
    db = session_factory()
    try:
        session = Session(
            user_id="user-1",
            category="LOVE",
            mode=SessionMode.INTERACTIVE,
            remaining_seconds=60,
            is_active=True,
            status=SessionStatus.ACTIVE,
            funding_source="free_allowance",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
        db.add(session)
        db.commit()
        return session.id
    finally:
        db.close()


def test_expire_stale_sessions(session_factory, monkeypatch):
    monkeypatch.setattr(expire_sessions, "SessionLocal", session_factory)
    session_id = _expired_session(session_factory)

    assert expire_sessions.expire_stale_sessions() == {"expired": 1}

    db = session_factory()
    try:
        assert db.get(Session, session_id).status == SessionStatus.EXPIRED
    finally:
        db.close()


def test_regenerate_missing_session(session_factory, monkeypatch):
    monkeypatch.setattr(regenerate_artifact, "SessionLocal", session_factory)
    monkeypatch.setattr(regenerate_artifact, "get_content_generator", lambda: FakeGenerator())

    result = regenerate_artifact.regenerate_artifact("missing")

    assert result == {"ok": False, "reason": "SESSION_NOT_FOUND"}
