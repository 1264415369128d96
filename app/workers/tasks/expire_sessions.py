"""
Celery periodic task: close sessions that are still active but past their expiry.
"""
import logging

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.services.sessions.service import SessionService
from app.utils.metrics import sessions_expired_last_sweep

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.tasks.expire_sessions.expire_stale_sessions")
def expire_stale_sessions() -> dict:
    db = SessionLocal()
    try:
        closed = SessionService(db).expire_stale()
        db.commit()
        sessions_expired_last_sweep.set(closed)
        if closed:
            logger.info("sessions_expired", extra={"count": closed})
        return {"expired": closed}
    except Exception:
        db.rollback()
        logger.exception("expire_stale_sessions_failed")
        raise
    finally:
        db.close()
