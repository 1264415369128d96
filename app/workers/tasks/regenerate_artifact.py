"""
Celery task: regenerate the artifact of a paid one-shot session out of band
(e.g. after ARTIFACT_GENERATION_FAILED). Never charges again.
"""
import logging

from app.core.celery_app import celery_app
from app.core.errors import ArtifactGenerationFailure
from app.db.session import SessionLocal
from app.services.artifacts.service import ArtifactService
from app.services.generation.factory import get_content_generator
from app.services.sessions.service import SessionService

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="app.workers.tasks.regenerate_artifact.regenerate_artifact",
    max_retries=3,
    default_retry_delay=30,
)
def regenerate_artifact(self, session_id: str) -> dict:
    db = SessionLocal()
    try:
        session = SessionService(db).get_session(session_id)
        if session is None:
            logger.warning("regenerate_artifact_session_missing", extra={"session_id": session_id})
            return {"ok": False, "reason": "SESSION_NOT_FOUND"}
        artifacts = ArtifactService(db, get_content_generator())
        existing = artifacts.artifact_for_session(session.id)
        if existing is not None:
            return {"ok": True, "artifact_id": existing.id, "regenerated": False}
        artifact = artifacts.regenerate(session)
        return {"ok": True, "artifact_id": artifact.id, "regenerated": True}
    except ArtifactGenerationFailure as e:
        db.rollback()
        raise self.retry(exc=e)
    except Exception:
        db.rollback()
        logger.exception("regenerate_artifact_failed", extra={"session_id": session_id})
        raise
    finally:
        db.close()
