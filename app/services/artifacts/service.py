"""
ArtifactService: generates and stores the single-shot result for a session.

Generation runs after the session and its payment link are committed. A failure
raises ArtifactGenerationFailure and leaves that state in place, so the artifact
can be regenerated later without charging again.
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session as DBSession

from app.core.config import settings
from app.core.errors import ArtifactGenerationFailure, ValidationFailure
from app.models.artifact import Artifact
from app.models.payment import Payment, PaymentStatus
from app.models.payment_detail import PaymentDetail
from app.models.session import Session, SessionMode
from app.services.generation.base import ContentGenerator, GenerationError, GenerationRequest
from app.services.payments.ledger import OrderPaymentLedger
from app.utils.metrics import artifact_generation_failures_total

logger = logging.getLogger(__name__)


class ArtifactService:
    def __init__(self, db: DBSession, generator: ContentGenerator):
        self.db = db
        self.generator = generator

    def get_artifact(self, artifact_id: str) -> Artifact | None:
        return self.db.query(Artifact).filter(Artifact.id == artifact_id).one_or_none()

    def payment_detail_for_session(self, session_id: str) -> PaymentDetail | None:
        return (
            self.db.query(PaymentDetail)
            .filter(PaymentDetail.session_id == session_id)
            .order_by(PaymentDetail.created_at.desc())
            .first()
        )

    def artifact_for_session(self, session_id: str) -> Artifact | None:
        """Follow the explicit link first, then the artifact's own session reference."""
        detail = self.payment_detail_for_session(session_id)
        if detail is not None and detail.artifact_id:
            artifact = self.get_artifact(detail.artifact_id)
            if artifact is not None:
                return artifact
        return (
            self.db.query(Artifact)
            .filter(Artifact.session_id == session_id)
            .order_by(Artifact.issued_at.desc())
            .first()
        )

    def is_paid(self, session: Session) -> bool:
        detail = self.payment_detail_for_session(session.id)
        if detail is None:
            return False
        payment = self.db.query(Payment).filter(Payment.id == detail.payment_id).one_or_none()
        return payment is not None and payment.status == PaymentStatus.COMPLETED

    def generate_for_session(self, session: Session) -> Artifact:
        if session.mode != SessionMode.ONE_SHOT:
            raise ValidationFailure("only one-shot sessions produce artifacts", code="INVALID_MODE")
        request = GenerationRequest(
            category=session.category,
            form_type=session.form_type,
            user_input=session.user_input,
            user_data=session.user_data,
        )
        try:
            response = self.generator.generate(request)
        except GenerationError as e:
            artifact_generation_failures_total.labels(category=session.category).inc()
            logger.exception(
                "artifact_generation_failed",
                extra={"session_id": session.id, "user_id": session.user_id, "category": session.category},
            )
            raise ArtifactGenerationFailure(session.id, detail=e.detail) from e

        now = datetime.now(timezone.utc)
        artifact = Artifact(
            user_id=session.user_id,
            session_id=session.id,
            category=session.category,
            title=response.title,
            content=response.as_content(),
            issued_at=now,
            expires_at=now + timedelta(days=settings.artifact_ttl_days),
        )
        self.db.add(artifact)
        self.db.flush()

        detail = self.payment_detail_for_session(session.id)
        if detail is not None:
            detail.artifact_id = artifact.id
            detail.expired_at = artifact.expires_at
            self.db.add(detail)
            payment = self.db.query(Payment).filter(Payment.id == detail.payment_id).one_or_none()
            if payment is not None:
                OrderPaymentLedger(self.db).enrich_order_metadata(payment.order_id, artifact_id=artifact.id)
        self.db.commit()
        logger.info(
            "artifact_generated",
            extra={"session_id": session.id, "artifact_id": artifact.id, "user_id": session.user_id},
        )
        return artifact

    def regenerate(self, session: Session) -> Artifact:
        """Re-run generation for a paid one-shot session. No new charge."""
        if not self.is_paid(session):
            raise ValidationFailure("session has no confirmed payment", code="PAYMENT_UNVERIFIED")
        return self.generate_for_session(session)

    @staticmethod
    def to_dict(artifact: Artifact) -> dict:
        return {
            "id": artifact.id,
            "session_id": artifact.session_id,
            "category": artifact.category,
            "title": artifact.title,
            "content": artifact.content,
            "issued_at": artifact.issued_at.isoformat() if artifact.issued_at else None,
            "expires_at": artifact.expires_at.isoformat() if artifact.expires_at else None,
        }
