"""
ResultService: result retrieval by capability token only.

The token is the whole credential: no login is consulted. Its claims must still
match the stored session, and one-shot results are only served while the payment
behind them is COMPLETED.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session as DBSession

from app.core.errors import AccessDenied, NotFound, TokenInvalid
from app.models.session import Session, SessionMode
from app.services.artifacts.service import ArtifactService
from app.services.result_tokens.service import ResultTokenService
from app.services.sessions.service import SessionService, as_utc

logger = logging.getLogger(__name__)


class ResultService:
    def __init__(self, db: DBSession, artifacts: ArtifactService, tokens: ResultTokenService | None = None):
        self.db = db
        self.artifacts = artifacts
        self.tokens = tokens or ResultTokenService()
        self.sessions = SessionService(db)

    def _session_for_claims(self, claims: dict) -> Session:
        session = self.sessions.get_session(claims["session_id"])
        if session is None:
            raise NotFound("session not found", code="SESSION_NOT_FOUND")
        if (
            session.user_id != claims["user_id"]
            or session.category != claims["category"]
            or session.mode != claims["mode"]
        ):
            logger.warning("result_token_claims_mismatch", extra={"session_id": session.id})
            raise TokenInvalid("token does not match session")
        return session

    def get_result(self, token: str) -> dict:
        claims = self.tokens.verify(token)
        session = self._session_for_claims(claims)
        payload = {
            "session": SessionService.to_dict(session),
            "history": [
                {"role": entry.role, "content": entry.content, "created_at": as_utc(entry.created_at).isoformat()}
                for entry in self.sessions.recent_interactions(session.id)
            ],
            "artifact": None,
        }
        if session.mode != SessionMode.ONE_SHOT:
            return payload

        if not self.artifacts.is_paid(session):
            raise AccessDenied("payment for this result is not confirmed", code="PAYMENT_UNVERIFIED")
        artifact = self.artifacts.artifact_for_session(session.id)
        if artifact is None:
            # Paid but never generated (or generation failed earlier): generate now
            artifact = self.artifacts.generate_for_session(session)
        if as_utc(artifact.expires_at) <= datetime.now(timezone.utc):
            raise NotFound("result has expired", code="ARTIFACT_EXPIRED")
        payload["artifact"] = ArtifactService.to_dict(artifact)
        return payload
