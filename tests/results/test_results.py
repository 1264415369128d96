"""Artifact generation and token-based result retrieval."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app.core.errors import AccessDenied, ArtifactGenerationFailure, NotFound, TokenInvalid
from app.models.artifact import Artifact
from app.models.payment_detail import PaymentDetail
from app.models.session import Session
from app.services.artifacts.service import ArtifactService
from app.services.payments.confirmation import PaymentConfirmationCoordinator
from app.services.payments.service import PaymentService
from app.services.result_tokens.service import ResultTokenService
from app.services.results.service import ResultService
from app.services.sessions.factory import SessionFactory

from tests.helpers import FakeGateway, FakeGenerator, paid


@pytest.fixture
def one_shot(db, make_order):
    created = make_order(amount=10000, metadata={"product_type": "document", "category": "SAJU"})
    coordinator = PaymentConfirmationCoordinator(db, FakeGateway([paid(10000)]), sleep=lambda _: None)
    creation = SessionFactory(db, coordinator).create_one_shot_session(
        "user-1", "SAJU", "career?", {"birth": "1990-01-01"}, created.payment_id
    )
    return created, creation


class TestArtifactGeneration:
    def test_generated_artifact_is_linked(self, db, one_shot):
        created, creation = one_shot
        artifact = ArtifactService(db, FakeGenerator()).generate_for_session(creation.session)

        assert artifact.title == "SAJU reading"
        link = db.query(PaymentDetail).filter(PaymentDetail.payment_id == created.payment_id).one()
        assert link.artifact_id == artifact.id

    def test_failure_keeps_session_and_payment(self, db, one_shot):
        created, creation = one_shot

        with pytest.raises(ArtifactGenerationFailure) as exc:
            ArtifactService(db, FakeGenerator(fail=True)).generate_for_session(creation.session)

        assert exc.value.detail["session_id"] == creation.session.id
        assert db.query(Session).filter(Session.id == creation.session.id).count() == 1
        assert db.query(Artifact).count() == 0

    def test_regenerate_after_failure(self, db, one_shot):
        _, creation = one_shot
        with pytest.raises(ArtifactGenerationFailure):
            ArtifactService(db, FakeGenerator(fail=True)).generate_for_session(creation.session)

        artifact = ArtifactService(db, FakeGenerator()).regenerate(creation.session)
        assert artifact.session_id == creation.session.id


class TestResultRetrieval:
    def _results(self, db, generator=None):
        return ResultService(db, ArtifactService(db, generator or FakeGenerator()), ResultTokenService())

    def test_token_alone_returns_artifact(self, db, one_shot):
        _, creation = one_shot
        generator = FakeGenerator()

        result = self._results(db, generator).get_result(creation.result_token)

        assert result["session"]["id"] == creation.session.id
        assert result["artifact"]["title"] == "SAJU reading"
        assert len(generator.requests) == 1

    def test_existing_artifact_is_reused(self, db, one_shot):
        _, creation = one_shot
        ArtifactService(db, FakeGenerator()).generate_for_session(creation.session)
        generator = FakeGenerator()

        self._results(db, generator).get_result(creation.result_token)

        assert generator.requests == []

    def test_cancelled_payment_blocks_result(self, db, one_shot):
        created, creation = one_shot
        PaymentService(db, redis_client=MagicMock()).cancel_payment(created.payment_id, "user-1")

        with pytest.raises(AccessDenied) as exc:
            self._results(db).get_result(creation.result_token)
        assert exc.value.code == "PAYMENT_UNVERIFIED"

    def test_expired_artifact(self, db, one_shot):
        _, creation = one_shot
        artifact = ArtifactService(db, FakeGenerator()).generate_for_session(creation.session)
        artifact.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
        db.commit()

        with pytest.raises(NotFound) as exc:
            self._results(db).get_result(creation.result_token)
        assert exc.value.code == "ARTIFACT_EXPIRED"

    def test_claims_must_match_session(self, db, one_shot):
        _, creation = one_shot
        forged = ResultTokenService().sign(
            {"session_id": creation.session.id, "user_id": "someone-else", "category": "SAJU", "mode": "one_shot"}
        )
        with pytest.raises(TokenInvalid):
            self._results(db).get_result(forged)

    def test_interactive_result_has_history(self, db):
        coordinator = PaymentConfirmationCoordinator(db, FakeGateway(), sleep=lambda _: None)
        creation = SessionFactory(db, coordinator).create_interactive_session(
            "user-1", "LOVE", use_free_allowance=True
        )

        result = self._results(db).get_result(creation.result_token)

        assert result["artifact"] is None
        assert result["history"] == []
