"""Purchased credits and operator session extension."""
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import AccessDenied, NotFound, PaymentNotConfirmed, PaymentRequired, ValidationFailure
from app.models.payment_detail import PaymentDetail
from app.models.session import Session
from app.services.credits.service import TimeCreditService
from app.services.payments.confirmation import PaymentConfirmationCoordinator
from app.services.sessions.extension import SessionExtensionService
from app.services.sessions.factory import SessionFactory
from app.services.sessions.service import as_utc

from tests.helpers import FakeGateway, paid, pending

UNIT_PRICES = {"MINUTES_5": 1000, "MINUTES_10": 1800, "MINUTES_30": 5000}


def _coordinator(db, gateway=None):
    return PaymentConfirmationCoordinator(db, gateway or FakeGateway(), sleep=lambda _: None)


@pytest.fixture
def free_session(db):
    factory = SessionFactory(db, _coordinator(db))
    return factory.create_interactive_session("user-1", "LOVE", use_free_allowance=True).session


@pytest.fixture
def buy(db, make_order):
    """Purchase a unit with a freshly confirmed payment."""

    def _buy(unit, session_id=None, user_id="user-1"):
        amount = UNIT_PRICES[unit]
        created = make_order(user_id=user_id, amount=amount, metadata={"product_type": "credit", "unit": unit})
        service = SessionExtensionService(db, _coordinator(db, FakeGateway([paid(amount)])))
        return created, service.purchase_credit(user_id, unit, created.payment_id, session_id=session_id)

    return _buy


class TestPurchaseCredit:
    def test_active_session_gains_purchased_time(self, db, free_session, buy):
        before_expiry = as_utc(free_session.expires_at)

        _, purchase = buy("MINUTES_10", session_id=free_session.id)

        assert purchase.extended is True
        assert purchase.minutes == 10
        assert purchase.session.remaining_seconds == 120 + 600
        assert as_utc(purchase.session.expires_at) >= before_expiry
        assert TimeCreditService(db).get_today("user-1").paid_minutes == 10

    def test_without_session_only_ledger_is_credited(self, db, buy):
        _, purchase = buy("MINUTES_5")

        assert purchase.extended is False
        assert purchase.session is None
        assert purchase.available_seconds_today == 300 + 120

    def test_inactive_session_is_not_extended(self, db, free_session, buy):
        free_session.is_active = False
        db.commit()

        _, purchase = buy("MINUTES_10", session_id=free_session.id)

        assert purchase.extended is False
        db.refresh(free_session)
        assert free_session.remaining_seconds == 120

    def test_expired_session_is_not_extended(self, db, free_session, buy):
        free_session.expires_at = datetime.now(timezone.utc) - timedelta(seconds=5)
        db.commit()

        _, purchase = buy("MINUTES_10", session_id=free_session.id)

        assert purchase.extended is False

    def test_payment_is_required(self, db, free_session):
        service = SessionExtensionService(db, _coordinator(db))

        with pytest.raises(PaymentRequired) as exc:
            service.purchase_credit("user-1", "MINUTES_30", None, session_id=free_session.id)

        assert exc.value.detail["quote"]["amount"] == 5000
        db.refresh(free_session)
        assert free_session.remaining_seconds == 120
        assert TimeCreditService(db).get_today("user-1").paid_minutes == 0

    def test_unconfirmed_payment_adds_nothing(self, db, make_order, free_session):
        created = make_order(amount=1800, metadata={"product_type": "credit", "unit": "MINUTES_10"})
        service = SessionExtensionService(db, _coordinator(db, FakeGateway([pending(1800)])))

        with pytest.raises(PaymentNotConfirmed):
            service.purchase_credit("user-1", "MINUTES_10", created.payment_id, session_id=free_session.id)

        db.refresh(free_session)
        assert free_session.remaining_seconds == 120

    def test_free_unit_rejected(self, db, free_session):
        with pytest.raises(ValidationFailure) as exc:
            SessionExtensionService(db).purchase_credit("user-1", "FREE", "any-payment", session_id=free_session.id)

        assert exc.value.code == "INVALID_UNIT"
        db.refresh(free_session)
        assert free_session.remaining_seconds == 120

    def test_foreign_session_denied(self, db, free_session, buy):
        with pytest.raises(AccessDenied):
            buy("MINUTES_10", session_id=free_session.id, user_id="intruder")

    def test_paid_purchase_is_linked_and_single_use(self, db, free_session, buy):
        created, purchase = buy("MINUTES_10", session_id=free_session.id)

        assert purchase.extended is True
        link = db.query(PaymentDetail).filter(PaymentDetail.payment_id == created.payment_id).one()
        assert link.session_id == free_session.id
        assert link.session_mode == "credit"

        service = SessionExtensionService(db, _coordinator(db))
        with pytest.raises(ValidationFailure) as exc:
            service.purchase_credit("user-1", "MINUTES_10", created.payment_id, session_id=free_session.id)
        assert exc.value.code == "PAYMENT_ALREADY_USED"
        db.refresh(free_session)
        assert free_session.remaining_seconds == 120 + 600

    def test_payment_for_other_unit_rejected(self, db, make_order):
        created = make_order(amount=1000, metadata={"product_type": "credit", "unit": "MINUTES_5"})
        service = SessionExtensionService(db, _coordinator(db, FakeGateway([paid(1000)])))

        with pytest.raises(ValidationFailure) as exc:
            service.purchase_credit("user-1", "MINUTES_10", created.payment_id)
        assert exc.value.code == "INVALID_UNIT"


class TestOperatorExtension:
    def test_adds_seconds(self, db, free_session):
        session = SessionExtensionService(db).extend_session(free_session.id, 60)
        assert session.remaining_seconds == 180

    def test_closed_session_rejected(self, db, free_session):
        free_session.is_active = False
        db.commit()
        with pytest.raises(ValidationFailure) as exc:
            SessionExtensionService(db).extend_session(free_session.id, 60)
        assert exc.value.code == "SESSION_EXPIRED"

    def test_unknown_session(self, db):
        with pytest.raises(NotFound):
            SessionExtensionService(db).extend_session("missing", 60)
        assert db.query(Session).count() == 0
