"""Tests for OrderPaymentLedger: paired creation and guarded transitions."""
import pytest

from app.core.errors import NotFound, ValidationFailure
from app.models.order import Order, OrderStatus
from app.models.payment import ORDER_TO_PAYMENT_STATUS, Payment, PaymentStatus
from app.services.payments.ledger import OrderPaymentLedger


class TestCreateOrderAndPayment:
    def test_creates_pending_pair_with_shared_reference(self, db, make_order):
        created = make_order(amount=10000, metadata={"product_type": "document", "category": "SAJU"})

        order = db.query(Order).filter(Order.id == created.order_id).one()
        payment = db.query(Payment).filter(Payment.id == created.payment_id).one()
        assert order.status == OrderStatus.PENDING
        assert payment.status == PaymentStatus.PENDING
        assert payment.order_id == order.id
        assert payment.gateway_reference == order.merchant_uid
        assert order.meta["category"] == "SAJU"
        assert payment.paid_at is None

    def test_references_are_unique(self, make_order):
        first = make_order()
        second = make_order()
        assert first.merchant_uid != second.merchant_uid

    def test_rejects_non_positive_amount(self, db):
        with pytest.raises(ValidationFailure):
            OrderPaymentLedger(db).create_order_and_payment("user-1", 0, "KRW", "free?", {})
        assert db.query(Order).count() == 0


class TestAdvance:
    def test_completed_sets_paid_at_and_moves_order(self, db, make_order):
        created = make_order()
        ledger = OrderPaymentLedger(db)

        result = ledger.advance(created.payment, PaymentStatus.COMPLETED, source="test")

        assert result.applied is True
        assert result.payment.status == PaymentStatus.COMPLETED
        assert result.payment.paid_at is not None
        assert result.order.status == OrderStatus.PAID

    def test_second_transition_is_noop(self, db, make_order):
        created = make_order()
        ledger = OrderPaymentLedger(db)
        ledger.advance(created.payment, PaymentStatus.COMPLETED)
        db.commit()

        again = ledger.advance(created.payment, PaymentStatus.FAILED)

        assert again.applied is False
        assert again.payment.status == PaymentStatus.COMPLETED
        assert again.order.status == OrderStatus.PAID

    def test_unknown_status_rejected(self, db, make_order):
        created = make_order()
        with pytest.raises(ValidationFailure):
            OrderPaymentLedger(db).advance(created.payment, "DONE")


class TestUpdateStatus:
    @pytest.mark.parametrize("order_status", list(ORDER_TO_PAYMENT_STATUS))
    def test_pair_stays_compatible(self, db, make_order, order_status):
        created = make_order()
        result = OrderPaymentLedger(db).update_status(created.order_id, order_status)
        db.commit()

        assert result.order.status == order_status
        assert result.payment.status == ORDER_TO_PAYMENT_STATUS[order_status]

    def test_missing_order(self, db):
        with pytest.raises(NotFound):
            OrderPaymentLedger(db).update_status("nope", OrderStatus.PAID)


class TestFindPayment:
    def test_resolves_every_reference_kind(self, db, make_order):
        created = make_order()
        ledger = OrderPaymentLedger(db)
        ledger.set_gateway_reference(created.payment, "pg_canonical")
        db.commit()

        assert ledger.find_payment(created.payment_id).id == created.payment_id
        assert ledger.find_payment(created.order_id).id == created.payment_id
        assert ledger.find_payment("pg_canonical").id == created.payment_id
        assert ledger.find_payment(created.merchant_uid).id == created.payment_id
        assert ledger.find_payment("unknown") is None

    def test_enrich_order_metadata_keeps_existing_keys(self, db, make_order):
        created = make_order(metadata={"product_type": "chat"})
        ledger = OrderPaymentLedger(db)
        ledger.enrich_order_metadata(created.order_id, session_id="s-1", artifact_id=None)
        db.commit()

        order = ledger.get_order(created.order_id)
        assert order.meta == {"product_type": "chat", "session_id": "s-1"}
