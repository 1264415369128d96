"""Cancellation, user status changes and order history."""
from unittest.mock import MagicMock

import pytest

from app.core.errors import AccessDenied, NotFound, RateLimited, ValidationFailure
from app.models.order import OrderStatus
from app.models.payment import PaymentStatus
from app.models.session import Session
from app.services.payments.confirmation import PaymentConfirmationCoordinator
from app.services.payments.ledger import OrderPaymentLedger
from app.services.payments.service import PaymentService
from app.services.sessions.factory import SessionFactory

from tests.helpers import FakeGateway, paid


def _service(db, incr=1):
    redis_client = MagicMock()
    redis_client.incr.return_value = incr
    return PaymentService(db, redis_client=redis_client)


def _paid_document_session(db, make_order, user_id="user-1"):
    created = make_order(user_id=user_id, amount=10000, metadata={"product_type": "document", "category": "SAJU"})
    coordinator = PaymentConfirmationCoordinator(db, FakeGateway([paid(10000)]), sleep=lambda _: None)
    creation = SessionFactory(db, coordinator).create_one_shot_session(
        user_id, "SAJU", "my question", {"birth": "1990-01-01"}, created.payment_id
    )
    return created, creation.session


class TestPrepare:
    def test_prepare_creates_pending_pair_from_quote(self, db):
        prepared = _service(db).prepare_payment("user-1", "document", category="SAJU")

        order = OrderPaymentLedger(db).get_order(prepared.created.order_id)
        assert order.amount == 10000
        assert order.status == OrderStatus.PENDING
        assert order.meta["product_type"] == "document"
        assert prepared.to_dict()["merchant_uid"] == order.merchant_uid

    def test_rate_limited(self, db):
        with pytest.raises(RateLimited):
            _service(db, incr=4).prepare_payment("user-1", "credit", unit="MINUTES_5")


class TestCancel:
    def test_cancel_completed_deactivates_session_and_keeps_rows(self, db, make_order):
        created, session = _paid_document_session(db, make_order)

        result = _service(db).cancel_payment(created.payment_id, "user-1", reason="changed mind")

        assert result["payment_status"] == PaymentStatus.CANCELLED
        assert result["order_status"] == OrderStatus.CANCELLED
        assert result["deactivated_session_ids"] == [session.id]
        db.expire_all()
        stored = db.query(Session).filter(Session.id == session.id).one()
        assert stored.is_active is False

    def test_cancel_pending_marks_user_cancelled(self, db, make_order):
        created = make_order()
        result = _service(db).cancel_payment(created.payment_id, "user-1")
        assert result["payment_status"] == PaymentStatus.USER_CANCELLED
        assert result["order_status"] == OrderStatus.USER_CANCELLED

    def test_cancel_twice(self, db, make_order):
        created = make_order()
        service = _service(db)
        service.cancel_payment(created.payment_id, "user-1")
        with pytest.raises(ValidationFailure) as exc:
            service.cancel_payment(created.payment_id, "user-1")
        assert exc.value.code == "ALREADY_CANCELLED"

    def test_cancel_failed_payment(self, db, make_order):
        created = make_order()
        OrderPaymentLedger(db).advance(created.payment, PaymentStatus.FAILED)
        db.commit()
        with pytest.raises(ValidationFailure) as exc:
            _service(db).cancel_payment(created.payment_id, "user-1")
        assert exc.value.code == "CANNOT_CANCEL"

    def test_cancel_requires_owner(self, db, make_order):
        created = make_order(user_id="owner")
        with pytest.raises(AccessDenied) as exc:
            _service(db).cancel_payment(created.payment_id, "someone-else")
        assert exc.value.code == "PAYMENT_ACCESS_DENIED"

    def test_cancel_unknown(self, db):
        with pytest.raises(NotFound) as exc:
            _service(db).cancel_payment("missing", "user-1")
        assert exc.value.code == "PAYMENT_NOT_FOUND"


class TestUserStatus:
    def test_user_can_abandon_pending_order(self, db, make_order):
        created = make_order()
        result = _service(db).update_status_by_user(created.order_id, "user-1", OrderStatus.USER_CANCELLED)
        assert result == {
            "order_id": created.order_id,
            "order_status": OrderStatus.USER_CANCELLED,
            "payment_status": PaymentStatus.USER_CANCELLED,
        }

    def test_paid_order_cannot_be_user_cancelled(self, db, make_order):
        created = make_order()
        OrderPaymentLedger(db).advance(created.payment, PaymentStatus.COMPLETED)
        db.commit()
        with pytest.raises(ValidationFailure) as exc:
            _service(db).update_status_by_user(created.order_id, "user-1", OrderStatus.USER_CANCELLED)
        assert exc.value.code == "CANNOT_CANCEL"

    def test_user_cannot_mark_paid(self, db, make_order):
        created = make_order()
        with pytest.raises(ValidationFailure):
            _service(db).update_status_by_user(created.order_id, "user-1", OrderStatus.PAID)


class TestHistory:
    def test_list_orders_paginates_newest_first(self, db, make_order):
        for _ in range(3):
            make_order(user_id="user-1")
        make_order(user_id="user-2")

        page = _service(db).list_orders("user-1", page=1, limit=2)

        assert page["total"] == 3
        assert len(page["items"]) == 2

    def test_order_detail_includes_result_token(self, db, make_order):
        created, session = _paid_document_session(db, make_order)

        detail = _service(db).get_order_detail(created.order_id, "user-1")

        assert detail["session_id"] == session.id
        assert detail["result_token"]
        assert detail["can_regenerate"] is True  # no artifact generated yet

    def test_order_detail_requires_owner(self, db, make_order):
        created = make_order(user_id="owner")
        with pytest.raises(AccessDenied):
            _service(db).get_order_detail(created.order_id, "other")
