"""
OrderPaymentLedger: the Order/Payment pair and its status transitions.

Every Order has exactly one Payment and both rows always hold a compatible
status pair (see ORDER_TO_PAYMENT_STATUS). All status changes go through
conditional UPDATEs so concurrent confirmation sources cannot double-apply.
Methods flush; callers commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import NotFound, ValidationFailure
from app.models.order import Order, OrderStatus
from app.models.payment import (
    ORDER_TO_PAYMENT_STATUS,
    PAYMENT_TO_ORDER_STATUS,
    Payment,
    PaymentStatus,
)
from app.utils.ids import new_merchant_uid
from app.utils.metrics import orders_created_total, payment_transitions_total

logger = logging.getLogger(__name__)


@dataclass
class CreatedOrder:
    order: Order
    payment: Payment

    @property
    def order_id(self) -> str:
        return self.order.id

    @property
    def payment_id(self) -> str:
        return self.payment.id

    @property
    def merchant_uid(self) -> str:
        return self.order.merchant_uid


@dataclass
class TransitionResult:
    """applied is True only for the caller whose UPDATE moved the row."""

    applied: bool
    payment: Payment
    order: Order

    @property
    def status(self) -> str:
        return self.payment.status


class OrderPaymentLedger:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order_and_payment(
        self,
        user_id: str,
        amount: int,
        currency: str,
        name: str,
        metadata: dict | None = None,
        description: str | None = None,
    ) -> CreatedOrder:
        if amount <= 0:
            raise ValidationFailure("amount must be positive", code="INVALID_AMOUNT")
        merchant_uid = new_merchant_uid()
        order = Order(
            user_id=user_id,
            merchant_uid=merchant_uid,
            order_name=name,
            description=description,
            amount=amount,
            currency=currency,
            status=OrderStatus.PENDING,
            meta=dict(metadata or {}),
        )
        self.db.add(order)
        self.db.flush()
        payment = Payment(
            order_id=order.id,
            user_id=user_id,
            gateway_reference=merchant_uid,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PENDING,
        )
        self.db.add(payment)
        self.db.flush()
        orders_created_total.labels(product_type=order.meta.get("product_type", "unknown")).inc()
        logger.info(
            "order_created",
            extra={"user_id": user_id, "order_id": order.id, "payment_id": payment.id, "amount": amount},
        )
        return CreatedOrder(order=order, payment=payment)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order | None:
        return self.db.query(Order).filter(Order.id == order_id).one_or_none()

    def get_payment(self, payment_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.id == payment_id).one_or_none()

    def get_payment_for_order(self, order_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.order_id == order_id).one_or_none()

    def find_payment(self, reference: str) -> Payment | None:
        """Resolve a payment by our id, the order id, the merchant uid or the gateway's id."""
        payment = self.get_payment(reference)
        if payment is not None:
            return payment
        payment = self.get_payment_for_order(reference)
        if payment is not None:
            return payment
        payment = (
            self.db.query(Payment)
            .filter(Payment.gateway_reference == reference)
            .order_by(Payment.created_at.desc())
            .first()
        )
        if payment is not None:
            return payment
        order = self.db.query(Order).filter(Order.merchant_uid == reference).one_or_none()
        if order is not None:
            return self.get_payment_for_order(order.id)
        return None

    def pair(self, payment: Payment) -> tuple[Order, Payment]:
        order = self.get_order(payment.order_id)
        if order is None:
            raise NotFound("order not found", code="ORDER_NOT_FOUND")
        return order, payment

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def ensure_reference_available(self, payment: Payment, gateway_payment_id: str | None) -> None:
        """A gateway payment id may back one order only."""
        if not gateway_payment_id or gateway_payment_id == payment.gateway_reference:
            return
        bound = (
            self.db.query(Payment.id)
            .filter(Payment.gateway_reference == gateway_payment_id, Payment.id != payment.id)
            .first()
        )
        if bound is None:
            bound = (
                self.db.query(Order.id)
                .filter(Order.merchant_uid == gateway_payment_id, Order.id != payment.order_id)
                .first()
            )
        if bound is not None:
            logger.warning(
                "gateway_reference_in_use",
                extra={"payment_id": payment.id, "gateway_payment_id": gateway_payment_id},
            )
            raise ValidationFailure(
                "gateway payment is already bound to another order", code="GATEWAY_REFERENCE_IN_USE"
            )

    def set_gateway_reference(self, payment: Payment, gateway_payment_id: str | None) -> bool:
        """Record the gateway's canonical payment id once it is confirmed to belong to this order."""
        if not gateway_payment_id or payment.gateway_reference == gateway_payment_id:
            return False
        if payment.status != PaymentStatus.PENDING:
            return False
        self.ensure_reference_available(payment, gateway_payment_id)
        try:
            with self.db.begin_nested():
                payment.gateway_reference = gateway_payment_id
                self.db.add(payment)
        except IntegrityError as e:
            self.db.refresh(payment)
            raise ValidationFailure(
                "gateway payment is already bound to another order", code="GATEWAY_REFERENCE_IN_USE"
            ) from e
        return True

    def advance(
        self,
        payment: Payment,
        new_status: str,
        expected: tuple[str, ...] = (PaymentStatus.PENDING,),
        source: str = "system",
        pay_method: str | None = None,
        pg_provider: str | None = None,
        raw_response: dict | None = None,
        paid_at: datetime | None = None,
    ) -> TransitionResult:
        """
        Move the payment (and its order) to new_status iff it is currently in one of
        `expected`. Single guarded UPDATE; the order only follows if the payment moved.
        """
        if new_status not in PAYMENT_TO_ORDER_STATUS:
            raise ValidationFailure(f"unknown payment status: {new_status}", code="INVALID_STATUS")
        now = datetime.now(timezone.utc)
        values: dict = {"status": new_status, "updated_at": now}
        if new_status == PaymentStatus.COMPLETED:
            values["paid_at"] = paid_at or now
        if pay_method:
            values["pay_method"] = pay_method
        if pg_provider:
            values["pg_provider"] = pg_provider
        if raw_response is not None:
            values["raw_response"] = raw_response

        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status.in_(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount > 0
        if applied:
            self.db.execute(
                update(Order)
                .where(Order.id == payment.order_id)
                .values(status=PAYMENT_TO_ORDER_STATUS[new_status], updated_at=now)
                .execution_options(synchronize_session=False)
            )
        self.db.flush()
        self.db.refresh(payment)
        order, _ = self.pair(payment)
        self.db.refresh(order)

        if applied:
            payment_transitions_total.labels(source=source, status=new_status).inc()
            logger.info(
                "payment_transition_applied",
                extra={
                    "payment_id": payment.id,
                    "order_id": order.id,
                    "status": new_status,
                    "source": source,
                },
            )
        else:
            logger.info(
                "payment_transition_noop",
                extra={"payment_id": payment.id, "status": payment.status, "source": source},
            )
        return TransitionResult(applied=applied, payment=payment, order=order)

    def update_status(self, order_id: str, new_order_status: str, source: str = "system") -> TransitionResult:
        """Set Order and Payment together from the order-side status (unconditional on origin)."""
        if new_order_status not in ORDER_TO_PAYMENT_STATUS:
            raise ValidationFailure(f"unknown order status: {new_order_status}", code="INVALID_STATUS")
        payment = self.get_payment_for_order(order_id)
        if payment is None:
            raise NotFound("payment not found", code="PAYMENT_NOT_FOUND")
        return self.advance(
            payment,
            ORDER_TO_PAYMENT_STATUS[new_order_status],
            expected=PaymentStatus.ALL,
            source=source,
        )

    def enrich_order_metadata(self, order_id: str, **fields) -> None:
        order = self.get_order(order_id)
        if order is None:
            return
        meta = dict(order.meta or {})
        meta.update({k: v for k, v in fields.items() if v is not None})
        # Reassign so the JSON column is marked dirty
        order.meta = meta
        self.db.add(order)
        self.db.flush()
