"""
PaymentService: user-facing payment operations.

Responsibilities:
- Prepare a PENDING Order+Payment from a price quote (rate limited per user)
- Cancel a payment (PENDING -> USER_CANCELLED, COMPLETED -> CANCELLED), deactivating linked sessions
- User-driven status updates (checkout closed / failed on the client)
- Order history and order detail (with result token and regeneration flag)
"""
import logging
from dataclasses import dataclass

import redis
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AccessDenied, NotFound, RateLimited, ValidationFailure
from app.models.artifact import Artifact
from app.models.order import Order, OrderStatus
from app.models.payment import ORDER_TO_PAYMENT_STATUS, Payment, PaymentStatus
from app.models.payment_detail import PaymentDetail
from app.models.session import Session as SessionModel, SessionMode
from app.services.payments.ledger import CreatedOrder, OrderPaymentLedger
from app.services.pricing.service import Quote, quote
from app.services.result_tokens.service import ResultTokenService
from app.services.sessions.service import SessionService, as_utc

logger = logging.getLogger(__name__)

# Statuses a user may set on their own PENDING order
USER_SETTABLE_STATUSES = (OrderStatus.USER_CANCELLED, OrderStatus.FAILED)


@dataclass
class PreparedPayment:
    created: CreatedOrder
    quote: Quote

    def to_dict(self) -> dict:
        return {
            "order_id": self.created.order_id,
            "payment_id": self.created.payment_id,
            "merchant_uid": self.created.merchant_uid,
            "amount": self.quote.amount,
            "currency": self.quote.currency,
            "order_name": self.quote.name,
            "store_id": settings.portone_store_id or None,
            "quote": self.quote.model_dump(),
        }


class PaymentService:
    def __init__(
        self,
        db: Session,
        redis_client: redis.Redis | None = None,
        tokens: ResultTokenService | None = None,
    ):
        self.db = db
        self.ledger = OrderPaymentLedger(db)
        self._redis = redis_client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.tokens = tokens or ResultTokenService()

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def prepare_payment(
        self,
        user_id: str,
        product_type: str,
        category: str | None = None,
        duration_minutes: int | None = None,
        unit: str | None = None,
    ) -> PreparedPayment:
        product_quote = quote(product_type, category=category, duration_minutes=duration_minutes, unit=unit)
        if not self._check_rate_limit(user_id):
            raise RateLimited("too many purchases, try again later")
        created = self.ledger.create_order_and_payment(
            user_id=user_id,
            amount=product_quote.amount,
            currency=product_quote.currency,
            name=product_quote.name,
            metadata=product_quote.order_metadata(),
        )
        self.db.commit()
        return PreparedPayment(created=created, quote=product_quote)

    def _check_rate_limit(self, user_id: str) -> bool:
        """At most purchase_rate_limit prepared orders per window, shared across replicas."""
        key = f"purchase_rate:{user_id}"
        try:
            current = self._redis.incr(key)
            if current == 1:
                self._redis.expire(key, settings.purchase_rate_window_seconds)
            return current <= settings.purchase_rate_limit
        except redis.RedisError as e:
            logger.warning("purchase_rate_limit_redis_error", extra={"error": str(e)})
            return True  # fail open

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def _owned_payment(self, payment_id: str, user_id: str) -> Payment:
        payment = self.ledger.find_payment(payment_id)
        if payment is None:
            raise NotFound("payment not found", code="PAYMENT_NOT_FOUND")
        if payment.user_id != user_id:
            raise AccessDenied("payment belongs to another user", code="PAYMENT_ACCESS_DENIED")
        return payment

    def _owned_order(self, order_id: str, user_id: str) -> Order:
        order = self.ledger.get_order(order_id)
        if order is None:
            raise NotFound("order not found", code="ORDER_NOT_FOUND")
        if order.user_id != user_id:
            raise AccessDenied("order belongs to another user", code="PAYMENT_ACCESS_DENIED")
        return order

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_payment(self, payment_id: str, user_id: str, reason: str | None = None) -> dict:
        payment = self._owned_payment(payment_id, user_id)
        if payment.status in (PaymentStatus.CANCELLED, PaymentStatus.USER_CANCELLED, PaymentStatus.REFUNDED):
            raise ValidationFailure("payment is already cancelled", code="ALREADY_CANCELLED")
        if payment.status == PaymentStatus.FAILED:
            raise ValidationFailure(
                f"payment cannot be cancelled in status {payment.status}", code="CANNOT_CANCEL"
            )

        was_pending = payment.status == PaymentStatus.PENDING
        target = PaymentStatus.USER_CANCELLED if was_pending else PaymentStatus.CANCELLED
        result = self.ledger.advance(payment, target, expected=(payment.status,), source="cancel")
        if not result.applied:
            # Status moved underneath us (e.g. a webhook confirmed it)
            self.db.rollback()
            raise ValidationFailure("payment status changed, retry", code="CANCEL_FAILED")

        session_ids = [
            row.session_id
            for row in self.db.query(PaymentDetail)
            .filter(PaymentDetail.payment_id == payment.id, PaymentDetail.session_id.isnot(None))
            .all()
        ]
        sessions = SessionService(self.db)
        for session_id in session_ids:
            session = sessions.get_session(session_id)
            if session is not None:
                sessions.cancel(session)
        self.db.commit()

        logger.info(
            "payment_cancelled",
            extra={
                "payment_id": payment.id,
                "order_id": result.order.id,
                "user_id": user_id,
                "status": target,
                "reason": reason,
                "count": len(session_ids),
            },
        )
        return {
            "payment_id": payment.id,
            "order_id": result.order.id,
            "payment_status": result.payment.status,
            "order_status": result.order.status,
            "deactivated_session_ids": session_ids,
        }

    # ------------------------------------------------------------------
    # User status updates
    # ------------------------------------------------------------------

    def update_status_by_user(self, order_id: str, user_id: str, new_status: str) -> dict:
        order = self._owned_order(order_id, user_id)
        if new_status not in USER_SETTABLE_STATUSES:
            raise ValidationFailure(f"status {new_status} cannot be set by the user", code="INVALID_STATUS")
        if order.status == OrderStatus.PAID and new_status == OrderStatus.USER_CANCELLED:
            raise ValidationFailure("a paid order cannot be cancelled this way", code="CANNOT_CANCEL")
        payment = self.ledger.get_payment_for_order(order.id)
        if payment is None:
            raise NotFound("payment not found", code="PAYMENT_NOT_FOUND")
        result = self.ledger.advance(payment, ORDER_TO_PAYMENT_STATUS[new_status], source="user")
        if not result.applied:
            self.db.rollback()
            raise ValidationFailure(
                f"order is no longer pending (current: {order.status})", code="INVALID_TRANSITION"
            )
        self.db.commit()
        return {"order_id": order.id, "order_status": result.order.status, "payment_status": result.payment.status}

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def list_orders(self, user_id: str, page: int = 1, limit: int = 20, status: str | None = None) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        query = self.db.query(Order).filter(Order.user_id == user_id)
        if status:
            query = query.filter(Order.status == status)
        total = query.count()
        orders = query.order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return {
            "items": [self._order_summary(order) for order in orders],
            "page": page,
            "limit": limit,
            "total": total,
        }

    def _order_summary(self, order: Order) -> dict:
        payment = self.ledger.get_payment_for_order(order.id)
        meta = order.meta or {}
        return {
            "order_id": order.id,
            "payment_id": payment.id if payment else None,
            "order_name": order.order_name,
            "amount": order.amount,
            "currency": order.currency,
            "order_status": order.status,
            "payment_status": payment.status if payment else None,
            "product_type": meta.get("product_type"),
            "category": meta.get("category"),
            "session_id": meta.get("session_id"),
            "paid_at": as_utc(payment.paid_at).isoformat() if payment and payment.paid_at else None,
            "created_at": as_utc(order.created_at).isoformat() if order.created_at else None,
        }

    def get_order_detail(self, order_id: str, user_id: str) -> dict:
        order = self._owned_order(order_id, user_id)
        payment = self.ledger.get_payment_for_order(order.id)
        detail = self._order_summary(order)
        detail["merchant_uid"] = order.merchant_uid
        detail["pay_method"] = payment.pay_method if payment else None
        detail["result_token"] = None
        detail["artifact_id"] = None
        detail["can_regenerate"] = False
        if payment is None:
            return detail

        link = (
            self.db.query(PaymentDetail)
            .filter(PaymentDetail.payment_id == payment.id, PaymentDetail.session_id.isnot(None))
            .order_by(PaymentDetail.created_at)
            .first()
        )
        if link is None:
            return detail
        session = self.db.query(SessionModel).filter(SessionModel.id == link.session_id).one_or_none()
        if session is None:
            return detail
        detail["session_id"] = session.id
        detail["session"] = SessionService.to_dict(session)
        detail["artifact_id"] = link.artifact_id
        if payment.status == PaymentStatus.COMPLETED:
            detail["result_token"] = self.tokens.sign_for_session(session)
            if session.mode == SessionMode.ONE_SHOT:
                artifact = None
                if link.artifact_id:
                    artifact = self.db.query(Artifact).filter(Artifact.id == link.artifact_id).one_or_none()
                detail["can_regenerate"] = artifact is None
        return detail

