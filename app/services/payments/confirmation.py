"""
PaymentConfirmationCoordinator: resolves a PENDING payment to its terminal state.

Two entry points feed the same guarded transition:
- handle_webhook: gateway push, authenticated with a shared secret;
- poll: bounded synchronous lookups used when the client returns before the webhook.

Whichever source commits first wins; the other observes a non-PENDING row and
no-ops. The gateway record must be filed under this order and may back no other
order. A confirmed amount/currency that disagrees with the stored order marks
the payment FAILED; the stored amount is never overwritten.
"""
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    AccessDenied,
    AuthenticationFailure,
    GatewayError,
    NotFound,
    PaymentNotConfirmed,
    ValidationFailure,
)
from app.models.order import Order
from app.models.payment import Payment, PaymentStatus
from app.services.payments.gateway import (
    GatewayPayment,
    PaymentLookupNotFound,
    PortOneGateway,
    map_gateway_status,
)
from app.services.payments.ledger import OrderPaymentLedger
from app.utils.metrics import (
    payment_amount_mismatch_total,
    payment_poll_attempts_total,
    payment_reference_mismatch_total,
    webhook_rejected_total,
)

logger = logging.getLogger(__name__)

SOURCE_WEBHOOK = "webhook"
SOURCE_POLL = "poll"


class WebhookPayload(BaseModel):
    """Self-reported confirmation pushed by the gateway."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_id: str | None = Field(default=None, alias="orderId")
    gateway_payment_id: str | None = Field(default=None, alias="gatewayPaymentId")
    amount: int | None = None
    currency: str | None = None
    status: str
    method: str | None = None


@dataclass
class ConfirmationOutcome:
    payment_id: str
    order_id: str
    status: str
    order_status: str
    applied: bool
    source: str
    attempts: int = 0
    reason: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED

    @property
    def pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "order_id": self.order_id,
            "status": self.status,
            "order_status": self.order_status,
            "confirmed": self.confirmed,
            "applied": self.applied,
            "source": self.source,
            "attempts": self.attempts,
            "reason": self.reason,
        }


class PaymentConfirmationCoordinator:
    def __init__(
        self,
        db: Session,
        gateway: PortOneGateway | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.db = db
        self.gateway = gateway or PortOneGateway()
        self.ledger = OrderPaymentLedger(db)
        self._sleep = sleep or time.sleep

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def verify_webhook_secret(self, secret_header: str | None) -> None:
        expected = settings.payment_webhook_secret.encode("utf-8")
        provided = (secret_header or "").encode("utf-8")
        if not provided or not hmac.compare_digest(provided, expected):
            webhook_rejected_total.labels(reason="unauthorized").inc()
            logger.warning("webhook_rejected", extra={"reason": "unauthorized"})
            raise AuthenticationFailure("invalid webhook secret", code="WEBHOOK_UNAUTHORIZED")

    def handle_webhook(self, secret_header: str | None, payload: dict) -> ConfirmationOutcome:
        self.verify_webhook_secret(secret_header)
        try:
            data = WebhookPayload.model_validate(payload)
        except ValidationError as e:
            webhook_rejected_total.labels(reason="invalid_payload").inc()
            raise ValidationFailure(
                "malformed webhook payload", code="INVALID_PAYLOAD", detail={"errors": e.errors(include_url=False)}
            ) from e

        payment = None
        if data.order_id:
            payment = self.ledger.get_payment_for_order(data.order_id)
        if payment is None and data.gateway_payment_id:
            payment = self.ledger.find_payment(data.gateway_payment_id)
        if payment is None:
            webhook_rejected_total.labels(reason="unknown_payment").inc()
            raise NotFound("payment not found", code="PAYMENT_NOT_FOUND")

        order, payment = self.ledger.pair(payment)
        if payment.status != PaymentStatus.PENDING:
            return self._outcome(payment, order, applied=False, source=SOURCE_WEBHOOK)

        lookup_id = data.gateway_payment_id or payment.gateway_reference or order.merchant_uid
        self.ledger.ensure_reference_available(payment, lookup_id)
        try:
            observed = self.gateway.get_payment(lookup_id)
        except PaymentLookupNotFound as e:
            webhook_rejected_total.labels(reason="unknown_at_gateway").inc()
            logger.warning(
                "webhook_rejected",
                extra={"payment_id": payment.id, "gateway_payment_id": lookup_id, "reason": "unknown_at_gateway"},
            )
            raise NotFound("payment not found at gateway", code="GATEWAY_PAYMENT_NOT_FOUND") from e
        except GatewayError:
            logger.warning(
                "webhook_gateway_lookup_unavailable",
                extra={"payment_id": payment.id, "order_id": order.id},
            )
            observed = None

        if observed is not None:
            outcome = self._apply_observed(payment, order, observed, lookup_id, SOURCE_WEBHOOK)
        else:
            # Gateway unreachable: trust the authenticated self-report, but bind no reference
            outcome = self._apply(payment, order, map_gateway_status(data.status), data.amount, data.currency,
                                  data.method, None, None, SOURCE_WEBHOOK)
        self.db.commit()
        return outcome

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll(
        self,
        payment_id: str,
        user_id: str | None = None,
        gateway_payment_id: str | None = None,
    ) -> ConfirmationOutcome:
        """
        Ask the gateway up to payment_poll_max_attempts times, payment_poll_interval_seconds
        apart. Returns with confirmed=False if the payment is still PENDING afterwards.
        """
        payment = self.ledger.find_payment(payment_id)
        if payment is None:
            raise NotFound("payment not found", code="PAYMENT_NOT_FOUND")
        if user_id is not None and payment.user_id != user_id:
            raise AccessDenied("payment belongs to another user", code="PAYMENT_ACCESS_DENIED")

        order, payment = self.ledger.pair(payment)
        if payment.status != PaymentStatus.PENDING:
            return self._outcome(payment, order, applied=False, source=SOURCE_POLL)

        lookup_id = gateway_payment_id or payment.gateway_reference or order.merchant_uid
        self.ledger.ensure_reference_available(payment, lookup_id)

        max_attempts = settings.payment_poll_max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                observed = self.gateway.get_payment(lookup_id)
            except PaymentLookupNotFound:
                # Checkout may not have reached the gateway yet
                payment_poll_attempts_total.labels(outcome="not_found").inc()
                observed = None
            except GatewayError:
                payment_poll_attempts_total.labels(outcome="error").inc()
                observed = None

            if observed is not None and (
                observed.status != PaymentStatus.PENDING or not self._belongs_to(observed, order, lookup_id)
            ):
                payment_poll_attempts_total.labels(outcome="resolved").inc()
                outcome = self._apply_observed(payment, order, observed, lookup_id, SOURCE_POLL)
                self.db.commit()
                outcome.attempts = attempt
                return outcome
            if observed is not None:
                payment_poll_attempts_total.labels(outcome="pending").inc()
                if self.ledger.set_gateway_reference(payment, observed.payment_id):
                    self.db.commit()

            # A webhook may have resolved it meanwhile
            self.db.refresh(payment)
            if payment.status != PaymentStatus.PENDING:
                self.db.refresh(order)
                return self._outcome(payment, order, applied=False, source=SOURCE_POLL, attempts=attempt)

            if attempt < max_attempts:
                self._sleep(settings.payment_poll_interval_seconds)

        logger.info(
            "payment_poll_exhausted",
            extra={"payment_id": payment.id, "order_id": order.id, "attempt": max_attempts},
        )
        return self._outcome(payment, order, applied=False, source=SOURCE_POLL, attempts=max_attempts)

    # ------------------------------------------------------------------
    # Shared transition
    # ------------------------------------------------------------------

    def _outcome(self, payment: Payment, order: Order, applied: bool, source: str,
                 attempts: int = 0, reason: str | None = None) -> ConfirmationOutcome:
        return ConfirmationOutcome(
            payment_id=payment.id,
            order_id=order.id,
            status=payment.status,
            order_status=order.status,
            applied=applied,
            source=source,
            attempts=attempts,
            reason=reason,
        )

    @staticmethod
    def _belongs_to(observed: GatewayPayment, order: Order, lookup_id: str) -> bool:
        """The gateway record must be the one we asked for and be filed under this order."""
        return observed.payment_id == lookup_id and observed.merchant_uid == order.merchant_uid

    def _apply_observed(
        self,
        payment: Payment,
        order: Order,
        observed: GatewayPayment,
        lookup_id: str,
        source: str,
    ) -> ConfirmationOutcome:
        if not self._belongs_to(observed, order, lookup_id):
            payment_reference_mismatch_total.labels(source=source).inc()
            logger.warning(
                "payment_reference_mismatch",
                extra={
                    "payment_id": payment.id,
                    "order_id": order.id,
                    "gateway_payment_id": lookup_id,
                    "source": source,
                },
            )
            return self._apply(payment, order, PaymentStatus.FAILED, None, None, None, None, observed.raw,
                               source, reason="REFERENCE_MISMATCH")
        self.ledger.set_gateway_reference(payment, observed.payment_id)
        return self._apply(payment, order, observed.status, observed.amount, observed.currency,
                           observed.pay_method, observed.pg_provider, observed.raw, source)

    def _apply(
        self,
        payment: Payment,
        order: Order,
        observed_status: str,
        amount: int | None,
        currency: str | None,
        pay_method: str | None,
        pg_provider: str | None,
        raw: dict | None,
        source: str,
        reason: str | None = None,
    ) -> ConfirmationOutcome:
        if payment.status != PaymentStatus.PENDING or observed_status == PaymentStatus.PENDING:
            return self._outcome(payment, order, applied=False, source=source)

        new_status = observed_status
        if observed_status == PaymentStatus.COMPLETED:
            amount_ok = amount is not None and amount == order.amount
            currency_ok = currency is None or currency.upper() == order.currency.upper()
            if not (amount_ok and currency_ok):
                new_status = PaymentStatus.FAILED
                reason = "AMOUNT_MISMATCH"
                payment_amount_mismatch_total.labels(source=source).inc()
                logger.warning(
                    "payment_amount_mismatch",
                    extra={
                        "payment_id": payment.id,
                        "order_id": order.id,
                        "amount": amount,
                        "expected_amount": order.amount,
                        "source": source,
                    },
                )

        result = self.ledger.advance(
            payment,
            new_status,
            source=source,
            pay_method=pay_method,
            pg_provider=pg_provider,
            raw_response=raw,
        )
        return self._outcome(result.payment, result.order, applied=result.applied, source=source, reason=reason)

    # ------------------------------------------------------------------
    # Proof of payment
    # ------------------------------------------------------------------

    def require_completed(
        self,
        payment: Payment,
        user_id: str,
        gateway_payment_id: str | None = None,
    ) -> Payment:
        """Poll a PENDING payment; anything short of COMPLETED is refused."""
        if payment.status == PaymentStatus.PENDING:
            outcome = self.poll(payment.id, user_id=user_id, gateway_payment_id=gateway_payment_id)
            if outcome.pending:
                raise PaymentNotConfirmed(
                    "payment is not confirmed yet",
                    detail={"payment_id": payment.id, "attempts": outcome.attempts},
                )
            self.db.refresh(payment)
        if payment.status != PaymentStatus.COMPLETED:
            raise ValidationFailure(
                "payment is not completed",
                code="PAYMENT_UNVERIFIED",
                detail={"payment_id": payment.id, "status": payment.status},
            )
        return payment
