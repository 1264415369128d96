"""
PortOne V2 gateway adapter (sync httpx client, circuit breaker protected).
Only lookups: the client pays on the gateway's own checkout, we ask it what happened.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
import pybreaker
import redis

from app.core.config import settings
from app.core.errors import GatewayError
from app.models.payment import PaymentStatus
from app.services.circuit_breaker import get_circuit_breaker
from app.utils.metrics import gateway_request_duration_seconds, gateway_requests_total

logger = logging.getLogger(__name__)

# PortOne V2 payment status -> our PaymentStatus
GATEWAY_STATUS_MAP = {
    "PAID": PaymentStatus.COMPLETED,
    "FAILED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
    "PARTIAL_CANCELLED": PaymentStatus.CANCELLED,
    "READY": PaymentStatus.PENDING,
    "PENDING": PaymentStatus.PENDING,
    "PAY_PENDING": PaymentStatus.PENDING,
    "VIRTUAL_ACCOUNT_ISSUED": PaymentStatus.PENDING,
}


class PaymentLookupNotFound(GatewayError):
    status_code = 404
    code = "GATEWAY_PAYMENT_NOT_FOUND"
    retryable = False


def map_gateway_status(raw_status: str | None) -> str:
    return GATEWAY_STATUS_MAP.get((raw_status or "").upper(), PaymentStatus.PENDING)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class GatewayPayment:
    """Normalized view of one gateway payment."""

    payment_id: str
    status: str  # already mapped to PaymentStatus
    raw_status: str
    amount: int | None
    currency: str | None
    pay_method: str | None = None
    pg_provider: str | None = None
    paid_at: datetime | None = None
    # The merchant-side order reference the gateway filed this payment under
    merchant_uid: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "GatewayPayment":
        amount_block = data.get("amount") or {}
        if isinstance(amount_block, dict):
            amount = amount_block.get("total")
            currency = data.get("currency") or amount_block.get("currency")
        else:
            amount = amount_block
            currency = data.get("currency")
        method = data.get("method") or {}
        channel = data.get("channel") or {}
        pay_method = method.get("type") if isinstance(method, dict) else method
        if not pay_method and isinstance(channel, dict):
            pay_method = channel.get("payMethod")
        raw_status = str(data.get("status") or "")
        payment_id = str(data.get("id") or data.get("paymentId") or "")
        return cls(
            payment_id=payment_id,
            status=map_gateway_status(raw_status),
            raw_status=raw_status,
            amount=int(amount) if amount is not None else None,
            currency=currency,
            pay_method=pay_method,
            pg_provider=channel.get("pgProvider") if isinstance(channel, dict) else None,
            paid_at=_parse_datetime(data.get("paidAt")),
            # V2 payment ids are chosen by the merchant, so the id is the reference
            merchant_uid=data.get("merchantUid") or data.get("merchant_uid") or payment_id or None,
            raw=data,
        )


class PortOneGateway:
    """
    Sync PortOne V2 client.
    Uses httpx sync client; every call goes through the "payment_gateway" breaker.
    """

    def __init__(
        self,
        api_base: str | None = None,
        api_secret: str | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = (api_base or settings.portone_api_base).rstrip("/")
        self._secret = api_secret if api_secret is not None else settings.portone_api_secret
        self._breaker = breaker
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._base_url,
                timeout=settings.http_client_timeout,
                headers={"Authorization": f"PortOne {self._secret}"},
                transport=self._transport,
            )
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            # 404 is an answer, not an outage
            self._breaker = get_circuit_breaker("payment_gateway", exclude=[PaymentLookupNotFound])
        return self._breaker

    def _record_request(self, method: str, status: str, duration: float) -> None:
        gateway_requests_total.labels(method=method, status=status).inc()
        gateway_request_duration_seconds.labels(method=method).observe(duration)

    def _fetch_payment(self, gateway_payment_id: str) -> GatewayPayment:
        resp = self.client.get(f"/payments/{gateway_payment_id}")
        if resp.status_code == 404:
            raise PaymentLookupNotFound(
                "payment not found at gateway", detail={"gateway_payment_id": gateway_payment_id}
            )
        resp.raise_for_status()
        return GatewayPayment.from_response(resp.json())

    def get_payment(self, gateway_payment_id: str) -> GatewayPayment:
        """Look up a payment. Raises GatewayError when the gateway cannot answer."""
        start = time.time()
        try:
            result = self.breaker.call(self._fetch_payment, gateway_payment_id)
        except PaymentLookupNotFound:
            self._record_request("getPayment", "not_found", time.time() - start)
            raise
        except pybreaker.CircuitBreakerError as e:
            self._record_request("getPayment", "circuit_open", time.time() - start)
            raise GatewayError("payment gateway unavailable (circuit open)") from e
        except (httpx.HTTPError, redis.RedisError, ValueError) as e:
            self._record_request("getPayment", "error", time.time() - start)
            logger.warning(
                "gateway_lookup_failed",
                extra={"gateway_payment_id": gateway_payment_id, "error": type(e).__name__},
            )
            raise GatewayError("payment gateway lookup failed") from e
        self._record_request("getPayment", "success", time.time() - start)
        return result

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
