"""
Error taxonomy for billing, sessions and result access.

Services raise these; the API layer renders them through a single exception
handler as {"success": false, "error": <code>, "message": ..., "detail": ...}.
"""
from typing import Any


class BillingError(Exception):
    status_code = 400
    code = "BAD_REQUEST"
    retryable = False

    def __init__(self, message: str = "", code: str | None = None, detail: dict[str, Any] | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.detail:
            payload["detail"] = self.detail
        if self.retryable:
            payload["retryable"] = True
        return payload


class AuthenticationFailure(BillingError):
    status_code = 401
    code = "UNAUTHORIZED"


class ValidationFailure(BillingError):
    status_code = 400
    code = "VALIDATION_FAILED"


class PaymentRequired(BillingError):
    """Neither a payment nor an unused free allowance was offered; detail carries a quote."""

    status_code = 402
    code = "NEED_PAYMENT"


class PaymentNotConfirmed(BillingError):
    """Payment still PENDING after the polling budget; caller may retry."""

    status_code = 409
    code = "PAYMENT_NOT_CONFIRMED"
    retryable = True


class AccessDenied(BillingError):
    status_code = 403
    code = "ACCESS_DENIED"


class TokenInvalid(AccessDenied):
    code = "TOKEN_INVALID"


class NotFound(BillingError):
    status_code = 404
    code = "NOT_FOUND"


class RateLimited(BillingError):
    status_code = 429
    code = "RATE_LIMITED"
    retryable = True


class GatewayError(BillingError):
    status_code = 502
    code = "GATEWAY_ERROR"
    retryable = True


class ArtifactGenerationFailure(BillingError):
    """Generation failed after the session was committed; regeneration needs no new payment."""

    status_code = 502
    code = "ARTIFACT_GENERATION_FAILED"
    retryable = True

    def __init__(self, session_id: str, message: str = "", detail: dict[str, Any] | None = None):
        merged = {"session_id": session_id}
        merged.update(detail or {})
        super().__init__(message or "artifact generation failed", detail=merged)
        self.session_id = session_id
