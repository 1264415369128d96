"""Test doubles for the gateway and the content generator."""
from dataclasses import replace

from app.core.errors import GatewayError
from app.models.payment import PaymentStatus
from app.services.generation.base import ContentGenerator, GenerationError, GenerationResponse
from app.services.payments.gateway import GatewayPayment


class FakeGateway:
    """
    Scripted gateway: each lookup pops the next response (the last one repeats).
    Responses without an id or merchant reference echo the id that was looked up,
    like a PortOne V2 payment whose id is the merchant uid.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def get_payment(self, gateway_payment_id):
        self.calls.append(gateway_payment_id)
        if not self.responses:
            raise GatewayError("gateway unreachable")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return replace(
            response,
            payment_id=response.payment_id or gateway_payment_id,
            merchant_uid=response.merchant_uid or gateway_payment_id,
        )


def gateway_payment(status, amount, currency="KRW", payment_id=None, method="CARD", merchant_uid=None):
    return GatewayPayment(
        payment_id=payment_id,
        status=status,
        raw_status=status,
        amount=amount,
        currency=currency,
        pay_method=method,
        merchant_uid=merchant_uid,
        raw={"id": payment_id, "status": status},
    )


def paid(amount, **kwargs):
    return gateway_payment(PaymentStatus.COMPLETED, amount, **kwargs)


def pending(amount, **kwargs):
    return gateway_payment(PaymentStatus.PENDING, amount, **kwargs)


class FakeGenerator(ContentGenerator):
    def __init__(self, fail=False):
        super().__init__({})
        self.fail = fail
        self.requests = []

    def is_available(self):
        return True

    def generate(self, request):
        self.requests.append(request)
        if self.fail:
            raise GenerationError("provider down", detail={"error": "Timeout"})
        return GenerationResponse(
            title=f"{request.category} reading",
            sections=[{"heading": "Overview", "body": "All good."}],
            model="fake",
            provider="fake",
        )
