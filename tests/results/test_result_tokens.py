import pytest

from app.core.errors import AccessDenied, TokenInvalid
from app.services.result_tokens.service import ResultTokenService

CLAIMS = {"session_id": "s-1", "user_id": "user-1", "category": "SAJU", "mode": "one_shot"}


def test_verify_returns_claims():
    service = ResultTokenService()
    claims = service.verify(service.sign(CLAIMS))
    assert claims["session_id"] == "s-1"
    assert claims["exp"] > 0


def test_tampered_token_rejected():
    service = ResultTokenService()
    token = service.sign(CLAIMS)
    tampered = ("x" if token[0] != "x" else "y") + token[1:]
    with pytest.raises(TokenInvalid):
        service.verify(tampered)


def test_other_secret_rejected():
    token = ResultTokenService(secret="first-secret-0123456789").sign(CLAIMS)
    with pytest.raises(TokenInvalid):
        ResultTokenService(secret="second-secret-0123456789").verify(token)


def test_expired_token_rejected():
    service = ResultTokenService()
    with pytest.raises(TokenInvalid):
        service.verify(service.sign(CLAIMS, ttl_seconds=0))


def test_missing_claim_rejected():
    service = ResultTokenService()
    with pytest.raises(TokenInvalid):
        service.verify(service.sign({**CLAIMS, "category": None}))


def test_invalid_token_is_access_denied():
    with pytest.raises(AccessDenied) as exc:
        ResultTokenService().verify("")
    assert exc.value.status_code == 403
