"""
Result capability tokens.

A token alone grants read access to one session's result. It is signed with
itsdangerous (URLSafeTimedSerializer) and carries its own expiry; the serializer's
max_age is a hard ceiling on top of that. Anything that fails to verify raises
TokenInvalid.
"""
import time
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import settings
from app.core.errors import TokenInvalid
from app.models.session import Session

REQUIRED_CLAIMS = ("session_id", "user_id", "category", "mode")


class ResultTokenService:
    def __init__(self, secret: str | None = None, max_age_seconds: int | None = None) -> None:
        self.serializer = URLSafeTimedSerializer(
            secret or settings.result_token_secret,
            salt="result-token",
        )
        self.max_age = max_age_seconds or settings.result_token_max_age_seconds

    def sign(self, claims: dict[str, Any], ttl_seconds: int | None = None) -> str:
        ttl = ttl_seconds if ttl_seconds is not None else settings.result_token_ttl_seconds
        ttl = min(ttl, self.max_age)
        payload = {key: claims.get(key) for key in (*REQUIRED_CLAIMS, "form_type")}
        payload["exp"] = int(time.time()) + ttl
        return self.serializer.dumps(payload)

    def sign_for_session(self, session: Session, ttl_seconds: int | None = None) -> str:
        return self.sign(
            {
                "session_id": session.id,
                "user_id": session.user_id,
                "category": session.category,
                "form_type": session.form_type,
                "mode": session.mode,
            },
            ttl_seconds,
        )

    def verify(self, token: str) -> dict[str, Any]:
        if not token:
            raise TokenInvalid("missing token")
        try:
            data = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired as e:
            raise TokenInvalid("token expired") from e
        except BadSignature as e:
            raise TokenInvalid("token signature invalid") from e
        if not isinstance(data, dict) or any(not data.get(key) for key in REQUIRED_CLAIMS):
            raise TokenInvalid("token payload malformed")
        exp = data.get("exp")
        if not isinstance(exp, int) or exp <= int(time.time()):
            raise TokenInvalid("token expired")
        return data
