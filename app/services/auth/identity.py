"""
Caller identity from bearer JWTs issued by the login service.
Only verification lives here; issuing tokens belongs to the identity provider.
"""
import hmac

from fastapi import Header
from jose import JWTError, jwt

from app.core.config import settings
from app.core.errors import AuthenticationFailure


def decode_access_token(token: str) -> dict:
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationFailure("invalid access token") from e
    if not claims.get("sub"):
        raise AuthenticationFailure("access token has no subject")
    return claims


def get_current_user_id(authorization: str | None = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthenticationFailure("missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    return str(decode_access_token(token)["sub"])


def require_admin(x_admin_key: str | None = Header(default=None)) -> None:
    expected = settings.admin_api_key
    if not expected or not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise AuthenticationFailure("unauthorized")
