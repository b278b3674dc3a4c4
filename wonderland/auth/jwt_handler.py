from datetime import datetime, timedelta, timezone

import jwt
from pydantic import BaseModel

from wonderland.core import config


class IdentityClaims(BaseModel):
    email: str
    name: str | None = None


def _signing_key() -> str:
    if not config.JWT_SECRET_KEY:
        raise RuntimeError("JWT_SECRET_KEY is not configured.")
    return config.JWT_SECRET_KEY


def issue_token(claims: IdentityClaims, expires_delta: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=config.JWT_EXPIRES_MINUTES))
    payload = {"sub": claims.email, "iat": now, "exp": expire}
    if claims.name is not None:
        payload["name"] = claims.name
    return jwt.encode(payload, _signing_key(), algorithm=config.JWT_ALGORITHM)


def verify_token(token: str) -> IdentityClaims:
    """Decode a session token.

    Raises ``jwt.InvalidTokenError`` (or a subclass such as
    ``jwt.ExpiredSignatureError``) for malformed, tampered or expired tokens.
    """
    payload = jwt.decode(
        token,
        _signing_key(),
        algorithms=[config.JWT_ALGORITHM],
        options={"require": ["sub", "exp", "iat"]},
    )
    return IdentityClaims(email=payload["sub"], name=payload.get("name"))
