from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt
from app.config import settings

JWT_ALG = "HS256"
ACCESS_TTL_MIN = 60

def make_access_token(sub: str, email: str | None = None, ttl_min: int = ACCESS_TTL_MIN) -> str:
    """Issue an identity token the way the identity provider does (used by dev tooling and tests)."""
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": sub,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl_min)).timestamp()),
    }
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALG)

def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[JWT_ALG],
        audience=settings.jwt_audience,
        options={"verify_aud": settings.jwt_audience is not None},
    )
