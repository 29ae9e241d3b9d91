"""JWT issue/verify primitives for user authentication."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from tunecraft.core.config import get_settings
from tunecraft.core.errors import AuthenticationError


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    email: str


def create_access_token(context: AuthContext) -> tuple[str, int]:
    settings = get_settings()
    expires_in = settings.access_token_exp_minutes * 60
    now = datetime.now(timezone.utc)
    payload = {
        "sub": context.user_id,
        "email": context.email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, expires_in


def decode_access_token(token: str) -> AuthContext:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
        return AuthContext(
            user_id=str(payload["sub"]),
            email=str(payload.get("email", "")),
        )
    except (jwt.PyJWTError, KeyError) as exc:
        raise AuthenticationError("Invalid or expired token") from exc
