"""FastAPI dependencies for authentication."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from tunecraft.auth.jwt import AuthContext
from tunecraft.auth.middleware import AUTH_CONTEXT_KEY
from tunecraft.core.errors import AuthenticationError


def get_optional_auth_context(request: Request) -> Optional[AuthContext]:
    return getattr(request.state, AUTH_CONTEXT_KEY, None)


def require_auth_context(auth: Optional[AuthContext] = Depends(get_optional_auth_context)) -> AuthContext:
    if auth is None:
        raise AuthenticationError("Authentication required")
    return auth
