"""Domain error taxonomy shared by services and the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class TunecraftError(RuntimeError):
    """Base error carrying a stable machine-readable kind and an HTTP status."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})


class ValidationError(TunecraftError):
    kind = "validation_error"
    status_code = 400


class InsufficientCreditsError(TunecraftError):
    """Raised when a reservation would drive a credit balance below zero."""

    kind = "insufficient_credits"
    status_code = 400

    def __init__(self, *, required: int, available: Optional[int] = None) -> None:
        super().__init__(
            f"Insufficient credits. You need at least {required} credits.",
            details={"required": required, "available": available},
        )
        self.required = required
        self.available = available


class NotFoundError(TunecraftError):
    kind = "not_found"
    status_code = 404


class PermissionDeniedError(TunecraftError):
    kind = "permission_denied"
    status_code = 403


class ConflictError(TunecraftError):
    kind = "conflict"
    status_code = 400


class AuthenticationError(TunecraftError):
    kind = "authentication_failed"
    status_code = 401


class AccountLockedError(TunecraftError):
    kind = "account_locked"
    status_code = 423


class ProviderError(TunecraftError):
    """Upstream generation provider failure; never wraps raw transport exceptions."""

    kind = "provider_error"

    def __init__(self, message: str, *, http_status: Optional[int] = None, timed_out: bool = False) -> None:
        super().__init__(message, details={"http_status": http_status, "timed_out": timed_out})
        self.http_status = http_status
        self.timed_out = timed_out
        if timed_out:
            self.status_code = 504
        elif http_status is not None:
            self.status_code = 502
        else:
            self.status_code = 500
