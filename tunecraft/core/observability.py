"""Observability bootstrap helpers."""

from __future__ import annotations

from contextlib import contextmanager

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from tunecraft.core.config import get_settings
from tunecraft.core.logger import get_logger


_SENTRY_INITIALIZED = False


def init_sentry() -> bool:
    """Initialize Sentry once when DSN is configured."""

    global _SENTRY_INITIALIZED
    if _SENTRY_INITIALIZED:
        return True

    settings = get_settings()
    dsn = settings.sentry_dsn.strip()
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=settings.env,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        integrations=[FastApiIntegration()],
    )
    _SENTRY_INITIALIZED = True
    get_logger("tunecraft.observability").info(
        "sentry_initialized",
        env=settings.env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True


@contextmanager
def sentry_scope(*, user_id: str | None = None, request_id: str | None = None):
    """Create a temporary Sentry scope with request/user context."""

    if not _SENTRY_INITIALIZED:
        yield
        return

    with sentry_sdk.new_scope() as scope:
        if user_id:
            scope.set_tag("user_id", user_id)
        if request_id:
            scope.set_tag("request_id", request_id)
        yield


def capture_exception(exc: BaseException) -> None:
    if not _SENTRY_INITIALIZED:
        return
    sentry_sdk.capture_exception(exc)


def reset_observability_for_tests() -> None:
    global _SENTRY_INITIALIZED
    _SENTRY_INITIALIZED = False
