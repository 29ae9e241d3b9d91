"""FastAPI application entrypoint for the tunecraft backend."""

from __future__ import annotations

from pathlib import Path
import traceback
from time import perf_counter
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from tunecraft.account.router import router as account_router
from tunecraft.auth.middleware import AUTH_CONTEXT_KEY, resolve_request_auth_context
from tunecraft.auth.router import router as auth_router
from tunecraft.core.config import get_settings
from tunecraft.core.errors import NotFoundError, ProviderError, TunecraftError
from tunecraft.core.logger import bind_request_context, clear_request_context, get_logger
from tunecraft.core.metrics import record_http_request, render_prometheus_metrics
from tunecraft.core.observability import capture_exception, init_sentry, sentry_scope
from tunecraft.generation.router import router as generation_router
from tunecraft.jobs.assets import asset_storage_root
from tunecraft.jobs.router import router as jobs_router
from tunecraft.providers import get_generation_provider
from tunecraft.storage.db import load_models
from tunecraft.storage.db import test_connection as test_db_connection
from tunecraft.webhooks.router import router as webhooks_router
from tunecraft.workspaces.router import router as workspaces_router


settings = get_settings()
logger = get_logger("tunecraft.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


def _error_body(
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    exc: Optional[BaseException] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": error, "message": message}
    if details:
        body["details"] = details
    if exc is not None and not get_settings().is_production:
        body["traceback"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return body


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    auth_context = resolve_request_auth_context(request)
    setattr(request.state, AUTH_CONTEXT_KEY, auth_context)

    user_id = auth_context.user_id if auth_context is not None else None
    bind_request_context(request_id=request_id, user_id=user_id)

    status_code = 500
    try:
        with sentry_scope(user_id=user_id, request_id=request_id):
            response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        duration = perf_counter() - started_at
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=duration,
            )
        clear_request_context()

    response.headers["x-request-id"] = request_id
    return response


@app.exception_handler(TunecraftError)
async def tunecraft_error_handler(request: Request, exc: TunecraftError) -> JSONResponse:
    if exc.status_code >= 500:
        capture_exception(exc)
        logger.error("request_failed", path=request.url.path, error=exc.kind, message=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, error=exc.kind, status_code=exc.status_code)
    details = dict(exc.details)
    if isinstance(exc, ProviderError) and exc.http_status is not None:
        details.setdefault("provider_status", exc.http_status)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            error=exc.kind,
            message=exc.message,
            details=details,
            exc=exc if exc.status_code >= 500 else None,
        ),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in item.get("loc", ()) if part != "body"), "message": item.get("msg")}
        for item in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=_error_body(error="validation_error", message="Validation failed", details={"errors": errors}),
    )


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    sentry_enabled = init_sentry()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        provider=settings.generation_provider,
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
    )


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    payload = {
        "status": "ok" if db_ok else "degraded",
        "env": settings.env,
        "services": {
            "database": {"ok": db_ok, "error": db_error},
        },
    }
    return JSONResponse(content=payload, status_code=200 if db_ok else 503)


@app.get("/health/provider")
def provider_health() -> JSONResponse:
    provider = get_generation_provider()
    try:
        credits = provider.get_credits()
    except ProviderError as exc:
        logger.warning("provider_health_failed", provider=provider.provider_name, error=exc.message)
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "provider": provider.provider_name, "error": exc.message},
        )
    return JSONResponse(content={"status": "ok", "provider": provider.provider_name, "credits": credits})


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


@app.get("/generated-music/{filename}")
def generated_asset(filename: str) -> FileResponse:
    root = asset_storage_root().resolve()
    candidate = (root / filename).resolve()
    if candidate.parent != root or not candidate.is_file():
        raise NotFoundError("Asset not found", details={"filename": filename})
    return FileResponse(candidate, filename=Path(candidate).name)


app.include_router(auth_router)
app.include_router(account_router)
app.include_router(generation_router)
app.include_router(jobs_router)
app.include_router(workspaces_router)
app.include_router(webhooks_router)
