from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from schoolhub.apps.api.errors import (
    http_exception_handler,
    integration_unavailable_exception_handler,
    media_storage_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from schoolhub.apps.api.response import API_VERSION
from schoolhub.apps.api.routes.admin import router as admin_router
from schoolhub.apps.api.routes.feed import router as feed_router
from schoolhub.apps.api.routes.health import router as health_router
from schoolhub.apps.api.routes.media import router as media_router
from schoolhub.apps.api.routes.messages import router as messages_router
from schoolhub.core.config import get_settings
from schoolhub.core.errors import IntegrationUnavailableError, MediaStorageError
from schoolhub.core.logging import configure_logging
from schoolhub.services.telemetry import record_request


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="SchoolHub API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        record_request(path=request.url.path, status_code=response.status_code, latency_ms=latency_ms)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(MediaStorageError)
    async def _media_storage_exception_handler(request: Request, exc: MediaStorageError):
        return await media_storage_exception_handler(request, exc)

    @app.exception_handler(IntegrationUnavailableError)
    async def _integration_unavailable_exception_handler(request: Request, exc: IntegrationUnavailableError):
        return await integration_unavailable_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    # Probes hit the bare path; clients use the versioned routes.
    app.include_router(health_router)
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(media_router, prefix=f"/{API_VERSION}")
    app.include_router(feed_router, prefix=f"/{API_VERSION}")
    app.include_router(messages_router, prefix=f"/{API_VERSION}")
    app.include_router(admin_router, prefix=f"/{API_VERSION}")

    logger.info("api_started env=%s media_storage=%s", settings.app_env, bool(settings.media_service_url))
    return app


app = create_app()
