from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from safeharbor.apps.api.errors import (
    safeharbor_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from safeharbor.apps.api.routes.auth import router as auth_router
from safeharbor.core.config import get_settings
from safeharbor.core.errors import SafeHarborError
from safeharbor.core.logging import configure_logging
from safeharbor.persistence.object_store import ObjectStore
from safeharbor.services.auth.email_tokens import EmailVerifier
from safeharbor.services.auth.sessions import SessionManager


logger = logging.getLogger(__name__)


def create_app(
    store: ObjectStore | None = None,
    sessions: SessionManager | None = None,
    verifier: EmailVerifier | None = None,
) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="SafeHarbor API")

    # One store and one session table per process, shared by all requests.
    app.state.store = store or ObjectStore(lock_timeout_s=settings.lock_timeout_s)
    app.state.sessions = sessions or SessionManager.from_settings(app.state.store, settings)
    app.state.verifier = verifier or EmailVerifier(
        app.state.store,
        app.state.sessions,
        None,
        ttl_hours=settings.email_token_ttl_hours,
        base_url=settings.public_base_url,
        perform_verification=settings.perform_email_verification,
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed path=%s status=%s latency_ms=%.1f",
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(SafeHarborError)
    async def _safeharbor_exception_handler(request: Request, exc: SafeHarborError):
        return await safeharbor_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(auth_router)
    return app
