from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from safeharbor.core.errors import (
    AlreadyExistsError,
    CollaboratorError,
    ForbiddenError,
    InternalError,
    LockTimeoutError,
    NotFoundError,
    ReferentialIntegrityError,
    SafeHarborError,
    UnauthorizedError,
    ValidationError,
)


logger = logging.getLogger(__name__)

# Most specific class first; InvalidActionError falls under ValidationError.
_STATUS_BY_ERROR: tuple[tuple[type[SafeHarborError], int], ...] = (
    (NotFoundError, 400),
    (ValidationError, 400),
    (UnauthorizedError, 401),
    (ForbiddenError, 403),
    (AlreadyExistsError, 409),
    (ReferentialIntegrityError, 409),
    (CollaboratorError, 502),
    (LockTimeoutError, 503),
    (InternalError, 500),
)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


class ResponseMeta(BaseModel):
    request_id: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


def get_request_id(request: Request) -> str:
    # Reuse the id assigned by the middleware, or the caller's header.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    return request_id


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta = ResponseMeta(request_id=get_request_id(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}


def status_for(exc: SafeHarborError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def safeharbor_exception_handler(request: Request, exc: SafeHarborError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("request_failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    payload = error_response(request=request, code=exc.code, message=exc.message)
    return JSONResponse(content=payload, status_code=status_code)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _DEFAULT_ERROR_CODES.get(exc.status_code, "UNKNOWN_ERROR")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # No stack traces on the wire; the log keeps them.
    logger.exception("request_unhandled_error path=%s", request.url.path)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
