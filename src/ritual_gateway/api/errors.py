"""
Error envelope rendering and FastAPI exception handlers.

Every error response has the same shape:
    {"success": false, "error": <code>, "message": <text>, "details"?: ...}

Middleware cannot rely on these handlers (Starlette runs them inside the
router), so middleware calls error_response() directly.
"""

import logging
import math

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from ..errors import (
    ApiError,
    EndpointNotFound,
    InternalError,
    MethodNotAllowed,
    ValidationError,
)

logger = logging.getLogger(__name__)


def error_response(error: ApiError, headers: dict[str, str] | None = None) -> JSONResponse:
    """Render an ApiError as the error envelope."""
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers=headers,
    )


def _request_validation_details(exc: RequestValidationError) -> list[dict[str, str]]:
    details = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(loc) or "body", "message": err.get("msg", "")})
    return details


async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[Gateway] {request.method} {request.url.path} -> {exc.code}: {exc.message}")
    else:
        logger.info(f"[Gateway] {request.method} {request.url.path} -> {exc.code}")
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(max(1, math.ceil(retry_after)))}
    return error_response(exc, headers=headers)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError("Invalid input data", details=_request_validation_details(exc))
    return error_response(error)


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        error: ApiError = EndpointNotFound()
    elif exc.status_code == 405:
        error = MethodNotAllowed()
    else:
        error = ApiError(str(exc.detail))
        error.status_code = exc.status_code
        error.code = "http_error"
    return error_response(error, headers=getattr(exc, "headers", None))


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """Innermost middleware: anything the handlers above did not render is a 500 envelope."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception(
                f"[Gateway] Unhandled error on {request.method} {request.url.path}"
            )
            return error_response(InternalError())


def install_exception_handlers(app: FastAPI) -> None:
    """Register the envelope renderers on app."""
    app.add_exception_handler(ApiError, _handle_api_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
