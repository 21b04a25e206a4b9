"""Translate exceptions into the ``{success: false, error, details?}`` envelope at the HTTP boundary."""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from studio.core.exceptions import AppError, RateLimited, TokenError, Unauthenticated
from studio.storage.errors import ConstraintViolation

logger = logging.getLogger(__name__)


def error_response(
    status_code: int,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": message}
    if details:
        body["details"] = details
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _field_errors(exc: RequestValidationError) -> dict[str, list[str]]:
    """Group pydantic errors by dotted field path, dropping the body/query prefix."""
    fields: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        key = ".".join(loc) or "_"
        ctx = err.get("ctx") or {}
        if ctx.get("problems"):
            fields.setdefault(key, []).extend(str(problem) for problem in ctx["problems"])
            continue
        message = str(err.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        fields.setdefault(key, []).append(message)
    return fields


def register_exception_handlers(app: FastAPI, *, debug: bool = False) -> None:
    """Install handlers for domain, validation, storage and unexpected errors."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        log_fn = logger.error if exc.status_code >= 500 else logger.info
        log_fn(
            "%s %s -> %s %s: %s",
            request.method,
            request.url.path,
            exc.status_code,
            type(exc).__name__,
            exc.message,
        )
        headers = None
        extra: dict[str, Any] = {}
        message = exc.message
        if isinstance(exc, TokenError):
            # One message for every token failure: no signature/expiry oracle.
            message = TokenError.default_message
        if isinstance(exc, Unauthenticated):
            headers = {"WWW-Authenticate": "Bearer"}
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(exc.retry_after)}
            extra["retryAfter"] = exc.retry_after
        return error_response(exc.status_code, message, exc.details, headers, **extra)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = _field_errors(exc)
        logger.info("%s %s -> 400 validation: %s", request.method, request.url.path, list(details))
        return error_response(400, "Validation failed", details)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation) -> JSONResponse:
        logger.warning(
            "%s %s -> 409 constraint violation: %s", request.method, request.url.path, exc.message
        )
        return error_response(409, "Resource already exists", exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code == 404 and message == "Not Found":
            message = "Route not found"
        return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc if debug else None,
        )
        message = str(exc) if debug and str(exc) else "Internal server error"
        return error_response(500, message)
