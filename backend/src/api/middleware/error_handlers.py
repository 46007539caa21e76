"""FastAPI exception handlers aligned with HTTP API contract."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Type

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...services.errors import (
    ConfigurationError,
    ConflictError,
    MapEngineError,
    NoProvidersAvailableError,
    NotFoundError,
    ParseError,
    UnknownProviderError,
    UnknownTemplateError,
    UnsupportedComplexityError,
    UpstreamProviderError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_ERRORS: Dict[int, Tuple[str, str]] = {
    status.HTTP_400_BAD_REQUEST: ("validation_error", "Invalid request payload"),
    status.HTTP_404_NOT_FOUND: ("not_found", "Resource not found"),
    status.HTTP_409_CONFLICT: ("version_conflict", "Resource version conflict"),
    status.HTTP_412_PRECONDITION_FAILED: ("configuration_error", "Missing configuration"),
    status.HTTP_500_INTERNAL_SERVER_ERROR: ("internal_error", "Internal server error"),
    status.HTTP_502_BAD_GATEWAY: ("upstream_error", "AI provider request failed"),
    status.HTTP_503_SERVICE_UNAVAILABLE: ("no_providers", "No AI providers available"),
}

# Checked in order; subclasses must precede their bases.
ENGINE_ERRORS: Tuple[Tuple[Type[MapEngineError], int, str], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (ConfigurationError, status.HTTP_412_PRECONDITION_FAILED, "configuration_error"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (UnknownProviderError, status.HTTP_400_BAD_REQUEST, "unknown_provider"),
    (UnsupportedComplexityError, status.HTTP_400_BAD_REQUEST, "unsupported_complexity"),
    (UnknownTemplateError, status.HTTP_400_BAD_REQUEST, "unknown_template"),
    (ConflictError, status.HTTP_409_CONFLICT, "version_conflict"),
    (ParseError, status.HTTP_502_BAD_GATEWAY, "parse_error"),
    (UpstreamProviderError, status.HTTP_502_BAD_GATEWAY, "upstream_error"),
    (NoProvidersAvailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "no_providers"),
)


def _normalize_error(
    status_code: int, detail: Any
) -> Tuple[str, str, Optional[Dict[str, Any]]]:
    default_error, default_message = DEFAULT_ERRORS.get(
        status_code, DEFAULT_ERRORS[status.HTTP_500_INTERNAL_SERVER_ERROR]
    )
    if isinstance(detail, dict):
        error = detail.get("error", default_error)
        message = detail.get("message", default_message)
        detail_payload = detail.get("detail")
        if detail_payload is None:
            remainder = {
                k: v for k, v in detail.items() if k not in {"error", "message", "detail"}
            }
            detail_payload = remainder or None
        return error, message, detail_payload
    if isinstance(detail, str) and detail:
        return default_error, detail, None
    return default_error, default_message, None


def _response(status_code: int, detail: Any) -> JSONResponse:
    error, message, extra = _normalize_error(status_code, detail)
    return JSONResponse(
        status_code=status_code, content={"error": error, "message": message, "detail": extra}
    )


def classify_engine_error(exc: MapEngineError) -> Tuple[int, str]:
    """Return the HTTP status and error code for an engine failure."""
    for error_cls, status_code, code in ENGINE_ERRORS:
        if isinstance(exc, error_cls):
            return status_code, code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error"


async def engine_exception_handler(request: Request, exc: MapEngineError) -> JSONResponse:
    status_code, code = classify_engine_error(exc)
    detail: Dict[str, Any] = dict(exc.details)
    if isinstance(exc, ParseError) and exc.errors:
        detail["errors"] = exc.errors
    if status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}", extra={"path": request.url.path})
    else:
        logger.info(f"{type(exc).__name__}: {exc.message}", extra={"path": request.url.path})
    return _response(
        status_code, {"error": code, "message": exc.message, "detail": detail or None}
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    detail = {"detail": {"errors": exc.errors()}}
    return _response(status.HTTP_400_BAD_REQUEST, detail)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return _response(exc.status_code, exc.detail)


async def internal_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception: %s", exc)
    return _response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.args[0] if exc.args else None)


def register_error_handlers(app: FastAPI) -> None:
    """Attach shared exception handlers to the FastAPI application."""
    app.add_exception_handler(MapEngineError, engine_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, internal_exception_handler)


__all__ = [
    "ENGINE_ERRORS",
    "classify_engine_error",
    "register_error_handlers",
    "engine_exception_handler",
    "validation_exception_handler",
    "http_exception_handler",
    "internal_exception_handler",
]
