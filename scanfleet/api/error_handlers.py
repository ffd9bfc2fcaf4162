"""
Structured API error response handlers.

Wraps HTTPExceptions, request validation failures, scanfleet domain errors
and unhandled exceptions in one JSON envelope with a machine-readable code,
the request ID (if any) and a timestamp.

Response format:
    {
        "error": {
            "code": "SCAN_NOT_FOUND",
            "message": "Scan 'abc' not found",
            "status": 404,
            "request_id": "abc123...",
            "timestamp": 1718901234.56,
            "details": null
        }
    }

Usage:
    from scanfleet.api.error_handlers import install_error_handlers
    install_error_handlers(app)
"""
from __future__ import annotations

import time
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from scanfleet.errors import (
    NotFoundError,
    ProviderError,
    ScanFleetError,
    ValidationError,
)
from scanfleet.logconfig import get_module_logger

log = get_module_logger("api.errors")


# ── Error response schema ────────────────────────────────────────────

class ErrorDetail(BaseModel):
    """Structured error payload."""
    code: str
    message: str
    status: int
    request_id: str | None = None
    timestamp: float = 0.0
    details: Any | None = None


class ErrorResponse(BaseModel):
    """Envelope wrapping an ErrorDetail."""
    error: ErrorDetail


# ── HTTP status → error code mapping ─────────────────────────────────

_STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "PROVIDER_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _error_code_for(status: int, detail: str = "") -> str:
    detail_lower = detail.lower() if detail else ""
    if "scan" in detail_lower and status == 404:
        return "SCAN_NOT_FOUND"
    if "node" in detail_lower and status == 404:
        return "NODE_NOT_FOUND"
    return _STATUS_CODES.get(status, f"HTTP_{status}")


def _get_request_id(request: Request) -> str | None:
    rid = getattr(request.state, "request_id", None)
    if rid:
        return str(rid)
    return request.headers.get("x-request-id")


def _build_error_response(
    status: int,
    message: str,
    request: Request,
    details: Any = None,
    code: str | None = None,
) -> JSONResponse:
    """Build a structured JSON error response."""
    body = ErrorResponse(
        error=ErrorDetail(
            code=code or _error_code_for(status, message),
            message=message,
            status=status,
            request_id=_get_request_id(request),
            timestamp=time.time(),
            details=details,
        )
    )
    return JSONResponse(status_code=status, content=body.model_dump())


def status_for(exc: ScanFleetError) -> int:
    """HTTP status for a domain error."""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ProviderError):
        return 502
    return 500


# ── Exception handlers ───────────────────────────────────────────────

async def _http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _build_error_response(exc.status_code, detail, request)


async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Pydantic request validation errors."""
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", []))
        errors.append({"field": loc, "message": err.get("msg", ""),
                       "type": err.get("type", "")})
    return _build_error_response(
        422,
        "Request validation failed",
        request,
        details=errors,
        code="VALIDATION_ERROR",
    )


async def _domain_exception_handler(
    request: Request, exc: ScanFleetError
) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        log.error("%s on %s %s: %s", type(exc).__name__, request.method,
                  request.url.path, exc)
    return _build_error_response(status, str(exc), request)


async def _unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all; returns 500 without leaking internals."""
    log.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _build_error_response(500, "Internal server error", request)


# ── Installer ────────────────────────────────────────────────────────

def install_error_handlers(app: FastAPI) -> None:
    """Register structured error handlers on the FastAPI application."""
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(ScanFleetError, _domain_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
    log.debug("Structured API error handlers installed")
