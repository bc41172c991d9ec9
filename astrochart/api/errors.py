"""Gestion standardisée des erreurs API avec enveloppes d'erreur.

Ce module traduit les erreurs du pipeline de thèmes en réponses JSON `{code, message, trace_id,
details}` avec un statut HTTP cohérent, et installe les gestionnaires d'exceptions sur l'app.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from astrochart.core.http_constants import (
    HTTP_BAD_GATEWAY,
    HTTP_SERVICE_UNAVAILABLE,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNPROCESSABLE_ENTITY,
)
from astrochart.domain.errors import (
    ChartPipelineError,
    ConnectivityRequired,
    RateLimited,
    RateLimitedByServer,
)

log = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


@dataclass
class ErrorEnvelope:
    """Standard error envelope for API responses."""

    code: str
    message: str
    trace_id: str | None = None
    details: dict[str, Any] | None = None


def create_error_response(
    status_code: int,
    code: str,
    message: str,
    trace_id: str | None = None,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    envelope = ErrorEnvelope(code=code, message=message, trace_id=trace_id, details=details)
    return JSONResponse(
        status_code=status_code,
        content={
            "code": envelope.code,
            "message": envelope.message,
            "trace_id": envelope.trace_id,
            **({"details": envelope.details} if envelope.details else {}),
        },
        headers=headers,
    )


def extract_trace_id(request: Request) -> str | None:
    """Extract trace ID from request headers or request state."""
    trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
    if trace_id:
        return trace_id
    return getattr(request.state, "trace_id", None)


def status_for(exc: ChartPipelineError) -> int:
    """Statut HTTP d'une erreur du pipeline."""
    if isinstance(exc, ConnectivityRequired):
        return HTTP_SERVICE_UNAVAILABLE
    if isinstance(exc, RateLimited | RateLimitedByServer):
        return HTTP_TOO_MANY_REQUESTS
    # Erreurs fournisseur et réponses non mappables: échec en amont.
    return HTTP_BAD_GATEWAY


def handle_pipeline_error(request: Request, exc: ChartPipelineError) -> JSONResponse:
    trace_id = extract_trace_id(request)
    status_code = status_for(exc)
    log.warning(
        "Chart pipeline error",
        extra={
            "code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "trace_id": trace_id,
        },
    )
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(math.ceil(retry_after))}
    return create_error_response(
        status_code=status_code,
        code=exc.code,
        message=exc.message,
        trace_id=trace_id,
        details=exc.details or None,
        headers=headers,
    )


def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with standard envelope."""
    return create_error_response(
        status_code=exc.status_code,
        code=_HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail),
        trace_id=extract_trace_id(request),
    )


def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()
    ]
    return create_error_response(
        status_code=HTTP_UNPROCESSABLE_ENTITY,
        code="VALIDATION_ERROR",
        message="Invalid request",
        trace_id=extract_trace_id(request),
        details={"errors": errors},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ChartPipelineError, handle_pipeline_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
