"""Workflow error taxonomy and structured error response handlers.

Services raise the typed errors below; the HTTP layer turns every error,
whether a workflow error, a validation error or something unexpected, into:

    {
      "error": {
        "code": "DESCRIPTIVE_CODE",
        "message": "Human-readable explanation of what went wrong.",
        "request_id": "abc123...",
        ...extra fields when relevant
      }
    }
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# ── Workflow errors ───────────────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base class for errors surfaced by the approval and payout services."""

    code = "WORKFLOW_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidArgument(WorkflowError):
    """Malformed or missing input. Not retryable as-is."""

    code = "INVALID_ARGUMENT"
    status_code = 400


class Unauthorized(WorkflowError):
    """The acting organization is not in the request's required set."""

    code = "UNAUTHORIZED"
    status_code = 403


class NotFound(WorkflowError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidState(WorkflowError):
    """The operation is not valid in the request's current lifecycle state."""

    code = "INVALID_STATE"
    status_code = 409


class LedgerFailure(WorkflowError):
    """The ledger rejected or could not complete an operation. May be transient."""

    code = "LEDGER_FAILURE"
    status_code = 502

    def __init__(self, status: int, detail: str, operation: str | None = None):
        self.status = status
        self.detail = detail
        self.operation = operation
        prefix = f"Ledger {status}" if operation is None else f"Ledger {status} ({operation})"
        super().__init__(f"{prefix}: {detail}")


# ── HTTP translation ──────────────────────────────────────────────────────────


# Codes for errors raised by the framework itself (unknown route, wrong method).
_HTTP_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    415: "UNSUPPORTED_MEDIA_TYPE",
}


def _envelope(
    request: Request,
    status: int,
    code: str,
    message: str,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": getattr(request.state, "request_id", None),
    }
    error.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status, content={"error": error}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(WorkflowError)
    async def on_workflow_error(request: Request, exc: WorkflowError) -> JSONResponse:
        operation = None
        if isinstance(exc, LedgerFailure):
            operation = exc.operation
            logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return _envelope(request, exc.status_code, exc.code, exc.message, operation=operation)

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _envelope(
            request,
            exc.status_code,
            _HTTP_CODES.get(exc.status_code, "HTTP_ERROR"),
            str(exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def on_invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ]
        return _envelope(
            request,
            422,
            "VALIDATION_ERROR",
            f"Request failed validation ({len(details)} problem(s))",
            details=details,
        )

    @app.exception_handler(Exception)
    async def on_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error on %s %s (request_id=%s)",
            request.method, request.url.path, getattr(request.state, "request_id", None),
        )
        return _envelope(
            request,
            500,
            "INTERNAL_ERROR",
            "Unexpected server error; quote the request_id when reporting it.",
        )
