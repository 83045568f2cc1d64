"""Enveloppes d'erreur standardisées `{code, message, trace_id}`.

Les messages exposés sont toujours non techniques; le détail (type d'exception, cause) ne va que
dans les logs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from physim.domain.errors import USER_MESSAGES, JobNotFoundError

log = structlog.get_logger(__name__)

# ErrorResult.error -> (statut HTTP, code d'enveloppe)
SUBMIT_ERROR_STATUS: dict[str, tuple[int, str]] = {
    "input": (400, "INPUT_ERROR"),
    "upstream_permanent": (422, "UPSTREAM_REJECTED"),
    "invalid_output": (502, "INVALID_OUTPUT"),
    "upstream_unavailable": (503, "SERVICE_UNAVAILABLE"),
}

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


@dataclass
class ErrorEnvelope:
    """Standard error envelope for API responses."""

    code: str
    message: str
    trace_id: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code, "message": self.message, "trace_id": self.trace_id}
        if self.details:
            body["details"] = self.details
        return body


class APIError(HTTPException):
    """Erreur API portant déjà son code d'enveloppe."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.details = details


def extract_trace_id(request: Request) -> str | None:
    """Identifiant posé par `RequestIDMiddleware` (ou en-tête `X-Trace-ID`)."""
    trace_id = request.headers.get("X-Trace-ID")
    if trace_id:
        return trace_id
    return getattr(request.state, "trace_id", None)


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(code, message, extract_trace_id(request), details)
    return JSONResponse(status_code=status_code, content=envelope.to_dict())


def handle_api_error(request: Request, exc: APIError) -> JSONResponse:
    log.info("api_error", code=exc.code, status_code=exc.status_code)
    return error_response(request, exc.status_code, exc.code, exc.message, exc.details)


def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
    return error_response(request, exc.status_code, code, str(exc.detail))


def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    log.info("request_validation_failed", fields=fields)
    return error_response(
        request, 400, "INPUT_ERROR", USER_MESSAGES["input"], {"fields": fields}
    )


def handle_job_not_found(request: Request, exc: JobNotFoundError) -> JSONResponse:
    return error_response(request, 404, "NOT_FOUND", USER_MESSAGES["job_not_found"])


def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
    log.error("unexpected_error", exception_type=type(exc).__name__, exc_info=exc)
    return error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred.")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, handle_api_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(JobNotFoundError, handle_job_not_found)
    app.add_exception_handler(Exception, handle_generic_exception)
