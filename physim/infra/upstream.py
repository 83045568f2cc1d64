"""Classification des échecs amont (HTTP brut ou SDK OpenAI) en `GenerationError`.

Les clients de génération et d'embedding convertissent toute exception de transport en une
erreur classifiée; la décision de retry appartient ensuite à `RetryExecutor`.
"""

from __future__ import annotations

import httpx
import openai

from physim.domain.errors import ErrorKind, GenerationError

HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_UNAUTHORIZED = 401
HTTP_STATUS_FORBIDDEN = 403
HTTP_STATUS_REQUEST_TIMEOUT = 408
HTTP_STATUS_TOO_MANY_REQUESTS = 429
HTTP_STATUS_SERVER_ERROR_MIN = 500
HTTP_STATUS_SERVER_ERROR_MAX = 600


def kind_for_status(status_code: int) -> ErrorKind | None:
    """Type d'erreur pour un code HTTP; None pour un succès (2xx/3xx)."""
    if status_code < HTTP_STATUS_BAD_REQUEST:
        return None
    if status_code == HTTP_STATUS_TOO_MANY_REQUESTS:
        return ErrorKind.RATE_LIMITED
    if status_code == HTTP_STATUS_REQUEST_TIMEOUT:
        return ErrorKind.TIMEOUT
    if status_code == HTTP_STATUS_UNAUTHORIZED:
        return ErrorKind.UNAUTHORIZED
    if status_code == HTTP_STATUS_FORBIDDEN:
        return ErrorKind.FORBIDDEN
    if HTTP_STATUS_SERVER_ERROR_MIN <= status_code < HTTP_STATUS_SERVER_ERROR_MAX:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.BAD_REQUEST


def classify_exception(exc: BaseException) -> GenerationError:
    """Convertit une exception de transport en erreur classifiée."""
    if isinstance(exc, GenerationError):
        return exc
    # openai.APITimeoutError hérite d'APIConnectionError: tester d'abord le timeout
    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException, TimeoutError)):
        return GenerationError(ErrorKind.TIMEOUT, str(exc) or "timeout")
    if isinstance(exc, openai.APIStatusError):
        kind = kind_for_status(exc.status_code) or ErrorKind.SERVER_ERROR
        return GenerationError(kind, f"upstream status {exc.status_code}")
    if isinstance(exc, httpx.HTTPStatusError):
        kind = kind_for_status(exc.response.status_code) or ErrorKind.SERVER_ERROR
        return GenerationError(kind, f"upstream status {exc.response.status_code}")
    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError)):
        return GenerationError(ErrorKind.SERVER_ERROR, f"connection error: {exc}")
    return GenerationError(ErrorKind.SERVER_ERROR, f"{type(exc).__name__}: {exc}")
