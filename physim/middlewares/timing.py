"""Middleware de chronométrage et de journal d'accès.

Chaque réponse porte `X-Process-Time-ms`; une ligne `request_completed` est journalisée avec la
méthode, le gabarit de route, le statut et la durée (jamais le corps de la requête).
"""

import time
from collections.abc import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

_SILENT_PATHS = frozenset({"/health", "/metrics"})


class TimingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, header_name: str = "X-Process-Time-ms") -> None:
        super().__init__(app)
        self.header_name = header_name
        self._log = structlog.get_logger("physim.access")

    async def dispatch(self, request, call_next: Callable):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        response.headers[self.header_name] = str(duration_ms)
        route = getattr(request.scope.get("route"), "path", None) or request.url.path
        if route not in _SILENT_PATHS:
            self._log.info(
                "request_completed",
                method=request.method,
                route=route,
                status=response.status_code,
                duration_ms=duration_ms,
            )
        return response
