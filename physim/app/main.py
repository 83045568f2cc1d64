"""
Application principale FastAPI.

Assemble logging, tracing, middlewares (request id, timing, Prometheus), enveloppes d'erreur et
routes (simulations, jobs, opérateur, santé, métriques).
"""

from __future__ import annotations

from fastapi import FastAPI

from physim.api.errors import register_error_handlers
from physim.api.routes_admin import router as admin_router
from physim.api.routes_health import router as health_router
from physim.api.routes_simulations import router as simulations_router
from physim.app.metrics import PrometheusMiddleware, metrics_router
from physim.app.tracing import setup_tracing
from physim.core.container import container
from physim.core.logging import setup_logging
from physim.middlewares.request_id import RequestIDMiddleware
from physim.middlewares.timing import TimingMiddleware


def create_app() -> FastAPI:
    """
    Construit et retourne l'application FastAPI prête à l'usage.

    Étapes:
    - Configure le logging structuré (structlog) et le tracing OTLP éventuel
    - Ajoute les middlewares de traçabilité et de métriques
    - Publie les routes
    """
    settings = container.settings
    setup_logging(json_logs=settings.APP_ENV != "dev")
    setup_tracing(settings)
    app = FastAPI(title=settings.APP_NAME, debug=settings.APP_DEBUG)
    # ordre d'ajout inverse de l'ordre d'exécution: RequestID s'exécute en premier
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(simulations_router)
    app.include_router(admin_router)
    app.include_router(metrics_router)
    return app


app = create_app()
