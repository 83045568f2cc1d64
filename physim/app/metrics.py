"""
Métriques Prometheus pour l'application.

Ce module définit toutes les métriques Prometheus utilisées pour le monitoring du coeur
d'orchestration (cache, circuit breaker, retries, jobs, validation) et expose `/metrics`.
"""

import time

from fastapi import APIRouter, Request
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

metrics_router = APIRouter()

REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "route", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "Latency of HTTP requests", ["route"]
)

# Similarity cache
CACHE_LOOKUPS = Counter(
    "simcache_lookups_total",
    "Similarity cache lookups",
    ["result", "mode"],
)
CACHE_EVICTIONS = Counter(
    "simcache_evictions_total",
    "Entries removed from the similarity cache",
    ["reason"],
)
CACHE_SIZE = Gauge(
    "simcache_entries",
    "Current number of entries in the similarity cache",
    ["kind"],
)
CACHE_LOOKUP_LATENCY = Histogram(
    "simcache_lookup_seconds",
    "Latency of similarity cache lookups",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1],
)

# Circuit breaker
BREAKER_TRANSITIONS = Counter(
    "breaker_transitions_total",
    "Circuit breaker state transitions",
    ["from_state", "to_state"],
)
BREAKER_STATE = Gauge(
    "breaker_state",
    "Current circuit breaker state (0=closed, 1=half_open, 2=open)",
)

# Retry executor
RETRY_ATTEMPTS = Counter(
    "generation_retry_attempts_total",
    "Retries scheduled by the retry executor",
    ["kind"],
)

# Generation / requests
SUBMIT_OUTCOMES = Counter(
    "submit_outcomes_total",
    "Outcome of synchronous submit calls",
    ["outcome"],
)
GENERATION_LATENCY = Histogram(
    "generation_latency_seconds",
    "Latency of generation round-trips (all retries included)",
    ["mode"],
    buckets=[0.25, 0.5, 1.0, 2.0, 4.0, 5.0, 8.0, 16.0],
)

# Jobs
JOB_TERMINAL = Counter(
    "jobs_terminal_total",
    "Jobs reaching a terminal state",
    ["status"],
)
JOB_ATTEMPTS = Counter(
    "jobs_attempts_total",
    "Job-level processing attempts",
    ["result"],
)
DLQ_TOTAL = Counter(
    "jobs_dead_letter_total",
    "Dead-letter records appended",
    ["reason"],
)
JOB_CLAIMS = Counter(
    "jobs_claims_total",
    "Worker claim attempts on jobs",
    ["result"],
)
MANIFESTS_GENERATED = Counter(
    "manifests_generated_total",
    "Validated manifests produced by the generation backend",
    ["physics_type", "mode"],
)

# Validation
VALIDATION_ISSUES = Counter(
    "manifest_validation_issues_total",
    "Validation warnings and errors",
    ["severity", "code"],
)

_BREAKER_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


def _normalize_allowed(allowed: list[str] | str | None) -> list[str]:
    """Normalize allowed values from settings (list or CSV string)."""
    if not allowed:
        return []
    if isinstance(allowed, list):
        if len(allowed) == 1 and "," in (allowed[0] or ""):
            return [s.strip() for s in allowed[0].split(",") if s.strip()]
        return [str(x).strip() for x in allowed if str(x).strip()]
    return [s.strip() for s in str(allowed).split(",") if s.strip()]


def labelize(value: str | None, allowed: list[str] | str | None) -> str:
    """Project a label value through a whitelist; otherwise 'unknown'."""
    vals = set(_normalize_allowed(allowed))
    if not vals:
        return value or "unknown"
    return (value or "").strip() if (value or "").strip() in vals else "unknown"


def record_event(event: str, fields: dict) -> None:
    """Traduit un événement structuré en mises à jour de compteurs Prometheus."""
    if event == "cache.hit":
        CACHE_LOOKUPS.labels("hit", fields.get("mode", "similarity")).inc()
    elif event == "cache.miss":
        CACHE_LOOKUPS.labels("miss", fields.get("mode", "similarity")).inc()
    elif event == "cache.evicted":
        CACHE_EVICTIONS.labels(fields.get("reason", "lru")).inc()
    elif event == "breaker.transition":
        BREAKER_TRANSITIONS.labels(fields["from_state"], fields["to_state"]).inc()
        BREAKER_STATE.set(_BREAKER_STATE_VALUES.get(fields["to_state"], 0))
    elif event == "retry.attempt":
        RETRY_ATTEMPTS.labels(fields.get("kind", "unknown")).inc()
    elif event == "job.terminal":
        JOB_TERMINAL.labels(fields["status"]).inc()
    elif event == "job.attempt":
        JOB_ATTEMPTS.labels(fields.get("result", "unknown")).inc()
    elif event == "job.dead_lettered":
        DLQ_TOTAL.labels(fields["reason"]).inc()
    elif event == "job.claim":
        JOB_CLAIMS.labels(fields.get("result", "unknown")).inc()
    elif event == "validation.warning":
        VALIDATION_ISSUES.labels("warning", fields.get("code", "unknown")).inc()
    elif event == "validation.error":
        VALIDATION_ISSUES.labels("error", fields.get("code", "unknown")).inc()
    elif event == "submit.outcome":
        SUBMIT_OUTCOMES.labels(fields.get("outcome", "unknown")).inc()


@metrics_router.get("/metrics")
def metrics():
    """
    Expose les métriques Prometheus au format texte.

    Returns:
        Response: Réponse HTTP contenant les métriques au format Prometheus.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware Prometheus pour mesurer les métriques HTTP.

    Collecte les métriques de comptage des requêtes et de latence par route pour l'exposition
    Prometheus.
    """

    async def dispatch(self, request: Request, call_next):
        """
        Traite une requête HTTP et collecte les métriques.

        Args:
            request: Requête HTTP entrante.
            call_next: Fonction pour appeler le middleware suivant.

        Returns:
            Response: Réponse HTTP avec métriques collectées.
        """
        start = time.perf_counter()
        response: Response = await call_next(request)
        route_obj = request.scope.get("route")
        route = getattr(route_obj, "path", None) or "unmatched"
        REQUEST_COUNT.labels(request.method, route, str(response.status_code)).inc()
        REQUEST_LATENCY.labels(route).observe(time.perf_counter() - start)
        return response
