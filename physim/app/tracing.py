"""Tracing OpenTelemetry (export OTLP).

Actif uniquement si `OTLP_ENDPOINT` est configuré. `tracer()` sert à ouvrir un span autour des
étapes coûteuses (soumission, traitement d'un job); sans provider configuré, les spans sont no-op.
"""

from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from physim.core.settings import Settings

_configured = False


def setup_tracing(settings: Settings) -> bool:
    """Configure le provider et l'exporteur OTLP; retourne False si le tracing est désactivé."""
    global _configured
    if _configured or not settings.OTLP_ENDPOINT:
        return _configured
    provider = TracerProvider(resource=Resource.create({"service.name": settings.APP_NAME}))
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTLP_ENDPOINT, insecure=True))
    )
    trace.set_tracer_provider(provider)
    _configured = True
    return True


def tracer() -> trace.Tracer:
    return trace.get_tracer("physim")
