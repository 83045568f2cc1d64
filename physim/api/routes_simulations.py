"""Routes publiques: soumission d'une description et suivi des jobs.

Les handlers sont synchrones (exécutés dans le pool de threads de FastAPI): l'orchestrateur
effectue des appels bloquants bornés par son budget de latence.
"""

from __future__ import annotations

import base64
import binascii

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from physim.api.deps import get_container
from physim.api.errors import SUBMIT_ERROR_STATUS, APIError
from physim.api.schemas import FeaturedItem, JobResponse, SimulationRequest, SimulationResponse
from physim.app.tracing import tracer
from physim.core.container import Container
from physim.domain.entities import (
    ClarificationResult,
    ErrorResult,
    FallbackResult,
    JobAccepted,
    ManifestResult,
    SubmitResult,
)
from physim.domain.errors import USER_MESSAGES

router = APIRouter(prefix="/v1", tags=["simulations"])
_container_dep = Depends(get_container)


def _decode_image(payload: SimulationRequest) -> bytes | None:
    if payload.image_base64 is None:
        return None
    try:
        return base64.b64decode(payload.image_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise APIError(400, "INPUT_ERROR", USER_MESSAGES["input"]) from exc


def to_response(result: SubmitResult) -> tuple[int, SimulationResponse]:
    """Projette un résultat de `submit` en (statut HTTP, corps)."""
    if isinstance(result, ErrorResult):
        status_code, code = SUBMIT_ERROR_STATUS.get(result.error, (500, "INTERNAL_ERROR"))
        raise APIError(status_code, code, result.message)
    if isinstance(result, ManifestResult):
        return 200, SimulationResponse(
            status="ready", manifest=result.manifest.model_dump(mode="json"), hit=result.hit
        )
    if isinstance(result, JobAccepted):
        return 202, SimulationResponse(status="pending", job_id=result.job_id)
    if isinstance(result, FallbackResult):
        featured = [
            FeaturedItem(
                id=sim.id,
                title=sim.title,
                physics_type=sim.physics_type.value,
                manifest=sim.manifest.model_dump(mode="json"),
            )
            for sim in result.featured
        ]
        return 200, SimulationResponse(status="fallback", featured=featured, message=result.message)
    if isinstance(result, ClarificationResult):
        return 200, SimulationResponse(
            status="clarification", message=result.message, confidence=result.confidence
        )
    raise TypeError(f"unexpected submit result: {type(result).__name__}")


@router.post("/simulations", response_model=SimulationResponse, response_model_exclude_none=True)
def create_simulation(payload: SimulationRequest, c: Container = _container_dep):
    """Génère (ou retrouve) le manifeste d'une simulation décrite par un texte ou une image."""
    request = {
        "text": payload.text,
        "image": _decode_image(payload),
        "hint": payload.hint,
        "user_id": payload.user_id,
    }
    with tracer().start_as_current_span("physim.submit") as span:
        span.set_attribute("physim.input", "image" if request["image"] is not None else "text")
        result = c.request_orchestrator.submit(request)
    status_code, body = to_response(result)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


@router.get("/jobs/{job_id}", response_model=JobResponse, response_model_exclude_none=True)
def get_job(job_id: str, c: Container = _container_dep) -> JobResponse:
    """État d'un job asynchrone (404 si inconnu ou expiré)."""
    view = c.request_orchestrator.job_status(job_id)
    return JobResponse(
        job_id=view.job_id,
        status=view.status.value,
        manifest=view.manifest.model_dump(mode="json") if view.manifest else None,
        error=view.error,
        confidence=view.confidence,
        clarification=view.clarification,
    )
