"""Routes opérateur: inspection et relance des jobs en dead-letter."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from physim.api.deps import get_container, require_admin
from physim.api.schemas import DeadLetterItem, DeadLetterList, JobResponse
from physim.core.container import Container

router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_admin)])
_container_dep = Depends(get_container)


@router.get("/dead-letters", response_model=DeadLetterList)
def list_dead_letters(
    limit: int = Query(default=100, ge=1, le=1000),
    c: Container = _container_dep,
) -> DeadLetterList:
    records = c.job_orchestrator.list_dead_letters(limit)
    items = [
        DeadLetterItem(
            job_id=r.job_id,
            owner=r.owner,
            reason=r.reason.value,
            detail=r.detail,
            attempts=r.attempts,
            created_at=r.created_at,
            dead_lettered_at=r.dead_lettered_at,
        )
        for r in records
    ]
    return DeadLetterList(items=items, count=len(items))


@router.post("/dead-letters/{job_id}/requeue", response_model=JobResponse, status_code=202)
def requeue_dead_letter(job_id: str, c: Container = _container_dep) -> JobResponse:
    """Remet le job en PENDING (compteur de tentatives remis à zéro) et le republie."""
    job = c.job_orchestrator.requeue_dead_letter(job_id)
    return JobResponse(job_id=job.id, status=job.status.value)
