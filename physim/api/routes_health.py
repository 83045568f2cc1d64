"""
Endpoint de santé.

Expose `/health`: disponibilité de l'API, backend de stockage, état du breaker et du cache.
"""

from fastapi import APIRouter, Depends

from physim.api.deps import get_container
from physim.core.container import Container

router = APIRouter(tags=["health"])
_container_dep = Depends(get_container)


@router.get("/health")
def health(c: Container = _container_dep):
    """Vérifie la disponibilité de l'API; `degraded` si Redis est injoignable ou le breaker ouvert."""
    details = c.health()
    degraded = details["redis"] is False or details["breaker"]["state"] == "open"
    return {"status": "degraded" if degraded else "ok", **details}
