"""
Tâches Celery des jobs de génération.

`process_job` exécute une tentative du job (le verrou de prise en charge évite le double
traitement en cas de redélivrance); `reclaim_expired` purge périodiquement les jobs terminaux,
enregistrements dead-letter et entrées de cache expirés.
"""

from __future__ import annotations

from physim.app.celery_app import celery_app
from physim.app.tracing import tracer
from physim.core.container import container


@celery_app.task(name="physim.tasks.process_job")
def process_job_task(job_id: str) -> str:
    with tracer().start_as_current_span("physim.job.process") as span:
        span.set_attribute("physim.job_id", job_id)
        outcome = container.job_orchestrator.run(job_id)
        span.set_attribute("physim.job_outcome", outcome)
        return outcome


@celery_app.task(name="physim.tasks.reclaim_expired")
def reclaim_expired_task() -> dict:
    return container.job_orchestrator.reclaim_expired()
