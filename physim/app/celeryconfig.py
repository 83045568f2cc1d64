"""Configuration centralisée Celery pour les jobs de génération.

La politique de retry des jobs est portée par `JobOrchestrator` (tentatives, report quand le
breaker est ouvert); Celery ne fait qu'acheminer les `job_id`.
"""

from __future__ import annotations

# Acks tardifs: un worker perdu en cours de traitement rend le message à la file
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1
# une tentative dure au plus 4 appels de 4 s et 7 s de backoff
task_time_limit = 120  # secondes
task_soft_time_limit = 90
broker_pool_limit = 10
task_serializer = "json"
accept_content = ["json"]
result_expires = 3600

beat_schedule = {
    "physim-reclaim-expired": {
        "task": "physim.tasks.reclaim_expired",
        "schedule": 900.0,
    },
}
