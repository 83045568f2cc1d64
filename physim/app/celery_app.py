"""
Module: celery_app.

But: initialiser l'instance Celery de l'application et charger la config runtime. Le worker
importe `physim.tasks.job_tasks` pour enregistrer les tâches.
"""

from celery import Celery

from physim.core.container import container

celery_app = Celery(
    "physim",
    broker=container.settings.CELERY_BROKER_URL,
    backend=container.settings.CELERY_RESULT_BACKEND,
    include=["physim.tasks.job_tasks"],
)
celery_app.config_from_object("physim.app.celeryconfig")
celery_app.conf.task_routes = {"physim.tasks.*": {"queue": "generation"}}

__all__ = ["celery_app"]
