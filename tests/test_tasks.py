"""Tests des tâches Celery (délégation à l'orchestrateur des jobs)."""

from __future__ import annotations

from unittest.mock import Mock, patch

from physim.app import celeryconfig
from physim.tasks.job_tasks import process_job_task, reclaim_expired_task


def test_process_job_task_runs_orchestrator() -> None:
    fake = Mock()
    fake.job_orchestrator.run.return_value = "ready"
    with patch("physim.tasks.job_tasks.container", fake):
        assert process_job_task("j1") == "ready"
    fake.job_orchestrator.run.assert_called_once_with("j1")


def test_reclaim_expired_task() -> None:
    fake = Mock()
    fake.job_orchestrator.reclaim_expired.return_value = {"jobs": 2}
    with patch("physim.tasks.job_tasks.container", fake):
        assert reclaim_expired_task() == {"jobs": 2}


def test_task_names_and_schedule() -> None:
    assert process_job_task.name == "physim.tasks.process_job"
    assert reclaim_expired_task.name == "physim.tasks.reclaim_expired"
    assert celeryconfig.beat_schedule["physim-reclaim-expired"]["task"] == reclaim_expired_task.name
    assert celeryconfig.task_acks_late is True
