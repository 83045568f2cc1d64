"""Files d'exécution des jobs asynchrones.

- `ThreadJobQueue`: exécuteur borné en process (threads démons + `queue.Queue`), utilisé en dev
  et quand `JOB_QUEUE_BACKEND=thread`. File pleine: le job reste PENDING et sa soumission est
  reprogrammée après `retry_after` secondes.
- `CeleryJobQueue`: délègue à la tâche `physim.tasks.process_job` (broker Redis).

Les deux n'acheminent qu'un `job_id`; l'état du job vit dans le `JobStore`.
"""

from __future__ import annotations

import atexit
import queue as _queue
import threading
from collections.abc import Callable
from typing import Any, Protocol

import structlog

_STOP = object()


class JobQueue(Protocol):
    def enqueue(self, job_id: str, delay: float = 0.0) -> None:
        """Programme le traitement de `job_id` (après `delay` secondes)."""


class ThreadJobQueue:
    """Exécuteur borné: `threads` workers consommant une file de taille `maxsize`."""

    def __init__(self, threads: int = 2, maxsize: int = 256, retry_after: float = 5.0) -> None:
        self.threads = max(1, threads)
        self.maxsize = max(0, maxsize)
        self.retry_after = retry_after
        self._log = structlog.get_logger(__name__).bind(component="thread_job_queue")
        self._handler: Callable[[str], Any] | None = None
        self._lock = threading.Lock()
        self._queue: _queue.Queue | None = None
        self._workers: list[threading.Thread] = []
        self._timers: set[threading.Timer] = set()
        self._closed = False

    def bind(self, handler: Callable[[str], Any]) -> None:
        """Branche le traitement (typiquement `JobOrchestrator.run`)."""
        self._handler = handler

    def enqueue(self, job_id: str, delay: float = 0.0) -> None:
        if self._closed:
            self._log.warning("job_queue_closed", job_id=job_id)
            return
        if delay > 0:
            self._schedule(job_id, delay)
            return
        self._ensure_workers()
        try:
            self._queue.put_nowait(job_id)  # type: ignore[union-attr]
        except _queue.Full:
            self._log.warning("job_queue_full", job_id=job_id, retry_after=self.retry_after)
            self._schedule(job_id, self.retry_after)

    def join(self) -> None:
        """Attend que la file soit vide (tests, arrêt propre)."""
        if self._queue is not None:
            self._queue.join()

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            for timer in list(self._timers):
                timer.cancel()
            self._timers.clear()
            if self._queue is None:
                return
            for _ in self._workers:
                self._queue.put(_STOP)

    # -------------------- Interne --------------------

    def _schedule(self, job_id: str, delay: float) -> None:
        def _fire() -> None:
            with self._lock:
                self._timers.discard(timer)
            self.enqueue(job_id)

        timer = threading.Timer(delay, _fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()

    def _ensure_workers(self) -> None:
        with self._lock:
            if self._queue is not None:
                return
            self._queue = _queue.Queue(maxsize=self.maxsize)
            for i in range(self.threads):
                t = threading.Thread(
                    target=self._worker, args=(self._queue,), name=f"physim-job-{i}", daemon=True
                )
                self._workers.append(t)
                t.start()
            atexit.register(self.shutdown)

    def _worker(self, q: _queue.Queue) -> None:
        while True:
            job_id = q.get()
            try:
                if job_id is _STOP:
                    return
                if self._handler is None:
                    self._log.error("job_queue_unbound", job_id=job_id)
                    continue
                self._handler(job_id)
            except Exception:
                # un job en échec ne doit pas tuer le worker
                self._log.exception("job_handler_crashed", job_id=job_id)
            finally:
                q.task_done()


class CeleryJobQueue:
    """Publie les jobs sur Celery (`physim.tasks.process_job`)."""

    def __init__(self, task: Any | None = None) -> None:
        self._task = task

    @property
    def task(self) -> Any:
        if self._task is None:
            from physim.tasks.job_tasks import process_job_task  # noqa: PLC0415

            self._task = process_job_task
        return self._task

    def enqueue(self, job_id: str, delay: float = 0.0) -> None:
        countdown = delay if delay > 0 else None
        self.task.apply_async(args=[job_id], countdown=countdown)
