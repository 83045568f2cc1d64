"""
Orchestration des jobs de génération asynchrones.

Cycle de vie: PENDING → PROCESSING → {READY | FAILED}.

- `create` persiste un job PENDING puis le publie sur la file.
- `process` prend le verrou du job (un seul worker à la fois), vérifie le breaker (refus: le job
  reste PENDING et est reprogrammé, sans consommer de tentative), puis exécute une tentative:
  génération via `RetryExecutor`, validation, mise en cache, READY et notification. Une image
  de confiance < 0.7 termine READY sans manifeste, avec une demande de précision.
- Une tentative en échec incrémente `attempts`; sous le plafond (3) le job repasse PENDING et est
  republié; au plafond il passe FAILED, un unique enregistrement dead-letter est ajouté avec sa
  `FailureReason`, et le propriétaire est notifié. Une erreur amont permanente échoue le job
  immédiatement. Une exception non classée compte comme une tentative en échec, republiée après
  `defer_seconds`. Toute republication a lieu après la libération du verrou.
- `requeue_dead_letter` (opérateur) remet le job en PENDING avec un compteur neuf.
"""

from __future__ import annotations

import base64
import time
import uuid
from collections.abc import Callable
from enum import Enum
from typing import Any

import structlog

from physim.domain.entities import (
    JOB_TRANSITIONS,
    DeadLetterRecord,
    FailureReason,
    GenerationRequest,
    Job,
    JobStatus,
    JobView,
)
from physim.domain.errors import (
    USER_MESSAGES,
    CircuitOpenError,
    ClaimRejectedError,
    DimensionMismatchError,
    ErrorKind,
    GenerationError,
    InvalidJobTransitionError,
    JobNotFoundError,
    RetryExhaustedError,
    ValidationFailedError,
)
from physim.domain.manifest import Manifest
from physim.domain.validator import ManifestValidator, ValidationResult
from physim.infra.embeddings.base import Embeddings, content_hash
from physim.infra.events import EventSink, NullEventSink
from physim.infra.generation.base import GenerationClient, GenerationResult
from physim.infra.job_queue import JobQueue
from physim.infra.job_store import JobStore
from physim.infra.notifications import LogNotificationSink, NotificationSink
from physim.infra.ops.idempotency import IdempotencyStore, make_claim_key
from physim.services.circuit_breaker import CircuitBreaker, Permit
from physim.services.retry import RetryExecutor
from physim.services.similarity_cache import SimilarityCache

log = structlog.get_logger(__name__)

# codes du validateur signalant une sortie inexploitable (pas un objet JSON)
_UNDECODABLE = frozenset({"not_json"})


class JobOutcome(str, Enum):
    """Issue d'un appel à `process`."""

    READY = "ready"
    FAILED = "failed"
    RETRY = "retry"
    DEFERRED = "deferred"
    SKIPPED = "skipped"


def request_to_payload(request: GenerationRequest) -> dict[str, Any]:
    """Forme stockable (JSON) d'une requête de génération."""
    return {
        "text": request.text,
        "image_b64": base64.b64encode(request.image).decode("ascii") if request.image else None,
        "image_hash": content_hash(request.image) if request.image else None,
        "hint": request.hint,
        "user_id": request.user_id,
    }


def payload_to_request(payload: dict[str, Any]) -> GenerationRequest:
    image_b64 = payload.get("image_b64")
    return GenerationRequest(
        text=payload.get("text"),
        image=base64.b64decode(image_b64) if image_b64 else None,
        hint=payload.get("hint"),
        user_id=payload.get("user_id") or "anonymous",
    )


def _invalid_reason(validation: ValidationResult) -> FailureReason:
    codes = {e.code for e in validation.errors}
    undecodable = bool(codes & _UNDECODABLE) or any(
        e.code == "type" and not e.path for e in validation.errors
    )
    return FailureReason.INVALID_OUTPUT if undecodable else FailureReason.VALIDATION_FAILURE


class _AttemptFailed(Exception):
    def __init__(self, reason: FailureReason, detail: str, permanent: bool = False) -> None:
        self.reason = reason
        self.detail = detail
        self.permanent = permanent
        super().__init__(detail)


class JobOrchestrator:
    """Pilote le cycle de vie des jobs; partage breaker, cache et validateur avec le synchrone."""

    def __init__(
        self,
        store: JobStore,
        queue: JobQueue,
        claims: IdempotencyStore,
        breaker: CircuitBreaker,
        retry: RetryExecutor,
        generator: GenerationClient,
        validator: ManifestValidator,
        cache: SimilarityCache,
        embedder: Embeddings,
        notifications: NotificationSink | None = None,
        events: EventSink | None = None,
        max_attempts: int = 3,
        claim_ttl_seconds: int = 300,
        defer_seconds: float = 30.0,
        confidence_min: float = 0.7,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._queue = queue
        self._claims = claims
        self._breaker = breaker
        self._retry = retry
        self._generator = generator
        self._validator = validator
        self._cache = cache
        self._embedder = embedder
        self._notifications = notifications or LogNotificationSink()
        self._events = events or NullEventSink()
        self.max_attempts = max(1, max_attempts)
        self.claim_ttl_seconds = claim_ttl_seconds
        self.defer_seconds = defer_seconds
        self.confidence_min = confidence_min
        self._clock = clock

    # -------------------- API --------------------

    def create(self, request: GenerationRequest, owner: str | None = None) -> Job:
        """Persiste un job PENDING et le publie sur la file."""
        now = self._clock()
        job = Job(
            id=uuid.uuid4().hex,
            owner=owner or request.user_id,
            request=request_to_payload(request),
            created_at=now,
            updated_at=now,
        )
        self._store.create(job)
        self._queue.enqueue(job.id)
        log.info("job_created", job_id=job.id, owner=job.owner)
        return job

    def process(self, job_id: str) -> JobOutcome:
        """Traite une tentative du job `job_id`.

        Raises:
            ClaimRejectedError: un autre worker détient déjà le job.
            JobNotFoundError: job inconnu ou expiré.
        """
        key = make_claim_key("job", job_id)
        token = self._claims.acquire(key, ttl=self.claim_ttl_seconds)
        if token is None:
            self._events.emit("job.claim", job_id=job_id, result="rejected")
            raise ClaimRejectedError(job_id)
        self._events.emit("job.claim", job_id=job_id, result="acquired")
        try:
            outcome, delay = self._process_claimed(job_id)
        finally:
            self._claims.release(key, token)
        # republié seulement une fois le verrou libéré
        if delay is not None:
            self._queue.enqueue(job_id, delay=delay)
        return outcome

    def run(self, job_id: str) -> str:
        """Point d'entrée des workers: `process` sans propager les refus attendus."""
        try:
            return self.process(job_id).value
        except ClaimRejectedError:
            log.info("job_duplicate_delivery", job_id=job_id)
            return "duplicate"
        except JobNotFoundError:
            log.warning("job_missing", job_id=job_id)
            return "not_found"

    def status(self, job_id: str) -> JobView:
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return JobView(
            job_id=job.id,
            status=job.status,
            manifest=job.manifest,
            error=job.error,
            confidence=job.confidence,
            clarification=job.clarification,
        )

    def list_dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        return self._store.list_dead_letters(limit)

    def requeue_dead_letter(self, job_id: str) -> Job:
        """Remet un job en échec définitif dans le circuit (compteur de tentatives remis à 0)."""
        record = self._store.get_dead_letter(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        job = self._store.get(job_id)
        if job is None:
            # le job terminal a expiré (24 h) avant l'enregistrement dead-letter (14 j)
            job = Job(
                id=record.job_id,
                owner=record.owner,
                request=dict(record.request),
                status=JobStatus.FAILED,
                created_at=record.created_at,
                updated_at=record.dead_lettered_at,
            )
        self._transition(job, JobStatus.PENDING)
        job.attempts = 0
        job.error = None
        job.manifest = None
        job.confidence = None
        job.clarification = None
        job.completed_at = None
        self._store.save(job)
        self._store.remove_dead_letter(job_id)
        self._queue.enqueue(job.id)
        log.info("job_requeued", job_id=job.id, reason=record.reason.value)
        return job

    def reclaim_expired(self) -> dict[str, int]:
        """Purge les jobs terminaux, enregistrements dead-letter et entrées de cache expirés."""
        purged = dict(self._store.purge_expired())
        purged["cache_entries"] = self._cache.purge_expired()
        log.info("reclaim_expired", **purged)
        return purged

    # -------------------- Tentative --------------------

    def _process_claimed(self, job_id: str) -> tuple[JobOutcome, float | None]:
        """Retourne l'issue et, si le job doit être republié, le délai de republication."""
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status is not JobStatus.PENDING:
            log.info("job_skipped", job_id=job_id, status=job.status.value)
            return JobOutcome.SKIPPED, None
        try:
            permit = self._breaker.acquire()
        except CircuitOpenError:
            log.info("job_deferred", job_id=job_id, delay=self.defer_seconds)
            return JobOutcome.DEFERRED, self.defer_seconds

        self._transition(job, JobStatus.PROCESSING)
        job.attempts += 1
        self._store.save(job)
        try:
            result, manifest = self._attempt(job, permit)
        except _AttemptFailed as failure:
            return self._attempt_failed(job, failure, retry_delay=0.0)
        except Exception as exc:
            log.exception("job_attempt_crashed", job_id=job.id, attempt=job.attempts)
            failure = _AttemptFailed(FailureReason.UPSTREAM_ERROR, repr(exc))
            return self._attempt_failed(job, failure, retry_delay=self.defer_seconds)
        self._events.emit("job.attempt", job_id=job.id, attempt=job.attempts, result="succeeded")
        self._complete(job, result, manifest)
        return JobOutcome.READY, None

    def _attempt_failed(
        self, job: Job, failure: _AttemptFailed, retry_delay: float
    ) -> tuple[JobOutcome, float | None]:
        self._events.emit(
            "job.attempt",
            job_id=job.id,
            attempt=job.attempts,
            result="failed",
            reason=failure.reason.value,
        )
        if failure.permanent or job.attempts >= self.max_attempts:
            self._fail(job, failure)
            return JobOutcome.FAILED, None
        self._transition(job, JobStatus.PENDING)
        self._store.save(job)
        return JobOutcome.RETRY, retry_delay

    def _attempt(self, job: Job, permit: Permit) -> tuple[GenerationResult, Manifest]:
        request = payload_to_request(job.request)
        try:
            result = self._retry.execute(
                lambda: self._generator.generate(
                    text=request.text, image=request.image, hint=request.hint
                )
            )
            self._breaker.record_success(permit)
        except RetryExhaustedError as exc:
            self._breaker.record_failure(permit)
            reason = (
                FailureReason.TIMEOUT
                if exc.last_error.kind is ErrorKind.TIMEOUT
                else FailureReason.UPSTREAM_ERROR
            )
            raise _AttemptFailed(reason, str(exc)) from exc
        except GenerationError as exc:
            raise _AttemptFailed(FailureReason.UPSTREAM_ERROR, str(exc), permanent=True) from exc
        finally:
            # sans effet si un verdict a déjà été rendu
            self._breaker.release(permit)

        validation = self._validator.validate(result.manifest)
        try:
            manifest = validation.raise_for_errors()
        except ValidationFailedError as exc:
            raise _AttemptFailed(_invalid_reason(validation), str(exc)) from exc
        return result, manifest

    # -------------------- États terminaux --------------------

    def _complete(self, job: Job, result: GenerationResult, manifest: Manifest) -> None:
        job.confidence = result.confidence
        job.error = None
        if self._needs_clarification(job, result.confidence):
            # image peu sûre: le manifeste n'est ni exposé ni mis en cache
            job.manifest = None
            job.clarification = USER_MESSAGES["clarification"]
            notice = {"type": "job.clarification", "job_id": job.id}
        else:
            self._cache_result(job, manifest)
            job.manifest = manifest
            job.clarification = None
            notice = {"type": "job.ready", "job_id": job.id}
        self._transition(job, JobStatus.READY)
        job.completed_at = job.updated_at
        self._store.save(job)
        self._events.emit(
            "job.terminal", job_id=job.id, status=JobStatus.READY.value, attempts=job.attempts
        )
        self._notify(job.owner, notice)

    def _needs_clarification(self, job: Job, confidence: float | None) -> bool:
        return (
            bool(job.request.get("image_hash"))
            and confidence is not None
            and confidence < self.confidence_min
        )

    def _fail(self, job: Job, failure: _AttemptFailed) -> None:
        job.error = USER_MESSAGES["job_failed"]
        self._transition(job, JobStatus.FAILED)
        job.completed_at = job.updated_at
        self._store.save(job)
        self._store.add_dead_letter(
            DeadLetterRecord(
                job_id=job.id,
                owner=job.owner,
                request=dict(job.request),
                reason=failure.reason,
                detail=failure.detail,
                attempts=job.attempts,
                created_at=job.created_at,
                dead_lettered_at=job.updated_at,
            )
        )
        self._events.emit("job.dead_lettered", job_id=job.id, reason=failure.reason.value)
        self._events.emit(
            "job.terminal",
            job_id=job.id,
            status=JobStatus.FAILED.value,
            attempts=job.attempts,
            reason=failure.reason.value,
        )
        self._notify(
            job.owner,
            {"type": "job.failed", "job_id": job.id, "message": USER_MESSAGES["job_failed"]},
        )

    def _cache_result(self, job: Job, manifest: Manifest) -> None:
        payload = job.request
        image_hash = payload.get("image_hash")
        try:
            if image_hash:
                image = base64.b64decode(payload["image_b64"])
                embedding = self._embedder.embed_image(image)
                self._cache.put(embedding, f"image:{image_hash}", manifest, key=image_hash)
            else:
                embedding = self._embedder.embed([payload["text"]])[0]
                self._cache.put(embedding, payload["text"], manifest)
        except (GenerationError, DimensionMismatchError) as exc:
            # best-effort: le job reste READY même si la mise en cache échoue
            log.warning("job_cache_skipped", job_id=job.id, error=str(exc))

    def _notify(self, recipient: str, event: dict[str, Any]) -> None:
        try:
            self._notifications.notify(recipient, event)
        except Exception:
            log.exception("notification_failed", recipient=recipient, event=event.get("type"))

    def _transition(self, job: Job, target: JobStatus) -> None:
        if target not in JOB_TRANSITIONS[job.status]:
            raise InvalidJobTransitionError(job.status.value, target.value)
        job.status = target
        job.updated_at = self._clock()
