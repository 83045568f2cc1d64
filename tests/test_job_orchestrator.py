"""Tests de l'orchestration des jobs asynchrones (cycle de vie, retries, dead-letter, breaker)."""

from __future__ import annotations

import pytest

from physim.domain.entities import CircuitState, FailureReason, GenerationRequest, JobStatus
from physim.domain.errors import (
    USER_MESSAGES,
    ClaimRejectedError,
    InvalidJobTransitionError,
    JobNotFoundError,
)
from physim.infra.generation.base import GenerationResult
from physim.infra.job_store import JOB_TERMINAL_TTL_SECONDS
from physim.infra.ops.idempotency import make_claim_key
from physim.services.job_orchestrator import (
    JobOrchestrator,
    JobOutcome,
    payload_to_request,
    request_to_payload,
)
from tests.fakes import VALID_MANIFEST, bad_request, timeout, valid_manifest

TEXT = "a ball thrown straight up"
IMAGE = b"\x89PNG fake image bytes"


def _create(jobs, text: str = TEXT):
    return jobs.create(GenerationRequest(text=text, user_id="u1"))


def test_payload_round_trip_keeps_image_bytes() -> None:
    request = GenerationRequest(image=IMAGE, hint="pendulum", user_id="u1")
    payload = request_to_payload(request)
    assert payload["image_hash"]
    assert payload_to_request(payload) == request


def test_create_persists_pending_job_and_enqueues(jobs, queue) -> None:
    job = _create(jobs)
    assert jobs.status(job.id).status is JobStatus.PENDING
    assert job.owner == "u1"
    assert queue.enqueued == [(job.id, 0.0)]


def test_process_success_marks_ready_caches_and_notifies(
    jobs, cache, notifications, events
) -> None:
    job = _create(jobs)
    assert jobs.process(job.id) is JobOutcome.READY
    view = jobs.status(job.id)
    assert view.status is JobStatus.READY
    assert view.manifest.title == VALID_MANIFEST["title"]
    assert notifications.sent == [("u1", {"type": "job.ready", "job_id": job.id})]
    assert events.of("job.terminal") == [{"job_id": job.id, "status": "ready", "attempts": 1}]
    assert len(cache) == 1


def test_failed_attempt_is_requeued_until_max_then_dead_lettered(
    jobs, generator, queue, job_store, notifications, events, breaker
) -> None:
    """Trois tentatives en échec: FAILED, un seul enregistrement dead-letter, une notification."""
    generator.default = timeout()
    job = _create(jobs)
    assert jobs.process(job.id) is JobOutcome.RETRY
    assert jobs.status(job.id).status is JobStatus.PENDING
    assert queue.enqueued[-1] == (job.id, 0.0)
    assert jobs.process(job.id) is JobOutcome.RETRY
    assert jobs.process(job.id) is JobOutcome.FAILED

    stored = job_store.get(job.id)
    assert stored.status is JobStatus.FAILED
    assert stored.attempts == 3
    assert stored.completed_at is not None
    records = jobs.list_dead_letters()
    assert len(records) == 1
    assert records[0].reason is FailureReason.TIMEOUT
    assert records[0].attempts == 3
    assert len(events.of("job.dead_lettered")) == 1
    assert [n[1]["type"] for n in notifications.sent] == ["job.failed"]
    # 4 appels (1 + 3 retries) par tentative
    assert len(generator.calls) == 12
    assert breaker.state is CircuitState.CLOSED
    assert jobs.process(job.id) is JobOutcome.SKIPPED


def test_permanent_error_fails_immediately(jobs, generator) -> None:
    generator.script = [bad_request()]
    job = _create(jobs)
    assert jobs.process(job.id) is JobOutcome.FAILED
    record = jobs.list_dead_letters()[0]
    assert record.reason is FailureReason.UPSTREAM_ERROR
    assert record.attempts == 1


@pytest.mark.parametrize(
    ("output", "reason"),
    [
        ("not json at all", FailureReason.INVALID_OUTPUT),
        ({"physics_type": "projectile"}, FailureReason.VALIDATION_FAILURE),
    ],
)
def test_invalid_output_reasons(jobs, generator, output, reason) -> None:
    generator.default = output
    job = _create(jobs)
    for _ in range(3):
        outcome = jobs.process(job.id)
    assert outcome is JobOutcome.FAILED
    assert jobs.list_dead_letters()[0].reason is reason


def test_open_breaker_defers_without_consuming_attempt(jobs, breaker, queue, generator) -> None:
    """Breaker ouvert: le job reste PENDING et est reprogrammé plus tard."""
    for _ in range(5):
        breaker.record_failure()
    job = _create(jobs)
    assert jobs.process(job.id) is JobOutcome.DEFERRED
    stored = jobs.status(job.id)
    assert stored.status is JobStatus.PENDING
    assert queue.enqueued[-1] == (job.id, 30.0)
    assert generator.calls == []


def test_probe_success_closes_breaker(jobs, breaker, clock) -> None:
    for _ in range(5):
        breaker.record_failure()
    clock.advance(30)
    job = _create(jobs)
    assert jobs.process(job.id) is JobOutcome.READY
    assert breaker.state is CircuitState.CLOSED


def test_claimed_job_is_rejected(jobs, claims, events) -> None:
    job = _create(jobs)
    assert claims.acquire(make_claim_key("job", job.id))
    with pytest.raises(ClaimRejectedError):
        jobs.process(job.id)
    assert jobs.run(job.id) == "duplicate"
    assert events.of("job.claim")[0] == {"job_id": job.id, "result": "rejected"}


def test_claim_is_released_after_processing(jobs, claims) -> None:
    job = _create(jobs)
    jobs.process(job.id)
    assert claims.holder(make_claim_key("job", job.id)) is None


def test_unknown_job(jobs) -> None:
    assert jobs.run("missing") == "not_found"
    with pytest.raises(JobNotFoundError):
        jobs.status("missing")


def test_requeue_dead_letter_resets_attempts(jobs, generator, queue, job_store) -> None:
    generator.script = [bad_request()]
    job = _create(jobs)
    jobs.process(job.id)
    requeued = jobs.requeue_dead_letter(job.id)
    assert requeued.status is JobStatus.PENDING
    assert requeued.attempts == 0
    assert job_store.get_dead_letter(job.id) is None
    assert queue.enqueued[-1] == (job.id, 0.0)
    assert jobs.process(job.id) is JobOutcome.READY


def test_requeue_rebuilds_expired_job(jobs, generator, clock) -> None:
    """Le job terminal a expiré mais l'enregistrement dead-letter subsiste."""
    generator.script = [bad_request()]
    job = _create(jobs)
    jobs.process(job.id)
    clock.advance(JOB_TERMINAL_TTL_SECONDS + 1)
    with pytest.raises(JobNotFoundError):
        jobs.status(job.id)
    requeued = jobs.requeue_dead_letter(job.id)
    assert requeued.owner == "u1"
    assert jobs.status(job.id).status is JobStatus.PENDING


def test_requeue_requires_dead_letter(jobs) -> None:
    job = _create(jobs)
    with pytest.raises(JobNotFoundError):
        jobs.requeue_dead_letter(job.id)


def test_ready_job_cannot_go_back(jobs, job_store) -> None:
    job = _create(jobs)
    jobs.process(job.id)
    stored = job_store.get(job.id)
    with pytest.raises(InvalidJobTransitionError):
        jobs._transition(stored, JobStatus.PENDING)


def test_unexpected_error_is_retried_later_then_dead_lettered(jobs, generator, queue) -> None:
    """Une exception non classée consomme une tentative: republication différée, puis DLQ."""
    generator.default = RuntimeError("boom")
    job = _create(jobs)
    assert jobs.process(job.id) is JobOutcome.RETRY
    assert jobs.status(job.id).status is JobStatus.PENDING
    assert queue.enqueued[-1] == (job.id, 30.0)
    assert jobs.process(job.id) is JobOutcome.RETRY
    assert jobs.process(job.id) is JobOutcome.FAILED
    record = jobs.list_dead_letters()[0]
    assert record.reason is FailureReason.UPSTREAM_ERROR
    assert record.attempts == 3
    assert jobs.status(job.id).status is JobStatus.FAILED


class _ImmediateQueue:
    """File qui livre chaque publication tout de suite au worker (livraison la plus rapide)."""

    def __init__(self) -> None:
        self.handler = None
        self.outcomes: list[str] = []

    def enqueue(self, job_id: str, delay: float = 0.0) -> None:
        if self.handler is not None:
            self.outcomes.append(self.handler(job_id))


def test_immediate_redelivery_is_not_rejected_as_duplicate(
    job_store, claims, breaker, retry, generator, validator, cache, embedder
) -> None:
    """Le verrou est libéré avant la republication: la nouvelle livraison traite le job."""
    queue = _ImmediateQueue()
    jobs = JobOrchestrator(
        store=job_store,
        queue=queue,
        claims=claims,
        breaker=breaker,
        retry=retry,
        generator=generator,
        validator=validator,
        cache=cache,
        embedder=embedder,
    )
    generator.default = timeout()
    job = _create(jobs)
    queue.handler = jobs.run
    assert jobs.process(job.id) is JobOutcome.RETRY
    assert "duplicate" not in queue.outcomes
    assert queue.outcomes == ["failed", "retry"]
    assert jobs.status(job.id).status is JobStatus.FAILED
    assert len(jobs.list_dead_letters()) == 1


def test_low_confidence_image_asks_for_clarification(
    jobs, generator, cache, notifications
) -> None:
    """Image ambiguë traitée en job: READY sans manifeste, avec une demande de précision."""
    generator.script = [GenerationResult(manifest=valid_manifest(), confidence=0.4)]
    job = jobs.create(GenerationRequest(image=IMAGE, user_id="u1"))
    assert jobs.process(job.id) is JobOutcome.READY
    view = jobs.status(job.id)
    assert view.status is JobStatus.READY
    assert view.manifest is None
    assert view.clarification == USER_MESSAGES["clarification"]
    assert view.confidence == 0.4
    assert notifications.sent == [("u1", {"type": "job.clarification", "job_id": job.id})]
    assert len(cache) == 0


def test_confident_image_is_cached_by_hash(jobs, generator, cache) -> None:
    generator.script = [GenerationResult(manifest=valid_manifest(), confidence=0.9)]
    job = jobs.create(GenerationRequest(image=IMAGE, user_id="u1"))
    jobs.process(job.id)
    assert cache.get_by_key(job.request["image_hash"]) is not None


def test_reclaim_expired(jobs, generator, clock) -> None:
    generator.script = [bad_request()]
    job = _create(jobs)
    jobs.process(job.id)
    clock.advance(JOB_TERMINAL_TTL_SECONDS)
    assert jobs.reclaim_expired() == {"jobs": 1, "dead_letters": 0, "cache_entries": 0}
