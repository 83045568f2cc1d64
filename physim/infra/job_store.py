"""Persistance des jobs et des enregistrements dead-letter.

La conversion entité ↔ format de stockage est faite par des fonctions pures
(`job_to_wire`/`job_from_wire`, `dead_letter_to_wire`/`dead_letter_from_wire`) à la frontière de
l'adaptateur; les deux implémentations (mémoire, Redis) stockent ce même format JSON.

Rétention:
  - job terminal (READY/FAILED): 24 h après `completed_at`;
  - enregistrement dead-letter: 14 jours après `dead_lettered_at`;
  - job non terminal: pas d'expiration.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

from physim.domain.entities import DeadLetterRecord, FailureReason, Job, JobStatus
from physim.domain.manifest import Manifest

JOB_TERMINAL_TTL_SECONDS = 24 * 3600
DEAD_LETTER_TTL_SECONDS = 14 * 24 * 3600


# -------------------- Mapping (pur) --------------------


def job_to_wire(job: Job) -> dict[str, Any]:
    return {
        "id": job.id,
        "owner": job.owner,
        "request": dict(job.request),
        "status": job.status.value,
        "manifest": job.manifest.model_dump(mode="json") if job.manifest else None,
        "error": job.error,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "completed_at": job.completed_at,
        "attempts": job.attempts,
        "confidence": job.confidence,
        "clarification": job.clarification,
    }


def job_from_wire(data: dict[str, Any]) -> Job:
    manifest = data.get("manifest")
    return Job(
        id=data["id"],
        owner=data.get("owner", "anonymous"),
        request=dict(data.get("request") or {}),
        status=JobStatus(data["status"]),
        manifest=Manifest.model_validate(manifest) if manifest else None,
        error=data.get("error"),
        created_at=float(data.get("created_at", 0.0)),
        updated_at=float(data.get("updated_at", 0.0)),
        completed_at=data.get("completed_at"),
        attempts=int(data.get("attempts", 0)),
        confidence=data.get("confidence"),
        clarification=data.get("clarification"),
    )


def dead_letter_to_wire(record: DeadLetterRecord) -> dict[str, Any]:
    return {
        "job_id": record.job_id,
        "owner": record.owner,
        "request": dict(record.request),
        "reason": record.reason.value,
        "detail": record.detail,
        "attempts": record.attempts,
        "created_at": record.created_at,
        "dead_lettered_at": record.dead_lettered_at,
    }


def dead_letter_from_wire(data: dict[str, Any]) -> DeadLetterRecord:
    return DeadLetterRecord(
        job_id=data["job_id"],
        owner=data.get("owner", "anonymous"),
        request=dict(data.get("request") or {}),
        reason=FailureReason(data["reason"]),
        detail=data.get("detail", ""),
        attempts=int(data.get("attempts", 0)),
        created_at=float(data.get("created_at", 0.0)),
        dead_lettered_at=float(data["dead_lettered_at"]),
    )


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


# -------------------- Contrat --------------------


class JobStore(Protocol):
    """Contrat de persistance des jobs (une seule clé logique par job)."""

    def create(self, job: Job) -> None: ...

    def get(self, job_id: str) -> Job | None: ...

    def save(self, job: Job) -> None: ...

    def add_dead_letter(self, record: DeadLetterRecord) -> None: ...

    def get_dead_letter(self, job_id: str) -> DeadLetterRecord | None: ...

    def list_dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]: ...

    def remove_dead_letter(self, job_id: str) -> bool: ...

    def purge_expired(self) -> dict[str, int]: ...


# -------------------- Mémoire --------------------


class InMemoryJobStore:
    """Store en mémoire (process unique, tests). Stocke le format wire, jamais les entités."""

    def __init__(
        self,
        terminal_ttl_seconds: float = JOB_TERMINAL_TTL_SECONDS,
        dead_letter_ttl_seconds: float = DEAD_LETTER_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.terminal_ttl_seconds = terminal_ttl_seconds
        self.dead_letter_ttl_seconds = dead_letter_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, tuple[str, float | None]] = {}
        self._dlq: dict[str, tuple[str, float]] = {}

    def _job_expiry(self, job: Job) -> float | None:
        if job.status.terminal:
            return (job.completed_at or job.updated_at) + self.terminal_ttl_seconds
        return None

    def create(self, job: Job) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job already exists: {job.id}")
            self._jobs[job.id] = (_dumps(job_to_wire(job)), self._job_expiry(job))

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            item = self._jobs.get(job_id)
            if item is None:
                return None
            raw, expires_at = item
            if expires_at is not None and expires_at <= self._clock():
                del self._jobs[job_id]
                return None
        return job_from_wire(json.loads(raw))

    def save(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = (_dumps(job_to_wire(job)), self._job_expiry(job))

    def add_dead_letter(self, record: DeadLetterRecord) -> None:
        expires_at = record.dead_lettered_at + self.dead_letter_ttl_seconds
        with self._lock:
            self._dlq[record.job_id] = (_dumps(dead_letter_to_wire(record)), expires_at)

    def get_dead_letter(self, job_id: str) -> DeadLetterRecord | None:
        with self._lock:
            item = self._dlq.get(job_id)
            if item is None:
                return None
            raw, expires_at = item
            if expires_at <= self._clock():
                del self._dlq[job_id]
                return None
        return dead_letter_from_wire(json.loads(raw))

    def list_dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        now = self._clock()
        with self._lock:
            live = [raw for raw, exp in self._dlq.values() if exp > now]
        records = [dead_letter_from_wire(json.loads(raw)) for raw in live]
        records.sort(key=lambda r: r.dead_lettered_at, reverse=True)
        return records[: max(0, limit)]

    def remove_dead_letter(self, job_id: str) -> bool:
        with self._lock:
            return self._dlq.pop(job_id, None) is not None

    def purge_expired(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            jobs = [k for k, (_, exp) in self._jobs.items() if exp is not None and exp <= now]
            for k in jobs:
                del self._jobs[k]
            dlq = [k for k, (_, exp) in self._dlq.items() if exp <= now]
            for k in dlq:
                del self._dlq[k]
        return {"jobs": len(jobs), "dead_letters": len(dlq)}


# -------------------- Redis --------------------


class RedisJobStore:
    """Store Redis: `physim:job:{id}` et `physim:dlq:{id}` (EX), index `physim:dlq:index`."""

    JOB_KEY = "physim:job:{}"
    DLQ_KEY = "physim:dlq:{}"
    DLQ_INDEX = "physim:dlq:index"

    def __init__(
        self,
        client: Any,
        terminal_ttl_seconds: int = JOB_TERMINAL_TTL_SECONDS,
        dead_letter_ttl_seconds: int = DEAD_LETTER_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.terminal_ttl_seconds = int(terminal_ttl_seconds)
        self.dead_letter_ttl_seconds = int(dead_letter_ttl_seconds)
        self._clock = clock

    def create(self, job: Job) -> None:
        ok = self.client.set(self.JOB_KEY.format(job.id), _dumps(job_to_wire(job)), nx=True)
        if not ok:
            raise ValueError(f"job already exists: {job.id}")

    def get(self, job_id: str) -> Job | None:
        raw = self.client.get(self.JOB_KEY.format(job_id))
        return job_from_wire(json.loads(raw)) if raw else None

    def save(self, job: Job) -> None:
        key = self.JOB_KEY.format(job.id)
        payload = _dumps(job_to_wire(job))
        if job.status.terminal:
            self.client.set(key, payload, ex=self.terminal_ttl_seconds)
        else:
            # un job requeue redevient permanent
            self.client.set(key, payload)

    def add_dead_letter(self, record: DeadLetterRecord) -> None:
        pipe = self.client.pipeline()
        pipe.set(
            self.DLQ_KEY.format(record.job_id),
            _dumps(dead_letter_to_wire(record)),
            ex=self.dead_letter_ttl_seconds,
        )
        pipe.zadd(self.DLQ_INDEX, {record.job_id: record.dead_lettered_at})
        pipe.execute()

    def get_dead_letter(self, job_id: str) -> DeadLetterRecord | None:
        raw = self.client.get(self.DLQ_KEY.format(job_id))
        return dead_letter_from_wire(json.loads(raw)) if raw else None

    def list_dead_letters(self, limit: int = 100) -> list[DeadLetterRecord]:
        if limit <= 0:
            return []
        ids = self.client.zrevrange(self.DLQ_INDEX, 0, limit - 1)
        if not ids:
            return []
        raws = self.client.mget([self.DLQ_KEY.format(i) for i in ids])
        records: list[DeadLetterRecord] = []
        stale: list[str] = []
        for job_id, raw in zip(ids, raws, strict=True):
            if raw:
                records.append(dead_letter_from_wire(json.loads(raw)))
            else:
                stale.append(job_id)
        if stale:
            self.client.zrem(self.DLQ_INDEX, *stale)
        return records

    def remove_dead_letter(self, job_id: str) -> bool:
        pipe = self.client.pipeline()
        pipe.delete(self.DLQ_KEY.format(job_id))
        pipe.zrem(self.DLQ_INDEX, job_id)
        deleted, _ = pipe.execute()
        return bool(deleted)

    def purge_expired(self) -> dict[str, int]:
        """Les clés expirent côté Redis; seul l'index dead-letter est nettoyé ici."""
        cutoff = self._clock() - self.dead_letter_ttl_seconds
        removed = self.client.zremrangebyscore(self.DLQ_INDEX, "-inf", cutoff)
        return {"jobs": 0, "dead_letters": int(removed or 0)}
