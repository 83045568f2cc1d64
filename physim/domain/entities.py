"""
Entités du domaine métier.

Ce module définit les entités manipulées par le coeur d'orchestration: entrées du cache, jobs
asynchrones, enregistrements dead-letter, simulations mises en avant, ainsi que les résultats
renvoyés par `submit`. La conversion vers un format de stockage vit dans les adaptateurs
(`physim.infra.job_store`), pas ici.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, model_validator

from physim.domain.manifest import Manifest, PhysicsType


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class JobStatus(str, Enum):
    """Cycle de vie d'un job: PENDING → PROCESSING → {READY | FAILED}."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.READY, JobStatus.FAILED)


# PROCESSING → PENDING: ré-entrée après une tentative échouée; FAILED → PENDING: requeue opérateur.
JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.READY, JobStatus.FAILED, JobStatus.PENDING}),
    JobStatus.READY: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
}


class FailureReason(str, Enum):
    """Cause d'échec définitif d'un job (taxonomie dead-letter)."""

    TIMEOUT = "timeout"
    INVALID_OUTPUT = "invalid_output"
    UPSTREAM_ERROR = "upstream_error"
    VALIDATION_FAILURE = "validation_failure"


class GenerationRequest(BaseModel):
    """Requête de génération: exactement un texte ou une image."""

    text: str | None = None
    image: bytes | None = None
    hint: str | None = None
    user_id: str = "anonymous"

    @model_validator(mode="after")
    def _exactly_one_input(self) -> GenerationRequest:
        has_text = self.text is not None
        has_image = self.image is not None
        if has_text == has_image:
            raise ValueError("exactly one of text or image is required")
        return self


@dataclass
class CacheEntry:
    """Entrée du cache de similarité (seuls `access_count`/`last_access` évoluent)."""

    embedding: tuple[float, ...]
    text: str
    manifest: Manifest
    created_at: float
    expires_at: float | None
    featured: bool = False
    key: str | None = None
    access_count: int = 0
    last_access: int = 0

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class Job:
    """Job de génération asynchrone."""

    id: str
    owner: str
    request: dict
    status: JobStatus = JobStatus.PENDING
    manifest: Manifest | None = None
    error: str | None = None
    created_at: float = 0.0
    updated_at: float = 0.0
    completed_at: float | None = None
    attempts: int = 0
    confidence: float | None = None
    clarification: str | None = None


@dataclass
class DeadLetterRecord:
    """Trace durable d'un job en échec définitif, conservée pour investigation opérateur."""

    job_id: str
    owner: str
    request: dict
    reason: FailureReason
    detail: str
    attempts: int
    created_at: float
    dead_lettered_at: float


@dataclass(frozen=True)
class FeaturedSimulation:
    """Entrée du catalogue statique, chargée une fois au démarrage."""

    id: str
    title: str
    physics_type: PhysicsType
    tags: frozenset[str]
    manifest: Manifest
    embedding: tuple[float, ...] = field(default=(), compare=False, repr=False)


# --- Résultats de `submit` -----------------------------------------------------------------


@dataclass(frozen=True)
class ManifestResult:
    manifest: Manifest
    hit: bool


@dataclass(frozen=True)
class JobAccepted:
    job_id: str
    status: JobStatus = JobStatus.PENDING


@dataclass(frozen=True)
class ErrorResult:
    error: str
    message: str


@dataclass(frozen=True)
class FallbackResult:
    featured: tuple[FeaturedSimulation, ...]
    message: str


@dataclass(frozen=True)
class ClarificationResult:
    message: str
    confidence: float


SubmitResult = ManifestResult | JobAccepted | ErrorResult | FallbackResult | ClarificationResult


@dataclass(frozen=True)
class JobView:
    """Vue publique d'un job (`job_status`)."""

    job_id: str
    status: JobStatus
    manifest: Manifest | None = None
    error: str | None = None
    confidence: float | None = None
    clarification: str | None = None
