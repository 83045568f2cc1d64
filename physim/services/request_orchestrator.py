"""
Orchestrateur des requêtes synchrones (`submit`).

Déroulé pour une requête:

1. contrôle d'entrée: exactement un texte ou une image, taille bornée;
2. image: recherche exacte par empreinte de contenu; texte: embedding puis recherche par
   similarité. Un hit est servi sans aucun appel au backend de génération;
   embedding impossible → repli sur le catalogue si le breaker refuse, erreur sinon;
3. garde du breaker: refus → simulations mises en avant les plus proches;
4. coût estimé au-dessus du seuil → job asynchrone (la sonde éventuelle est libérée);
5. génération via `RetryExecutor` avec échéance (5 s texte, 8 s image); échéance dépassée →
   échec compté par le breaker et bascule en job asynchrone;
6. validation, avec au plus une régénération complète si le manifeste est invalide;
7. image peu sûre (confiance < 0.7) → demande de précision; sinon mise en cache et réponse.

Seules les erreurs d'entrée, les erreurs amont permanentes et l'indisponibilité persistante
remontent, sous forme d'`ErrorResult` avec un message non technique.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from physim.app.metrics import GENERATION_LATENCY, MANIFESTS_GENERATED, labelize
from physim.domain.entities import (
    ClarificationResult,
    ErrorResult,
    FallbackResult,
    GenerationRequest,
    JobAccepted,
    JobView,
    ManifestResult,
    SubmitResult,
)
from physim.domain.errors import (
    USER_MESSAGES,
    DeadlineExceededError,
    DimensionMismatchError,
    GenerationError,
    InputError,
    RetryExhaustedError,
    ValidationFailedError,
)
from physim.domain.validator import ManifestValidator
from physim.infra.embeddings.base import Embeddings, content_hash
from physim.infra.events import EventSink, NullEventSink
from physim.infra.generation.base import GenerationClient
from physim.services.circuit_breaker import CircuitBreaker, Permit
from physim.services.featured import FeaturedCatalog
from physim.services.job_orchestrator import JobOrchestrator
from physim.services.retry import RetryExecutor
from physim.services.similarity_cache import SimilarityCache

log = structlog.get_logger(__name__)

# Modèle de coût (unités arbitraires, seuil par défaut 1.0): ~2000 caractères ou ~1 MiB d'image
TEXT_BASE_COST = 0.2
TEXT_COST_PER_KCHAR = 0.4
IMAGE_BASE_COST = 0.5
IMAGE_COST_PER_MIB = 0.5
HINT_COST = 0.05
MIB = 1024 * 1024


@dataclass(frozen=True)
class SubmitPolicy:
    """Budgets et seuils du chemin synchrone."""

    text_budget_s: float = 5.0
    image_budget_s: float = 8.0
    confidence_min: float = 0.7
    async_cost_threshold: float = 1.0
    validation_retries: int = 1
    max_text_len: int = 4000
    max_image_bytes: int = 10 * MIB
    fallback_count: int = 3
    allowed_physics_types: Sequence[str] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings: Any) -> SubmitPolicy:
        return cls(
            text_budget_s=settings.TEXT_LATENCY_BUDGET_S,
            image_budget_s=settings.IMAGE_LATENCY_BUDGET_S,
            confidence_min=settings.IMAGE_CONFIDENCE_MIN,
            async_cost_threshold=settings.ASYNC_COST_THRESHOLD,
            validation_retries=settings.GENERATION_VALIDATION_RETRIES,
            max_text_len=settings.MAX_TEXT_LEN,
            max_image_bytes=settings.MAX_IMAGE_BYTES,
            fallback_count=settings.FALLBACK_COUNT,
            allowed_physics_types=tuple(settings.ALLOWED_PHYSICS_TYPES or ()),
        )


def estimate_cost(request: GenerationRequest) -> float:
    """Coût relatif d'une génération; au-dessus du seuil, la requête part en asynchrone."""
    cost = HINT_COST if request.hint else 0.0
    if request.image is not None:
        return cost + IMAGE_BASE_COST + IMAGE_COST_PER_MIB * len(request.image) / MIB
    return cost + TEXT_BASE_COST + TEXT_COST_PER_KCHAR * len(request.text or "") / 1000


class RequestOrchestrator:
    """Point d'entrée synchrone: cache, breaker, retries, validation, repli."""

    def __init__(
        self,
        embedder: Embeddings,
        cache: SimilarityCache,
        breaker: CircuitBreaker,
        retry: RetryExecutor,
        generator: GenerationClient,
        validator: ManifestValidator,
        jobs: JobOrchestrator,
        featured: FeaturedCatalog,
        policy: SubmitPolicy | None = None,
        events: EventSink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._embedder = embedder
        self._cache = cache
        self._breaker = breaker
        self._retry = retry
        self._generator = generator
        self._validator = validator
        self._jobs = jobs
        self._featured = featured
        self.policy = policy or SubmitPolicy()
        self._events = events or NullEventSink()
        self._clock = clock

    estimate_cost = staticmethod(estimate_cost)

    # -------------------- API --------------------

    def submit(self, request: GenerationRequest | dict[str, Any]) -> SubmitResult:
        """Traite une requête de génération et retourne l'un des résultats de `SubmitResult`."""
        result = self._submit(request)
        self._events.emit("submit.outcome", outcome=_outcome(result))
        return result

    def job_status(self, job_id: str) -> JobView:
        """Raises: JobNotFoundError."""
        return self._jobs.status(job_id)

    def parse_request(self, request: GenerationRequest | dict[str, Any]) -> GenerationRequest:
        """Valide la forme de la requête.

        Raises:
            InputError: zéro ou deux entrées, texte vide, entrée trop volumineuse.
        """
        if not isinstance(request, GenerationRequest):
            try:
                request = GenerationRequest.model_validate(request)
            except ValidationError as exc:
                raise InputError(str(exc)) from exc
        if request.text is not None:
            if not request.text.strip():
                raise InputError("text is blank")
            if len(request.text) > self.policy.max_text_len:
                raise InputError(f"text longer than {self.policy.max_text_len} characters")
        if request.image is not None:
            if not request.image:
                raise InputError("image is empty")
            if len(request.image) > self.policy.max_image_bytes:
                raise InputError(f"image larger than {self.policy.max_image_bytes} bytes")
        return request

    # -------------------- Déroulé --------------------

    def _submit(self, raw: GenerationRequest | dict[str, Any]) -> SubmitResult:
        try:
            request = self.parse_request(raw)
        except InputError as exc:
            log.info("submit_rejected", reason=str(exc))
            return ErrorResult("input", USER_MESSAGES["input"])

        is_image = request.image is not None
        budget = self.policy.image_budget_s if is_image else self.policy.text_budget_s
        deadline = self._clock() + budget
        key = content_hash(request.image) if is_image else None

        if key is not None:
            entry = self._cache.get_by_key(key)
            if entry is not None:
                return ManifestResult(entry.manifest, hit=True)

        try:
            embedding = self._embed(request, deadline)
        except GenerationError as exc:
            log.warning("embedding_failed", kind=exc.kind.value)
            return self._unembedded("upstream_permanent")
        except (RetryExhaustedError, DeadlineExceededError) as exc:
            log.warning("embedding_unavailable", error=str(exc))
            return self._unembedded("upstream_unavailable")

        if key is None:
            entry = self._cache.get(embedding)
            if entry is not None:
                return ManifestResult(entry.manifest, hit=True)

        permit = self._breaker.allow()
        if not permit:
            return self._fallback(embedding)
        try:
            if estimate_cost(request) > self.policy.async_cost_threshold:
                # le job repassera par la garde du breaker au moment du traitement
                self._breaker.release(permit)
                return self._promote(request, reason="cost")
            return self._generate(request, embedding, key, deadline, permit)
        finally:
            # abandon de l'appelant: la sonde ne doit pas rester réservée
            self._breaker.release(permit)

    def _embed(self, request: GenerationRequest, deadline: float) -> list[float]:
        if request.image is not None:
            image = request.image
            return self._retry.execute(lambda: self._embedder.embed_image(image), deadline=deadline)
        text = request.text or ""
        return self._retry.execute(lambda: self._embedder.embed([text])[0], deadline=deadline)

    def _generate(
        self,
        request: GenerationRequest,
        embedding: list[float],
        key: str | None,
        deadline: float,
        permit: Permit,
    ) -> SubmitResult:
        mode = "image" if key is not None else "text"
        validation = None
        result = None
        for run in range(1 + max(0, self.policy.validation_retries)):
            start = time.perf_counter()
            try:
                result = self._retry.execute(
                    lambda: self._generator.generate(
                        text=request.text, image=request.image, hint=request.hint
                    ),
                    deadline=deadline,
                )
            except RetryExhaustedError as exc:
                self._breaker.record_failure(permit)
                log.warning("generation_unavailable", attempts=exc.attempts, mode=mode)
                return ErrorResult("upstream_unavailable", USER_MESSAGES["upstream_unavailable"])
            except DeadlineExceededError as exc:
                # échecs retriables jusqu'à l'échéance: comptés comme un échec du backend
                self._breaker.record_failure(permit)
                log.warning("generation_deadline", attempts=exc.attempts, mode=mode)
                return self._promote(request, reason="deadline")
            except GenerationError as exc:
                # erreur côté appelant: aucun verdict sur la santé du backend
                self._breaker.release(permit)
                log.info("generation_rejected", kind=exc.kind.value, mode=mode)
                return ErrorResult("upstream_permanent", USER_MESSAGES["upstream_permanent"])
            finally:
                GENERATION_LATENCY.labels(mode).observe(time.perf_counter() - start)
            self._breaker.record_success(permit)
            validation = self._validator.validate(result.manifest)
            if validation.valid:
                break
            log.info(
                "generation_invalid",
                run=run + 1,
                errors=[str(e) for e in validation.errors][:10],
                mode=mode,
            )
        if validation is None or result is None:
            return ErrorResult("invalid_output", USER_MESSAGES["invalid_output"])
        try:
            manifest = validation.raise_for_errors()
        except ValidationFailedError:
            return ErrorResult("invalid_output", USER_MESSAGES["invalid_output"])

        MANIFESTS_GENERATED.labels(
            labelize(manifest.physics_type.value, list(self.policy.allowed_physics_types)), mode
        ).inc()
        if key is not None and result.confidence is not None:
            if result.confidence < self.policy.confidence_min:
                return ClarificationResult(USER_MESSAGES["clarification"], result.confidence)
        try:
            text = request.text if key is None else f"image:{key}"
            self._cache.put(embedding, text or "", manifest, key=key)
        except DimensionMismatchError as exc:
            log.warning("cache_put_skipped", error=str(exc))
        return ManifestResult(manifest, hit=False)

    def _promote(self, request: GenerationRequest, reason: str) -> JobAccepted:
        job = self._jobs.create(request)
        log.info("submit_promoted_to_job", job_id=job.id, reason=reason)
        return JobAccepted(job.id, job.status)

    def _unembedded(self, code: str) -> SubmitResult:
        """Embedding impossible: repli sur le catalogue si le breaker refuse, sinon erreur."""
        permit = self._breaker.allow()
        if not permit:
            return self._fallback(None)
        self._breaker.release(permit)
        return ErrorResult(code, USER_MESSAGES[code])

    def _fallback(self, embedding: Sequence[float] | None) -> FallbackResult:
        featured = self._featured.top(embedding, k=self.policy.fallback_count)
        return FallbackResult(featured, USER_MESSAGES["fallback"])


def _outcome(result: SubmitResult) -> str:
    if isinstance(result, ManifestResult):
        return "hit" if result.hit else "generated"
    if isinstance(result, JobAccepted):
        return "job"
    if isinstance(result, FallbackResult):
        return "fallback"
    if isinstance(result, ClarificationResult):
        return "clarification"
    return f"error_{result.error}"
