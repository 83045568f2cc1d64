"""
Conteneur d'injection de dépendances.

Instancie les composants centraux (breaker, cache, validateur, clients amont, store et file de
jobs, orchestrateurs) et expose un singleton `container` utilisé par l'API, les tâches Celery et
les scripts. Les composants sont construits à la première utilisation: importer le module ne
contacte aucun service externe.

Stockage: Redis quand `REDIS_URL` est défini, mémoire sinon; `REQUIRE_REDIS` transforme le repli
en erreur de démarrage.
"""

from __future__ import annotations

from functools import cached_property
from typing import Any

import redis
import structlog

from physim.core.settings import Settings, get_settings
from physim.domain.validator import ManifestValidator
from physim.infra.assets import FilesystemAssetLookup
from physim.infra.embeddings.base import Embeddings
from physim.infra.events import StructlogEventSink
from physim.infra.generation.base import GenerationClient
from physim.infra.job_queue import CeleryJobQueue, JobQueue, ThreadJobQueue
from physim.infra.job_store import InMemoryJobStore, JobStore, RedisJobStore
from physim.infra.notifications import (
    LogNotificationSink,
    NotificationSink,
    RedisNotificationSink,
)
from physim.infra.ops.idempotency import IdempotencyStore
from physim.services.circuit_breaker import CircuitBreaker
from physim.services.featured import FeaturedCatalog
from physim.services.job_orchestrator import JobOrchestrator
from physim.services.request_orchestrator import RequestOrchestrator, SubmitPolicy
from physim.services.retry import RetryExecutor
from physim.services.similarity_cache import SimilarityCache, build_index

log = structlog.get_logger(__name__)


class Container:
    def __init__(self, settings: Settings | None = None, redis_client: Any | None = None):
        self.settings = settings or get_settings()
        self.events = StructlogEventSink()
        self.redis = redis_client if redis_client is not None else self._connect_redis()
        self.storage_backend = "redis" if self.redis is not None else "memory"

    def _connect_redis(self) -> Any | None:
        url = self.settings.REDIS_URL
        if not url:
            if self.settings.REQUIRE_REDIS:
                raise RuntimeError("Redis required but REDIS_URL not set")
            return None
        try:
            client = redis.Redis.from_url(url, decode_responses=True)
            client.ping()
            return client
        except redis.RedisError as err:
            if self.settings.REQUIRE_REDIS:
                raise RuntimeError("Redis required but unavailable") from err
            log.warning("redis_unavailable_memory_fallback", error=type(err).__name__)
            return None

    # -------------------- Coeur --------------------

    @cached_property
    def breaker(self) -> CircuitBreaker:
        s = self.settings
        return CircuitBreaker(
            failure_threshold=s.BREAKER_FAILURE_THRESHOLD,
            window_seconds=s.BREAKER_WINDOW_SECONDS,
            open_seconds=s.BREAKER_OPEN_SECONDS,
            events=self.events,
        )

    @cached_property
    def retry(self) -> RetryExecutor:
        s = self.settings
        return RetryExecutor(
            max_retries=s.RETRY_MAX_RETRIES,
            base_delay=s.RETRY_BASE_DELAY_S,
            factor=s.RETRY_FACTOR,
            events=self.events,
        )

    @cached_property
    def validator(self) -> ManifestValidator:
        return ManifestValidator(FilesystemAssetLookup(self.settings.ASSETS_ROOT), self.events)

    @cached_property
    def featured(self) -> FeaturedCatalog:
        catalog = FeaturedCatalog.load(self.settings.FEATURED_CATALOG_PATH)
        return catalog.with_embeddings(self.embedder, self.embedding_model_id)

    @cached_property
    def cache(self) -> SimilarityCache:
        s = self.settings
        cache = SimilarityCache(
            threshold=s.CACHE_SIMILARITY_THRESHOLD,
            ttl_seconds=s.CACHE_TTL_SECONDS,
            max_entries=s.CACHE_MAX_ENTRIES,
            index=build_index(s.CACHE_INDEX_BACKEND),
            events=self.events,
        )
        seeded = cache.seed_featured(self.featured)
        log.info("cache_seeded", featured=seeded, backend=s.CACHE_INDEX_BACKEND)
        return cache

    # -------------------- Clients amont --------------------

    @property
    def embedding_model_id(self) -> str:
        s = self.settings
        provider = s.EMBEDDINGS_PROVIDER
        if provider == "openai":
            return f"openai:{s.EMBEDDINGS_MODEL}"
        if provider == "local":
            return f"local:{s.LOCAL_EMBEDDINGS_MODEL}"
        return f"hashing:{s.EMBEDDINGS_DIM}"

    @cached_property
    def embedder(self) -> Embeddings:
        s = self.settings
        provider = s.EMBEDDINGS_PROVIDER
        if provider == "openai":
            from physim.infra.embeddings.openai_embedder import OpenAIEmbedder  # noqa: PLC0415

            return OpenAIEmbedder(
                api_key=s.OPENAI_API_KEY, model=s.EMBEDDINGS_MODEL, timeout_s=s.GENERATION_TIMEOUT_S
            )
        if provider == "local":
            # sentence-transformers (extra `local`), chargé uniquement s'il est sélectionné
            from physim.infra.embeddings.local_embedder import LocalEmbedder  # noqa: PLC0415

            return LocalEmbedder(s.LOCAL_EMBEDDINGS_MODEL)
        if provider == "hashing":
            from physim.infra.embeddings.hashing_embedder import HashingEmbedder  # noqa: PLC0415

            return HashingEmbedder(dim=s.EMBEDDINGS_DIM)
        raise ValueError(f"invalid EMBEDDINGS_PROVIDER: {provider}")

    @cached_property
    def generator(self) -> GenerationClient:
        s = self.settings
        provider = s.GENERATION_PROVIDER
        if provider == "openai":
            from physim.infra.generation.openai_client import (  # noqa: PLC0415
                OpenAIGenerationClient,
            )

            return OpenAIGenerationClient(
                api_key=s.OPENAI_API_KEY, model=s.GENERATION_MODEL, timeout_s=s.GENERATION_TIMEOUT_S
            )
        if provider == "http":
            from physim.infra.generation.http_client import HttpGenerationClient  # noqa: PLC0415

            return HttpGenerationClient(
                base_url=s.GENERATION_URL or "",
                api_key=s.OPENAI_API_KEY,
                timeout_s=s.GENERATION_TIMEOUT_S,
            )
        raise ValueError(f"invalid GENERATION_PROVIDER: {provider}")

    # -------------------- Jobs --------------------

    @cached_property
    def job_store(self) -> JobStore:
        s = self.settings
        if self.redis is not None:
            return RedisJobStore(
                self.redis,
                terminal_ttl_seconds=s.JOB_TERMINAL_TTL_SECONDS,
                dead_letter_ttl_seconds=s.DEAD_LETTER_TTL_SECONDS,
            )
        return InMemoryJobStore(
            terminal_ttl_seconds=s.JOB_TERMINAL_TTL_SECONDS,
            dead_letter_ttl_seconds=s.DEAD_LETTER_TTL_SECONDS,
        )

    @cached_property
    def claims(self) -> IdempotencyStore:
        return IdempotencyStore(ttl_seconds=self.settings.JOB_CLAIM_TTL_SECONDS, client=self.redis)

    @cached_property
    def notifications(self) -> NotificationSink:
        if self.redis is not None:
            return RedisNotificationSink(self.redis)
        return LogNotificationSink()

    @cached_property
    def job_queue(self) -> JobQueue:
        s = self.settings
        if s.JOB_QUEUE_BACKEND == "celery":
            return CeleryJobQueue()
        if s.JOB_QUEUE_BACKEND == "thread":
            return ThreadJobQueue(
                threads=s.JOB_WORKER_THREADS, maxsize=s.JOB_QUEUE_MAX, retry_after=s.JOB_DEFER_SECONDS
            )
        raise ValueError(f"invalid JOB_QUEUE_BACKEND: {s.JOB_QUEUE_BACKEND}")

    @cached_property
    def job_orchestrator(self) -> JobOrchestrator:
        s = self.settings
        orchestrator = JobOrchestrator(
            store=self.job_store,
            queue=self.job_queue,
            claims=self.claims,
            breaker=self.breaker,
            retry=self.retry,
            generator=self.generator,
            validator=self.validator,
            cache=self.cache,
            embedder=self.embedder,
            notifications=self.notifications,
            events=self.events,
            max_attempts=s.JOB_MAX_ATTEMPTS,
            claim_ttl_seconds=s.JOB_CLAIM_TTL_SECONDS,
            defer_seconds=s.JOB_DEFER_SECONDS,
            confidence_min=s.IMAGE_CONFIDENCE_MIN,
        )
        if isinstance(self.job_queue, ThreadJobQueue):
            self.job_queue.bind(orchestrator.run)
        return orchestrator

    @cached_property
    def request_orchestrator(self) -> RequestOrchestrator:
        return RequestOrchestrator(
            embedder=self.embedder,
            cache=self.cache,
            breaker=self.breaker,
            retry=self.retry,
            generator=self.generator,
            validator=self.validator,
            jobs=self.job_orchestrator,
            featured=self.featured,
            policy=SubmitPolicy.from_settings(self.settings),
            events=self.events,
        )

    def health(self) -> dict[str, Any]:
        """État synthétique pour `/health` (sans I/O bloquante hors ping Redis)."""
        redis_ok = None
        if self.redis is not None:
            try:
                redis_ok = bool(self.redis.ping())
            except redis.RedisError:
                redis_ok = False
        return {
            "storage": self.storage_backend,
            "redis": redis_ok,
            "breaker": self.breaker.snapshot(),
            "cache": self.cache.stats(),
        }


container = Container()
