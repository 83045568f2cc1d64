"""Tests du conteneur d'injection (choix des backends, repli mémoire, providers)."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest
import redis

from physim.core.container import Container
from physim.core.settings import Settings
from physim.infra.embeddings.hashing_embedder import HashingEmbedder
from physim.infra.job_queue import CeleryJobQueue, ThreadJobQueue
from physim.infra.job_store import InMemoryJobStore, RedisJobStore


def test_memory_backends_without_redis() -> None:
    c = Container(settings=Settings(EMBEDDINGS_DIM=16))
    assert c.storage_backend == "memory"
    assert isinstance(c.job_store, InMemoryJobStore)
    assert isinstance(c.embedder, HashingEmbedder)
    assert c.embedding_model_id == "hashing:16"
    assert c.health()["redis"] is None


def test_featured_are_seeded_into_cache() -> None:
    c = Container(settings=Settings(EMBEDDINGS_DIM=16))
    stats = c.cache.stats()
    assert stats["featured"] == len(c.featured) > 0
    assert all(len(sim.embedding) == 16 for sim in c.featured)


def test_unreachable_redis_falls_back_to_memory() -> None:
    with patch("physim.core.container.redis.Redis.from_url") as from_url:
        from_url.return_value.ping.side_effect = redis.ConnectionError("down")
        c = Container(settings=Settings(REDIS_URL="redis://cache:6379/0"))
    assert c.redis is None
    assert c.storage_backend == "memory"


def test_require_redis_makes_fallback_fatal() -> None:
    with pytest.raises(RuntimeError):
        Container(settings=Settings(REQUIRE_REDIS=True))
    with patch("physim.core.container.redis.Redis.from_url") as from_url:
        from_url.return_value.ping.side_effect = redis.ConnectionError("down")
        with pytest.raises(RuntimeError):
            Container(settings=Settings(REDIS_URL="redis://cache:6379/0", REQUIRE_REDIS=True))


def test_redis_client_selects_redis_store() -> None:
    client = Mock()
    c = Container(settings=Settings(), redis_client=client)
    assert c.storage_backend == "redis"
    assert isinstance(c.job_store, RedisJobStore)
    client.ping.side_effect = redis.ConnectionError("down")
    assert c.health()["redis"] is False


def test_queue_backend_selection() -> None:
    assert isinstance(Container(settings=Settings()).job_queue, ThreadJobQueue)
    c = Container(settings=Settings(JOB_QUEUE_BACKEND="celery"))
    assert isinstance(c.job_queue, CeleryJobQueue)
    with pytest.raises(ValueError):
        _ = Container(settings=Settings(JOB_QUEUE_BACKEND="kafka")).job_queue


def test_openai_generator_requires_key() -> None:
    c = Container(settings=Settings(GENERATION_PROVIDER="openai"))
    with pytest.raises(ValueError):
        _ = c.generator
    with pytest.raises(ValueError):
        _ = Container(settings=Settings(GENERATION_PROVIDER="smoke")).generator


def test_thread_queue_is_bound_to_job_orchestrator() -> None:
    c = Container(settings=Settings(EMBEDDINGS_DIM=16, GENERATION_PROVIDER="http",
                                    GENERATION_URL="http://generator.local"))
    orchestrator = c.job_orchestrator
    assert c.job_queue._handler == orchestrator.run
