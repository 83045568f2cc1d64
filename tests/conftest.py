"""Configuration de test pour pytest.

Ajoute la racine du projet au sys.path et fournit les briques de l'orchestration construites sur
des fakes (horloge manuelle, client de génération scripté, file de jobs enregistreuse).
"""

import os
import sys

import pytest

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from physim.domain.validator import ManifestValidator  # noqa: E402
from physim.infra.assets import StaticAssetLookup  # noqa: E402
from physim.infra.job_store import InMemoryJobStore  # noqa: E402
from physim.infra.ops.idempotency import IdempotencyStore, _InMemoryKV  # noqa: E402
from physim.services.circuit_breaker import CircuitBreaker  # noqa: E402
from physim.services.featured import FeaturedCatalog  # noqa: E402
from physim.services.job_orchestrator import JobOrchestrator  # noqa: E402
from physim.services.request_orchestrator import RequestOrchestrator  # noqa: E402
from physim.services.retry import RetryExecutor  # noqa: E402
from physim.services.similarity_cache import SimilarityCache  # noqa: E402
from tests.fakes import (  # noqa: E402
    ADMIN_TOKEN,
    FakeClock,
    FakeEmbeddings,
    ListQueue,
    RecordingNotifications,
    RecordingSink,
    ScriptedGenerationClient,
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Aucun test ne doit dépendre d'un Redis ou d'une clé API présents sur la machine."""
    for key in ("REDIS_URL", "REQUIRE_REDIS", "OPENAI_API_KEY", "OTLP_ENDPOINT", "ENV_FILE"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return RecordingSink()


@pytest.fixture
def embedder():
    return FakeEmbeddings()


@pytest.fixture
def generator():
    return ScriptedGenerationClient()


@pytest.fixture
def breaker(clock, events):
    return CircuitBreaker(clock=clock, events=events)


@pytest.fixture
def retry(clock, events):
    return RetryExecutor(sleep=clock.sleep, clock=clock, events=events)


@pytest.fixture
def validator(events):
    return ManifestValidator(StaticAssetLookup({"meshes/rocket.glb"}), events)


@pytest.fixture
def cache(clock, events):
    return SimilarityCache(clock=clock, events=events)


@pytest.fixture
def featured(embedder):
    return FeaturedCatalog.load().with_embeddings(embedder, "fake")


@pytest.fixture
def queue():
    return ListQueue()


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def job_store(clock):
    return InMemoryJobStore(clock=clock)


@pytest.fixture
def claims(clock):
    return IdempotencyStore(client=_InMemoryKV(clock=clock))


@pytest.fixture
def jobs(job_store, queue, claims, breaker, retry, generator, validator, cache, embedder,
         notifications, events, clock):
    return JobOrchestrator(
        store=job_store,
        queue=queue,
        claims=claims,
        breaker=breaker,
        retry=retry,
        generator=generator,
        validator=validator,
        cache=cache,
        embedder=embedder,
        notifications=notifications,
        events=events,
        clock=clock,
    )


@pytest.fixture
def orchestrator(embedder, cache, breaker, retry, generator, validator, jobs, featured, events,
                 clock):
    return RequestOrchestrator(
        embedder=embedder,
        cache=cache,
        breaker=breaker,
        retry=retry,
        generator=generator,
        validator=validator,
        jobs=jobs,
        featured=featured,
        events=events,
        clock=clock,
    )


@pytest.fixture
def api_container(orchestrator, jobs, breaker, cache):
    """Conteneur réel dont les composants d'orchestration sont remplacés par les fakes."""
    from physim.core.container import Container
    from physim.core.settings import Settings

    c = Container(settings=Settings(ADMIN_TOKEN=ADMIN_TOKEN))
    c.request_orchestrator = orchestrator
    c.job_orchestrator = jobs
    c.breaker = breaker
    c.cache = cache
    return c


@pytest.fixture
def client(api_container):
    from fastapi.testclient import TestClient

    from physim.api.deps import get_container
    from physim.app.main import app

    app.dependency_overrides[get_container] = lambda: api_container
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
