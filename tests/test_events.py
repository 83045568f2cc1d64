"""Tests du puits d'événements structlog et de la traduction en métriques Prometheus."""

from __future__ import annotations

from prometheus_client import REGISTRY
from structlog.testing import capture_logs

from physim.app.metrics import labelize, record_event
from physim.infra.events import StructlogEventSink


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_events_are_logged_with_level() -> None:
    sink = StructlogEventSink()
    with capture_logs() as logs:
        sink.emit("cache.hit", mode="similarity", similarity=0.93)
        sink.emit("breaker.transition", breaker="generation", from_state="closed", to_state="open")
    assert logs[0]["event"] == "cache.hit"
    assert logs[0]["log_level"] == "info"
    assert logs[1]["log_level"] == "warning"


def test_record_event_updates_counters() -> None:
    before = _sample("simcache_lookups_total", {"result": "hit", "mode": "key"})
    record_event("cache.hit", {"mode": "key"})
    assert _sample("simcache_lookups_total", {"result": "hit", "mode": "key"}) == before + 1

    before = _sample("jobs_dead_letter_total", {"reason": "timeout"})
    record_event("job.dead_lettered", {"job_id": "j", "reason": "timeout"})
    assert _sample("jobs_dead_letter_total", {"reason": "timeout"}) == before + 1


def test_unknown_event_is_ignored() -> None:
    record_event("something.else", {})


def test_labelize_whitelist() -> None:
    assert labelize("orbital", []) == "orbital"
    assert labelize("orbital", "projectile,orbital") == "orbital"
    assert labelize("fluid", ["projectile"]) == "unknown"
    assert labelize(None, None) == "unknown"
