"""Tests du circuit breaker (fenêtre glissante, ouverture, sonde unique en HALF_OPEN)."""

from __future__ import annotations

import threading

import pytest

from physim.domain.entities import CircuitState
from physim.domain.errors import CircuitOpenError
from physim.services.circuit_breaker import CircuitBreaker
from tests.fakes import FakeClock, RecordingSink


def _breaker(**kwargs) -> tuple[CircuitBreaker, FakeClock, RecordingSink]:
    clock = FakeClock()
    events = RecordingSink()
    return CircuitBreaker(clock=clock, events=events, **kwargs), clock, events


def _trip(breaker: CircuitBreaker, n: int = 5) -> None:
    for _ in range(n):
        breaker.record_failure(breaker.allow())


def test_opens_on_fifth_failure_in_window() -> None:
    breaker, _, events = _breaker()
    _trip(breaker, 4)
    assert breaker.state is CircuitState.CLOSED
    assert breaker.allow()
    _trip(breaker, 1)
    assert breaker.state is CircuitState.OPEN
    assert breaker.allow() is None
    assert events.of("breaker.transition") == [
        {"breaker": "generation", "from_state": "closed", "to_state": "open"}
    ]


def test_failures_outside_window_are_forgotten() -> None:
    breaker, clock, _ = _breaker()
    _trip(breaker, 4)
    clock.advance(60)
    _trip(breaker, 4)
    assert breaker.state is CircuitState.CLOSED
    assert breaker.snapshot()["failures_in_window"] == 4


def test_half_open_after_cooldown_grants_single_probe() -> None:
    """30 s après l'ouverture, un seul appel sonde; les autres sont refusés."""
    breaker, clock, _ = _breaker()
    _trip(breaker)
    clock.advance(29.9)
    assert breaker.allow() is None
    clock.advance(0.1)
    probe = breaker.allow()
    assert probe and probe.probe
    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.allow() is None


def test_probe_success_closes_and_resets_window() -> None:
    breaker, clock, events = _breaker()
    _trip(breaker)
    clock.advance(30)
    probe = breaker.allow()
    breaker.record_success(probe)
    assert breaker.state is CircuitState.CLOSED
    assert breaker.snapshot()["failures_in_window"] == 0
    assert [e["to_state"] for e in events.of("breaker.transition")] == [
        "open",
        "half_open",
        "closed",
    ]


def test_probe_failure_reopens_with_fresh_timer() -> None:
    breaker, clock, _ = _breaker()
    _trip(breaker)
    clock.advance(30)
    breaker.record_failure(breaker.allow())
    assert breaker.state is CircuitState.OPEN
    clock.advance(29)
    assert breaker.allow() is None
    clock.advance(1)
    assert breaker.allow()


def test_release_frees_probe_without_verdict() -> None:
    breaker, clock, _ = _breaker()
    _trip(breaker)
    clock.advance(30)
    probe = breaker.allow()
    breaker.release(probe)
    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.allow()


def test_stale_permit_cannot_decide_half_open() -> None:
    """Un verdict tardif d'une sonde précédente est ignoré."""
    breaker, clock, _ = _breaker()
    _trip(breaker)
    clock.advance(30)
    stale = breaker.allow()
    breaker.release(stale)
    current = breaker.allow()
    breaker.record_failure(stale)
    breaker.record_success(stale)
    breaker.release(stale)
    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.allow() is None
    breaker.record_success(current)
    assert breaker.state is CircuitState.CLOSED


def test_closed_permit_cannot_close_half_open() -> None:
    breaker, clock, _ = _breaker()
    early = breaker.allow()
    _trip(breaker)
    clock.advance(30)
    breaker.allow()
    breaker.record_success(early)
    assert breaker.state is CircuitState.HALF_OPEN


def test_late_failure_while_open_is_ignored() -> None:
    breaker, clock, _ = _breaker()
    late = breaker.allow()
    _trip(breaker)
    opened_at = breaker.snapshot()["opened_at"]
    clock.advance(10)
    breaker.record_failure(late)
    assert breaker.snapshot()["opened_at"] == opened_at


def test_release_after_verdict_is_noop() -> None:
    breaker, clock, _ = _breaker()
    _trip(breaker)
    clock.advance(30)
    probe = breaker.allow()
    breaker.record_success(probe)
    breaker.release(probe)
    assert breaker.state is CircuitState.CLOSED


def test_concurrent_allow_grants_one_probe() -> None:
    breaker, clock, _ = _breaker()
    _trip(breaker)
    clock.advance(30)
    granted = []
    lock = threading.Lock()
    barrier = threading.Barrier(16)

    def worker() -> None:
        barrier.wait()
        permit = breaker.allow()
        if permit:
            with lock:
                granted.append(permit)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(granted) == 1
    assert granted[0].probe


def test_acquire_raises_when_open() -> None:
    breaker, clock, _ = _breaker()
    assert breaker.acquire() == breaker.allow()
    _trip(breaker)
    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.acquire()
    assert excinfo.value.breaker == "generation"
    clock.advance(30)
    assert breaker.acquire().probe
