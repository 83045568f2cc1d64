"""Circuit breaker protégeant le backend de génération.

Machine à états explicite:

- CLOSED: les appels passent; chaque échec est compté dans une fenêtre glissante (60 s). Au 5e
  échec dans la fenêtre, passage à OPEN et mémorisation de `opened_at`.
- OPEN: tous les appels sont refusés. 30 s après `opened_at`, le prochain `allow()` passe en
  HALF_OPEN et obtient l'unique sonde.
- HALF_OPEN: une seule sonde en vol. Succès → CLOSED (fenêtre remise à zéro); échec → OPEN avec
  `opened_at` réinitialisé. Les appels concurrents pendant la sonde sont refusés.

`allow()` retourne un `Permit` (vrai) ou None. Le permis indique si l'appelant détient la sonde:
seul le détenteur de la sonde peut trancher l'état HALF_OPEN ou la libérer. Les verdicts tardifs
d'appels partis avant un changement d'état sont ignorés.

L'état est partagé entre threads: toutes les lectures et transitions sont sérialisées par un
verrou unique. L'instance est possédée par le conteneur et injectée dans les orchestrateurs.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from physim.domain.entities import CircuitState
from physim.domain.errors import CircuitOpenError
from physim.infra.events import EventSink, NullEventSink

Transition = tuple[CircuitState, CircuitState]


@dataclass(frozen=True)
class Permit:
    """Autorisation d'un appel amont; `probe` si l'appel est la sonde HALF_OPEN."""

    probe: bool = False
    epoch: int = 0


class CircuitBreaker:
    """Breaker à fenêtre glissante avec sonde unique en HALF_OPEN."""

    def __init__(
        self,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        open_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        events: EventSink | None = None,
        name: str = "generation",
    ) -> None:
        self.failure_threshold = max(1, failure_threshold)
        self.window_seconds = window_seconds
        self.open_seconds = open_seconds
        self.name = name
        self._clock = clock
        self._events = events or NullEventSink()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._probe_in_flight = False
        # incrémenté à chaque sonde accordée: un permis d'une sonde précédente ne tranche rien
        self._epoch = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    def allow(self) -> Permit | None:
        """Indique si un appel amont peut partir; en HALF_OPEN, réserve la sonde."""
        transition = None
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return Permit()
            if self._state is CircuitState.OPEN:
                if self._clock() - (self._opened_at or 0.0) < self.open_seconds:
                    return None
                transition = self._move(CircuitState.HALF_OPEN)
                permit = self._grant_probe()
            elif self._probe_in_flight:
                permit = None
            else:
                permit = self._grant_probe()
        self._emit(transition)
        return permit

    def acquire(self) -> Permit:
        """Comme `allow()`, mais un refus lève `CircuitOpenError`."""
        permit = self.allow()
        if permit is None:
            raise CircuitOpenError(self.name)
        return permit

    def record_success(self, permit: Permit | None = None) -> None:
        """Verdict positif. En HALF_OPEN, seule la sonde referme le circuit."""
        transition = None
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and self._holds_probe(permit):
                transition = self._move(CircuitState.CLOSED)
                self._failures.clear()
                self._opened_at = None
                self._probe_in_flight = False
        self._emit(transition)

    def record_failure(self, permit: Permit | None = None) -> None:
        """Échec final d'un appel (retries épuisés)."""
        transition = None
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                if self._holds_probe(permit):
                    transition = self._trip(now)
            elif self._state is CircuitState.CLOSED:
                self._failures.append(now)
                self._prune(now)
                if len(self._failures) >= self.failure_threshold:
                    transition = self._trip(now)
        self._emit(transition)

    def release(self, permit: Permit | None = None) -> None:
        """Libère la sonde sans verdict (appel abandonné ou erreur côté appelant)."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and self._holds_probe(permit):
                self._probe_in_flight = False

    def snapshot(self) -> dict:
        with self._lock:
            self._prune(self._clock())
            return {
                "name": self.name,
                "state": self._state.value,
                "failures_in_window": len(self._failures),
                "opened_at": self._opened_at,
                "probe_in_flight": self._probe_in_flight,
            }

    # -------------------- Interne (verrou détenu) --------------------

    def _grant_probe(self) -> Permit:
        self._epoch += 1
        self._probe_in_flight = True
        return Permit(probe=True, epoch=self._epoch)

    def _holds_probe(self, permit: Permit | None) -> bool:
        # sans permis: l'appelant est réputé détenir la sonde courante
        if permit is None:
            return self._probe_in_flight
        return permit.probe and permit.epoch == self._epoch and self._probe_in_flight

    def _prune(self, now: float) -> None:
        while self._failures and now - self._failures[0] >= self.window_seconds:
            self._failures.popleft()

    def _trip(self, now: float) -> Transition:
        transition = self._move(CircuitState.OPEN)
        self._opened_at = now
        self._failures.clear()
        self._probe_in_flight = False
        return transition

    def _move(self, target: CircuitState) -> Transition:
        previous = self._state
        self._state = target
        return previous, target

    def _emit(self, transition: Transition | None) -> None:
        if transition is None:
            return
        previous, target = transition
        self._events.emit(
            "breaker.transition",
            breaker=self.name,
            from_state=previous.value,
            to_state=target.value,
        )
