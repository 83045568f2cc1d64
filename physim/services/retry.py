"""Exécuteur de retries pour un appel amont unique.

- Échecs retriables (timeout, rate-limit, erreur serveur): jusqu'à 3 retries avec des délais de
  1 s, 2 s, 4 s (backoff exponentiel pur, sans jitter). Le 4e échec est terminal.
- Échecs non retriables (bad request, auth, permission): propagés immédiatement.

L'exécuteur ignore tout de l'état du breaker ou des jobs: c'est à l'appelant de reporter
l'épuisement des retries. Une échéance optionnelle (`deadline`, horloge monotone) interrompt la
séquence quand le prochain backoff la dépasserait.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from physim.domain.errors import (
    DeadlineExceededError,
    ErrorKind,
    GenerationError,
    RetryExhaustedError,
)
from physim.infra.events import EventSink, NullEventSink

T = TypeVar("T")


@dataclass
class RetryContext:
    """État d'une séquence de retries (portée: un appel `execute`)."""

    attempt: int = 0
    last_kind: ErrorKind | None = None
    next_delay: float | None = None


class RetryExecutor:
    """Enveloppe réutilisable: `execute(attempt_fn)`."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        factor: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        events: EventSink | None = None,
    ) -> None:
        self.max_retries = max(0, max_retries)
        self.base_delay = base_delay
        self.factor = factor
        self._sleep = sleep
        self._clock = clock
        self._events = events or NullEventSink()

    def delay_for(self, retry_number: int) -> float:
        """Délai avant le retry n (1-indexé): base * factor^(n-1)."""
        return self.base_delay * self.factor ** (retry_number - 1)

    def execute(self, attempt_fn: Callable[[], T], *, deadline: float | None = None) -> T:
        """Exécute `attempt_fn` avec retries classifiés.

        Raises:
            GenerationError: échec non retriable (aucun retry).
            RetryExhaustedError: 1 tentative initiale + `max_retries` retries toutes en échec.
            DeadlineExceededError: le prochain backoff dépasserait `deadline`.
        """
        ctx = RetryContext()
        while True:
            try:
                return attempt_fn()
            except TimeoutError as exc:
                error = GenerationError(ErrorKind.TIMEOUT, str(exc) or "timeout")
                cause: BaseException = exc
            except GenerationError as exc:
                error = exc
                cause = exc
            ctx.last_kind = error.kind
            if not error.retriable:
                raise error
            if ctx.attempt >= self.max_retries:
                raise RetryExhaustedError(error, ctx.attempt + 1) from cause
            ctx.attempt += 1
            ctx.next_delay = self.delay_for(ctx.attempt)
            if deadline is not None and self._clock() + ctx.next_delay > deadline:
                raise DeadlineExceededError(error, ctx.attempt) from cause
            self._events.emit(
                "retry.attempt",
                attempt=ctx.attempt,
                kind=error.kind.value,
                delay=ctx.next_delay,
            )
            self._sleep(ctx.next_delay)
