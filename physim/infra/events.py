"""Puits d'événements structurés (logs + métriques).

Chaque hit/miss du cache, transition du breaker, retry, état terminal de job et avertissement ou
erreur de validation est émis exactement une fois via `EventSink.emit`. L'implémentation par
défaut journalise avec structlog et alimente les compteurs Prometheus.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from physim.app.metrics import record_event

_WARN_EVENTS = frozenset(
    {"breaker.transition", "job.dead_lettered", "validation.warning", "validation.error"}
)


class EventSink(Protocol):
    """Contrat minimal d'un puits d'événements."""

    def emit(self, event: str, **fields: Any) -> None:
        """Publie un événement structuré."""


class StructlogEventSink:
    """Journalise chaque événement et met à jour les métriques associées."""

    def __init__(self, logger_name: str = "physim.events") -> None:
        self._log = structlog.get_logger(logger_name)

    def emit(self, event: str, **fields: Any) -> None:
        level = "warning" if event in _WARN_EVENTS else "info"
        getattr(self._log, level)(event, **fields)
        record_event(event, fields)


class NullEventSink:
    def emit(self, event: str, **fields: Any) -> None:
        return None
