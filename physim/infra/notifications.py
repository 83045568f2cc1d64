"""Notification des propriétaires de jobs (job prêt / job en échec)."""

from __future__ import annotations

import json
from typing import Any, Protocol

import structlog


class NotificationSink(Protocol):
    def notify(self, recipient: str, event: dict[str, Any]) -> None:
        """Délivre `event` à `recipient` (au mieux)."""


class LogNotificationSink:
    """Journalise les notifications (dev, tests)."""

    def __init__(self) -> None:
        self._log = structlog.get_logger(__name__).bind(component="notifications")

    def notify(self, recipient: str, event: dict[str, Any]) -> None:
        self._log.info("notification", recipient=recipient, **event)


class RedisNotificationSink:
    """Publie sur le canal Redis `physim:notify:{recipient}` (consommé par la passerelle push)."""

    CHANNEL = "physim:notify:{}"

    def __init__(self, client: Any) -> None:
        self.client = client

    def notify(self, recipient: str, event: dict[str, Any]) -> None:
        payload = json.dumps(event, separators=(",", ":"), sort_keys=True)
        self.client.publish(self.CHANNEL.format(recipient), payload)
