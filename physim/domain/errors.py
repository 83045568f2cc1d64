"""Taxonomie d'erreurs du coeur d'orchestration.

Les erreurs d'entrée, les erreurs amont permanentes et l'échec final d'un job sont les seules
remontées à l'utilisateur, toujours via un message non technique (`USER_MESSAGES`).
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification d'un échec du backend de génération."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"

    @property
    def retriable(self) -> bool:
        return self in _RETRIABLE


_RETRIABLE = frozenset({ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR})


class PhysimError(Exception):
    """Racine des erreurs applicatives."""


class InputError(PhysimError):
    """Requête mal formée: échec immédiat, sans retry ni impact sur le breaker."""


class DimensionMismatchError(PhysimError, ValueError):
    """Deux embeddings de longueurs différentes ont été comparés."""

    def __init__(self, left: int, right: int) -> None:
        self.left = left
        self.right = right
        super().__init__(f"embedding dimension mismatch: {left} != {right}")


class GenerationError(PhysimError):
    """Échec classifié d'un appel au client de génération ou d'embedding."""

    def __init__(self, kind: ErrorKind, message: str | None = None) -> None:
        self.kind = kind
        super().__init__(message or kind.value)

    @property
    def retriable(self) -> bool:
        return self.kind.retriable


class RetryExhaustedError(PhysimError):
    """Toutes les tentatives d'un appel retriable ont échoué."""

    def __init__(self, last_error: GenerationError, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"retries exhausted after {attempts} attempts: {last_error}")


class DeadlineExceededError(PhysimError):
    """Le prochain backoff dépasserait l'échéance de la requête synchrone."""

    def __init__(self, last_error: GenerationError, attempts: int) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"deadline exceeded after {attempts} attempts")


class CircuitOpenError(PhysimError):
    """Le circuit breaker refuse l'appel amont."""

    def __init__(self, breaker: str) -> None:
        self.breaker = breaker
        super().__init__(f"circuit {breaker} is open")


class ValidationFailedError(PhysimError):
    """Le backend a produit un manifeste structurellement invalide."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid manifest")


class JobNotFoundError(PhysimError, KeyError):
    """Identifiant de job inconnu (ou expiré)."""


class ClaimRejectedError(PhysimError):
    """Le job est déjà pris en charge par un autre worker."""


class InvalidJobTransitionError(PhysimError):
    """Transition de statut interdite par le cycle de vie des jobs."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"invalid job transition: {current} -> {target}")


USER_MESSAGES: dict[str, str] = {
    "input": "Please describe the scenario with either text or an image, not both.",
    "upstream_permanent": "We could not process this request. Please rephrase it and try again.",
    "upstream_unavailable": (
        "The simulation generator is busy right now. Please try again in a moment."
    ),
    "invalid_output": "We could not build a simulation for this description. Try rephrasing it.",
    "fallback": "Generation is temporarily unavailable; here are some featured simulations.",
    "clarification": (
        "We are not sure what the picture shows. Could you add a short description of it?"
    ),
    "job_failed": "We could not build this simulation. Please try again later.",
    "job_not_found": "This job does not exist or has expired.",
}
