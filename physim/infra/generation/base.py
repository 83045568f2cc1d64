"""Interface des clients du backend de génération de manifestes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class GenerationResult:
    """Sortie brute du backend, non validée.

    `manifest` est le document tel que produit (dict décodé, ou texte brut si le backend n'a pas
    renvoyé de JSON); `confidence` n'est renseigné que pour les entrées image.
    """

    manifest: Any
    confidence: float | None = None


class GenerationClient(ABC):
    """Interface abstraite d'un backend de génération."""

    @abstractmethod
    def generate(
        self,
        text: str | None = None,
        image: bytes | None = None,
        hint: str | None = None,
    ) -> GenerationResult:
        """Produit un manifeste candidat pour une description textuelle ou une image.

        Raises:
            GenerationError: échec classifié (retriable ou non).
        """
        ...
