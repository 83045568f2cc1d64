"""Interface des index vectoriels utilisés par le cache de similarité.

Un index ne fait que produire des candidats (identifiant, score approché); le cache recalcule
ensuite la similarité exacte avant d'appliquer son seuil.
"""

from __future__ import annotations

from typing import Protocol

import numpy as np

# marge tolérée sur le seuil pour ne pas perdre de candidats à cause des arrondis de l'index
SCORE_SLACK = 1e-4


def normalize(vector: np.ndarray) -> np.ndarray:
    """Retourne le vecteur unitaire associé (le vecteur nul reste nul)."""
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return np.zeros_like(vector, dtype=np.float64)
    return vector / norm


class VectorIndex(Protocol):
    """Protocole pour les index vectoriels du cache."""

    def add(self, entry_id: int, vector: np.ndarray) -> None:
        """Indexe un vecteur sous l'identifiant donné."""

    def remove(self, entry_id: int) -> None:
        """Retire un identifiant (no-op s'il est absent)."""

    def search(self, query: np.ndarray, threshold: float) -> list[tuple[int, float]]:
        """Retourne les candidats dont le score approché dépasse `threshold - SCORE_SLACK`."""

    def __len__(self) -> int: ...
