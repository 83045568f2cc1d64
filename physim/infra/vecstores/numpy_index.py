"""
Index vectoriel exact en mémoire (numpy).

Stocke les vecteurs normalisés dans une matrice pré-allouée; la suppression échange la ligne
retirée avec la dernière pour garder la matrice compacte. Une recherche est un produit
matrice-vecteur sur les lignes occupées.
"""

from __future__ import annotations

import numpy as np

from physim.infra.vecstores.base import SCORE_SLACK, normalize


class NumpyIndex:
    """Index exact par balayage complet."""

    def __init__(self, initial_capacity: int = 1024) -> None:
        self._initial = max(1, initial_capacity)
        self._matrix: np.ndarray | None = None
        self._ids: list[int] = []
        self._rows: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def _ensure_capacity(self, dim: int) -> None:
        if self._matrix is None:
            self._matrix = np.zeros((self._initial, dim), dtype=np.float64)
        elif len(self._ids) == self._matrix.shape[0]:
            grown = np.zeros((self._matrix.shape[0] * 2, dim), dtype=np.float64)
            grown[: len(self._ids)] = self._matrix
            self._matrix = grown

    def add(self, entry_id: int, vector: np.ndarray) -> None:
        if entry_id in self._rows:
            self.remove(entry_id)
        self._ensure_capacity(vector.shape[0])
        row = len(self._ids)
        self._matrix[row] = normalize(vector)  # type: ignore[index]
        self._ids.append(entry_id)
        self._rows[entry_id] = row

    def remove(self, entry_id: int) -> None:
        row = self._rows.pop(entry_id, None)
        if row is None:
            return
        last = len(self._ids) - 1
        if row != last:
            moved = self._ids[last]
            self._matrix[row] = self._matrix[last]  # type: ignore[index]
            self._ids[row] = moved
            self._rows[moved] = row
        self._ids.pop()

    def search(self, query: np.ndarray, threshold: float) -> list[tuple[int, float]]:
        n = len(self._ids)
        if n == 0 or self._matrix is None:
            return []
        scores = self._matrix[:n] @ normalize(query)
        hits = np.nonzero(scores > threshold - SCORE_SLACK)[0]
        return [(self._ids[i], float(scores[i])) for i in hits]
