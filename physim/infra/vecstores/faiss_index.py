"""
Index vectoriel FAISS (produit scalaire sur vecteurs normalisés).

Requiert `faiss-cpu`. Utilise `IndexIDMap2(IndexFlatIP)` pour permettre l'ajout et le retrait par
identifiant, et `range_search` pour récupérer tous les candidats au-dessus du seuil.
"""

from __future__ import annotations

import faiss  # type: ignore
import numpy as np

from physim.infra.vecstores.base import SCORE_SLACK, normalize


class FaissIndex:
    """Index FAISS en float32; les scores sont recalculés exactement par le cache."""

    def __init__(self) -> None:
        self._index: faiss.IndexIDMap2 | None = None
        self._ids: set[int] = set()

    def __len__(self) -> int:
        return len(self._ids)

    def _ensure_index(self, dim: int) -> None:
        if self._index is None:
            self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dim))

    def add(self, entry_id: int, vector: np.ndarray) -> None:
        self._ensure_index(vector.shape[0])
        if entry_id in self._ids:
            self.remove(entry_id)
        xb = np.array([normalize(vector)], dtype="float32")
        self._index.add_with_ids(xb, np.array([entry_id], dtype="int64"))  # type: ignore[union-attr]
        self._ids.add(entry_id)

    def remove(self, entry_id: int) -> None:
        if entry_id not in self._ids or self._index is None:
            return
        self._index.remove_ids(np.array([entry_id], dtype="int64"))
        self._ids.discard(entry_id)

    def search(self, query: np.ndarray, threshold: float) -> list[tuple[int, float]]:
        if not self._ids or self._index is None:
            return []
        qx = np.array([normalize(query)], dtype="float32")
        lims, distances, labels = self._index.range_search(qx, float(threshold - SCORE_SLACK))
        return [
            (int(labels[i]), float(distances[i]))
            for i in range(int(lims[0]), int(lims[1]))
            if labels[i] != -1
        ]
