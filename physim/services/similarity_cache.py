"""
Cache de similarité sémantique des manifestes.

Associe des embeddings de requêtes à des manifestes validés et répond aux recherches du plus
proche voisin au-dessus d'un seuil de similarité cosinus (0.85 par défaut).

Invariants:
  - `get` ne retourne une entrée que si sa similarité dépasse strictement le seuil; à score égal,
    l'entrée accédée le plus récemment l'emporte.
  - `put` déduplique: si une entrée vivante est déjà jugée équivalente au nouvel embedding, elle
    est conservée et aucun second manifeste n'est stocké.
  - Les entrées mises en avant (`featured`) n'expirent jamais et ne sont jamais évincées par LRU;
    elles ne comptent pas dans la capacité.
  - Les entrées indexées par clé exacte (hash du contenu d'une image) ne participent pas à la
    recherche par similarité.

Toutes les lectures/écritures de la comptabilité (récence, compteurs d'accès) se font sous un
unique verrou; les événements sont émis après sa libération.
"""

from __future__ import annotations

import dataclasses
import itertools
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import numpy as np

from physim.app.metrics import CACHE_LOOKUP_LATENCY, CACHE_SIZE
from physim.domain.entities import CacheEntry, FeaturedSimulation
from physim.domain.errors import DimensionMismatchError
from physim.domain.manifest import Manifest
from physim.infra.events import EventSink, NullEventSink
from physim.infra.vecstores.base import VectorIndex
from physim.infra.vecstores.numpy_index import NumpyIndex

DEFAULT_THRESHOLD = 0.85
DEFAULT_TTL_SECONDS = 7 * 24 * 3600


def _as_vector(embedding: Sequence[float] | np.ndarray) -> np.ndarray:
    vec = np.asarray(embedding, dtype=np.float64)
    if vec.ndim != 1:
        raise ValueError("embedding must be a 1-D sequence of floats")
    return vec


def similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Similarité cosinus ramenée dans [0, 1].

    Les cosinus négatifs valent 0, tout comme la comparaison avec un vecteur nul.

    Raises:
        DimensionMismatchError: si les deux vecteurs n'ont pas la même longueur.
    """
    va, vb = _as_vector(a), _as_vector(b)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])
    na, nb = float(np.linalg.norm(va)), float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    cos = float(np.dot(va, vb)) / (na * nb)
    return min(1.0, max(0.0, cos))


def build_index(backend: str) -> VectorIndex:
    """Construit l'index configuré (`numpy` exact ou `faiss`)."""
    if backend == "faiss":
        from physim.infra.vecstores.faiss_index import FaissIndex  # noqa: PLC0415

        return FaissIndex()
    if backend == "numpy":
        return NumpyIndex()
    raise ValueError(f"invalid CACHE_INDEX_BACKEND: {backend}")


class SimilarityCache:
    """Cache borné (LRU sur les entrées à TTL) avec expiration paresseuse."""

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = 10_000,
        index: VectorIndex | None = None,
        clock: Callable[[], float] = time.time,
        events: EventSink | None = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.threshold = threshold
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._index = index or NumpyIndex()
        self._clock = clock
        self._events = events or NullEventSink()
        self._lock = threading.RLock()
        self._entries: dict[int, CacheEntry] = {}
        self._vectors: dict[int, np.ndarray] = {}
        self._keys: dict[str, int] = {}
        # LRU des entrées à TTL uniquement (les featured n'y figurent jamais)
        self._lru: OrderedDict[int, None] = OrderedDict()
        self._ids = itertools.count(1)
        self._ticks = itertools.count(1)
        self._dim: int | None = None

    similarity = staticmethod(similarity)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------- Lecture --------------------

    def get(self, embedding: Sequence[float] | np.ndarray) -> CacheEntry | None:
        """Retourne l'entrée la plus similaire au-dessus du seuil, ou None.

        Un hit incrémente `access_count` et rafraîchit la récence de l'entrée, atomiquement avec
        la lecture. L'entrée retournée est une copie.
        """
        start = time.perf_counter()
        query = _as_vector(embedding)
        pending: list[tuple[str, dict[str, Any]]] = []
        with self._lock:
            self._check_dim(query)
            found = self._best_match(query, pending)
            result = None
            if found is not None:
                entry_id, score = found
                result = self._touch(entry_id)
                pending.append(("cache.hit", {"mode": "similarity", "similarity": score}))
            else:
                pending.append(("cache.miss", {"mode": "similarity"}))
        self._flush(pending)
        self._observe(start)
        return result

    def get_by_key(self, key: str) -> CacheEntry | None:
        """Recherche exacte par clé (hash de contenu d'image)."""
        start = time.perf_counter()
        pending: list[tuple[str, dict[str, Any]]] = []
        with self._lock:
            entry_id = self._keys.get(key)
            result = None
            if entry_id is not None and self._entries[entry_id].expired(self._clock()):
                self._drop(entry_id, "ttl", pending)
                entry_id = None
            if entry_id is not None:
                result = self._touch(entry_id)
                pending.append(("cache.hit", {"mode": "key"}))
            else:
                pending.append(("cache.miss", {"mode": "key"}))
        self._flush(pending)
        self._observe(start)
        return result

    # -------------------- Écriture --------------------

    def put(
        self,
        embedding: Sequence[float] | np.ndarray,
        text: str,
        manifest: Manifest,
        *,
        featured: bool = False,
        key: str | None = None,
    ) -> CacheEntry:
        """Stocke un manifeste déjà validé.

        Args:
            embedding: embedding de la requête d'origine.
            text: texte de la requête (diagnostic uniquement).
            manifest: manifeste validé.
            featured: entrée de catalogue, sans TTL et exclue de l'éviction LRU.
            key: clé exacte (hash d'image); l'entrée n'est alors accessible que par `get_by_key`.

        Returns:
            CacheEntry: l'entrée stockée, ou l'entrée équivalente déjà présente.
        """
        vector = _as_vector(embedding)
        pending: list[tuple[str, dict[str, Any]]] = []
        with self._lock:
            self._check_dim(vector)
            if self._dim is None:
                self._dim = vector.shape[0]
            existing = self._existing_equivalent(vector, key, pending)
            if existing is not None:
                result = dataclasses.replace(self._entries[existing])
            else:
                if not featured:
                    self._make_room(pending)
                result = self._insert(vector, text, manifest, featured, key)
        self._flush(pending)
        return result

    def seed_featured(self, featured: Iterable[FeaturedSimulation]) -> int:
        """Charge les simulations du catalogue comme entrées sans TTL."""
        n = 0
        for sim in featured:
            if not sim.embedding:
                continue
            self.put(sim.embedding, sim.title, sim.manifest, featured=True)
            n += 1
        return n

    def purge_expired(self) -> int:
        """Récupère toutes les entrées expirées; retourne leur nombre."""
        pending: list[tuple[str, dict[str, Any]]] = []
        with self._lock:
            now = self._clock()
            expired = [eid for eid, e in self._entries.items() if e.expired(now)]
            for eid in expired:
                self._drop(eid, "ttl", pending)
        self._flush(pending)
        return len(expired)

    def stats(self) -> dict[str, int]:
        with self._lock:
            featured = sum(1 for e in self._entries.values() if e.featured)
            return {
                "entries": len(self._entries),
                "featured": featured,
                "keyed": len(self._keys),
                "capacity": self.max_entries,
            }

    # -------------------- Interne (verrou détenu) --------------------

    def _check_dim(self, vector: np.ndarray) -> None:
        if self._dim is not None and vector.shape[0] != self._dim:
            raise DimensionMismatchError(vector.shape[0], self._dim)

    def _best_match(
        self, query: np.ndarray, pending: list[tuple[str, dict[str, Any]]]
    ) -> tuple[int, float] | None:
        now = self._clock()
        best_id: int | None = None
        best_score = -1.0
        for entry_id, _approx in self._index.search(query, self.threshold):
            entry = self._entries.get(entry_id)
            if entry is None:
                continue
            if entry.expired(now):
                self._drop(entry_id, "ttl", pending)
                continue
            score = similarity(query, self._vectors[entry_id])
            if score <= self.threshold:
                continue
            if best_id is None or score > best_score or (
                score == best_score and entry.last_access > self._entries[best_id].last_access
            ):
                best_id, best_score = entry_id, score
        return None if best_id is None else (best_id, best_score)

    def _existing_equivalent(
        self, vector: np.ndarray, key: str | None, pending: list[tuple[str, dict[str, Any]]]
    ) -> int | None:
        if key is not None:
            entry_id = self._keys.get(key)
            if entry_id is not None and self._entries[entry_id].expired(self._clock()):
                self._drop(entry_id, "ttl", pending)
                return None
            return entry_id
        found = self._best_match(vector, pending)
        return None if found is None else found[0]

    def _touch(self, entry_id: int) -> CacheEntry:
        entry = self._entries[entry_id]
        entry.access_count += 1
        entry.last_access = next(self._ticks)
        if entry_id in self._lru:
            self._lru.move_to_end(entry_id)
        return dataclasses.replace(entry)

    def _make_room(self, pending: list[tuple[str, dict[str, Any]]]) -> None:
        if len(self._lru) < self.max_entries:
            return
        now = self._clock()
        for entry_id in [eid for eid in self._lru if self._entries[eid].expired(now)]:
            self._drop(entry_id, "ttl", pending)
        while len(self._lru) >= self.max_entries:
            entry_id = next(iter(self._lru))
            self._drop(entry_id, "lru", pending)

    def _insert(
        self,
        vector: np.ndarray,
        text: str,
        manifest: Manifest,
        featured: bool,
        key: str | None,
    ) -> CacheEntry:
        now = self._clock()
        entry_id = next(self._ids)
        entry = CacheEntry(
            embedding=tuple(float(x) for x in vector),
            text=text,
            manifest=manifest,
            created_at=now,
            expires_at=None if featured else now + self.ttl_seconds,
            featured=featured,
            key=key,
            last_access=next(self._ticks),
        )
        self._entries[entry_id] = entry
        self._vectors[entry_id] = vector.copy()
        self._vectors[entry_id].setflags(write=False)
        if key is not None:
            self._keys[key] = entry_id
        else:
            self._index.add(entry_id, vector)
        if not featured:
            self._lru[entry_id] = None
        return dataclasses.replace(entry)

    def _drop(self, entry_id: int, reason: str, pending: list[tuple[str, dict[str, Any]]]) -> None:
        entry = self._entries.pop(entry_id, None)
        if entry is None:
            return
        self._vectors.pop(entry_id, None)
        self._lru.pop(entry_id, None)
        if entry.key is not None:
            self._keys.pop(entry.key, None)
        else:
            self._index.remove(entry_id)
        pending.append(("cache.evicted", {"reason": reason, "featured": entry.featured}))

    # -------------------- Hors verrou --------------------

    def _flush(self, pending: list[tuple[str, dict[str, Any]]]) -> None:
        for event, fields in pending:
            self._events.emit(event, **fields)
        with self._lock:
            expiring = len(self._lru)
            featured = len(self._entries) - expiring
        CACHE_SIZE.labels("expiring").set(expiring)
        CACHE_SIZE.labels("featured").set(featured)

    def _observe(self, start: float) -> None:
        CACHE_LOOKUP_LATENCY.observe(time.perf_counter() - start)
