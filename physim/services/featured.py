"""Catalogue des simulations mises en avant (repli quand la génération est indisponible).

Le catalogue est un fichier JSON statique chargé au démarrage:

    {"embedding_model": "hashing:1536" | null,
     "items": [{"id", "title", "physics_type", "tags", "manifest", "embedding"?}, ...]}

Les embeddings de tags sont précalculés par `scripts/build_featured_embeddings.py`; s'ils
manquent ou ont été produits par un autre modèle, ils sont recalculés au chargement.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import structlog

from physim.domain.entities import FeaturedSimulation
from physim.domain.errors import DimensionMismatchError
from physim.domain.manifest import Manifest, PhysicsType
from physim.infra.embeddings.base import Embeddings
from physim.services.similarity_cache import similarity

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "infra" / "featured" / "catalog.json"

log = structlog.get_logger(__name__)


def tag_text(tags: frozenset[str] | Sequence[str]) -> str:
    """Texte embeddé pour une simulation: ses tags triés."""
    return " ".join(sorted(tags))


def _item_from_json(item: dict[str, Any]) -> FeaturedSimulation:
    return FeaturedSimulation(
        id=item["id"],
        title=item["title"],
        physics_type=PhysicsType(item["physics_type"]),
        tags=frozenset(item.get("tags") or ()),
        manifest=Manifest.model_validate(item["manifest"]),
        embedding=tuple(float(x) for x in item.get("embedding") or ()),
    )


def _item_to_json(sim: FeaturedSimulation) -> dict[str, Any]:
    return {
        "id": sim.id,
        "title": sim.title,
        "physics_type": sim.physics_type.value,
        "tags": sorted(sim.tags),
        "manifest": sim.manifest.model_dump(mode="json", exclude_none=True),
        "embedding": list(sim.embedding) or None,
    }


class FeaturedCatalog:
    """Ensemble ordonné de simulations mises en avant."""

    def __init__(
        self, items: Sequence[FeaturedSimulation], embedding_model: str | None = None
    ) -> None:
        self._items = tuple(items)
        self.embedding_model = embedding_model

    def __iter__(self) -> Iterator[FeaturedSimulation]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @classmethod
    def load(cls, path: str | Path | None = None) -> FeaturedCatalog:
        raw = json.loads(Path(path or DEFAULT_CATALOG_PATH).read_text(encoding="utf-8"))
        items = [_item_from_json(it) for it in raw.get("items", [])]
        return cls(items, embedding_model=raw.get("embedding_model"))

    def dump(self, path: str | Path) -> None:
        data = {
            "embedding_model": self.embedding_model,
            "items": [_item_to_json(sim) for sim in self._items],
        }
        Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", "utf-8")

    def with_embeddings(self, embedder: Embeddings, model_id: str) -> FeaturedCatalog:
        """Retourne un catalogue dont toutes les entrées ont un embedding produit par `model_id`."""
        stale = model_id != self.embedding_model
        todo = [i for i, sim in enumerate(self._items) if stale or not sim.embedding]
        if not todo:
            return self
        vectors = embedder.embed([tag_text(self._items[i].tags) for i in todo])
        items = list(self._items)
        for i, vec in zip(todo, vectors, strict=True):
            items[i] = replace(items[i], embedding=tuple(float(x) for x in vec))
        log.info("featured_embeddings_computed", count=len(todo), model=model_id)
        return FeaturedCatalog(items, embedding_model=model_id)

    def top(self, embedding: Sequence[float] | None, k: int = 3) -> tuple[FeaturedSimulation, ...]:
        """Les `k` simulations les plus proches de `embedding` (ordre du catalogue à égalité).

        Sans embedding de requête, retourne les `k` premières entrées du catalogue.
        """
        if k <= 0:
            return ()
        if not embedding:
            return self._items[:k]
        scored: list[tuple[float, int, FeaturedSimulation]] = []
        for idx, sim in enumerate(self._items):
            try:
                score = similarity(embedding, sim.embedding) if sim.embedding else 0.0
            except DimensionMismatchError:
                score = 0.0
            scored.append((-score, idx, sim))
        scored.sort(key=lambda t: (t[0], t[1]))
        return tuple(sim for _, _, sim in scored[:k])
