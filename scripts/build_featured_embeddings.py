"""Précalcule les embeddings de tags du catalogue de simulations mises en avant.

Utilise le provider d'embeddings configuré (`EMBEDDINGS_PROVIDER`) et réécrit le catalogue avec
les vecteurs et l'identifiant du modèle, pour éviter le calcul au démarrage.
"""

from __future__ import annotations

import argparse
import sys

from physim.core.container import container
from physim.services.featured import DEFAULT_CATALOG_PATH, FeaturedCatalog


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Precompute featured catalog tag embeddings")
    parser.add_argument("--catalog", default=None, help="catalog JSON (default: packaged catalog)")
    parser.add_argument("--output", default=None, help="output path (default: overwrite catalog)")
    parser.add_argument("--force", action="store_true", help="recompute every embedding")
    args = parser.parse_args(argv)

    source = args.catalog or container.settings.FEATURED_CATALOG_PATH or DEFAULT_CATALOG_PATH
    catalog = FeaturedCatalog.load(source)
    if args.force:
        catalog = FeaturedCatalog(list(catalog), embedding_model=None)
    model_id = container.embedding_model_id
    updated = catalog.with_embeddings(container.embedder, model_id)
    updated.dump(args.output or source)
    print(f"items={len(updated)} model={model_id} output={args.output or source}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
