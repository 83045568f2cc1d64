"""Embedder local utilisant Sentence Transformers.

Nécessite l'extra `local` (`sentence-transformers`). Le modèle est chargé une seule fois par
processus et partagé entre instances.
"""

from __future__ import annotations

import threading

from sentence_transformers import SentenceTransformer

from physim.infra.embeddings.base import Embeddings
from physim.infra.upstream import classify_exception


class LocalEmbedder(Embeddings):
    """Embedder local utilisant Sentence Transformers."""

    _model: SentenceTransformer | None = None
    _model_name: str | None = None
    _load_lock = threading.Lock()

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        """Initialise l'embedder local avec le modèle spécifié.

        Args:
            model_name: Nom du modèle Sentence Transformers à utiliser.
        """
        self.model_name = model_name

    @property
    def model(self) -> SentenceTransformer:
        cls = LocalEmbedder
        with cls._load_lock:
            if cls._model is None or cls._model_name != self.model_name:
                cls._model = SentenceTransformer(self.model_name)
                cls._model_name = self.model_name
            return cls._model

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Génère des embeddings vectoriels pour une liste de textes.

        Raises:
            GenerationError: échec d'inférence, classé comme erreur serveur.
        """
        try:
            return self.model.encode(texts, convert_to_numpy=True).tolist()
        except Exception as exc:
            raise classify_exception(exc) from exc
