"""
Embedder OpenAI pour la génération d'embeddings.

Les erreurs du SDK (timeouts, rate-limit, statuts HTTP) sont converties en `GenerationError`
classifiée pour que l'orchestrateur applique la même politique de retry qu'à la génération.
"""

from __future__ import annotations

import openai
from openai import OpenAI

from physim.infra.embeddings.base import Embeddings
from physim.infra.upstream import classify_exception


class OpenAIEmbedder(Embeddings):
    """Embedder OpenAI (`embeddings.create`)."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        timeout_s: float = 4.0,
        client: OpenAI | None = None,
    ) -> None:
        """
        Initialise l'embedder OpenAI.

        Args:
            api_key: clé API (obligatoire si `client` n'est pas fourni).
            model: modèle d'embedding.
            timeout_s: timeout dur par appel; le SDK ne retente pas, c'est le rôle de
                `RetryExecutor`.
            client: client préconstruit (tests).
        """
        if client is None and not api_key:
            raise ValueError("OPENAI_API_KEY is required for EMBEDDINGS_PROVIDER=openai")
        self.model = model
        self.client = client or OpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)

    def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Génère des embeddings vectoriels via l'API OpenAI.

        Args:
            texts: Liste des textes à convertir en embeddings.

        Returns:
            list[list[float]]: Liste des vecteurs d'embedding, dans l'ordre des textes.
        """
        try:
            resp = self.client.embeddings.create(model=self.model, input=texts)
        except (openai.OpenAIError, TimeoutError) as exc:
            raise classify_exception(exc) from exc
        return [d.embedding for d in sorted(resp.data, key=lambda d: d.index)]
