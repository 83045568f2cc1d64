"""
Interface de base pour les générateurs d'embeddings.

Ce module définit l'interface abstraite que doivent implémenter tous les générateurs d'embeddings
vectoriels. Les échecs sont remontés sous forme de `GenerationError` classifiée.
"""

import hashlib
from abc import ABC, abstractmethod


def content_hash(data: bytes) -> str:
    """Empreinte SHA-256 (hex) d'un contenu binaire."""
    return hashlib.sha256(data).hexdigest()


class Embeddings(ABC):
    """Interface abstraite pour les générateurs d'embeddings."""

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]:
        """Génère des embeddings vectoriels pour une liste de textes."""
        ...

    def embed_image(self, data: bytes) -> list[float]:
        """Représentation d'une image dérivée de son empreinte de contenu.

        Deux images identiques octet pour octet ont le même embedding.
        """
        return self.embed([f"image:{content_hash(data)}"])[0]
