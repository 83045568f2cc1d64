"""Embedder déterministe par hachage de caractéristiques (feature hashing).

Aucune dépendance réseau ni modèle: chaque mot et chaque trigramme de caractères est projeté sur
une dimension via BLAKE2b, avec un signe dérivé du même hash. Deux formulations partageant la
plupart de leurs mots obtiennent une similarité cosinus élevée. Utilisé en dev, en CI et comme
provider par défaut.
"""

from __future__ import annotations

import hashlib
import re

import numpy as np

from physim.infra.embeddings.base import Embeddings

_TOKEN_RE = re.compile(r"[a-z0-9]+")
TRIGRAM_WEIGHT = 0.5


def _bucket(feature: str, dim: int) -> tuple[int, float]:
    digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim, (1.0 if (value >> 63) & 1 else -1.0)


class HashingEmbedder(Embeddings):
    """Projection creuse normalisée (L2) des mots et trigrammes."""

    def __init__(self, dim: int = 1536) -> None:
        if dim < 1:
            raise ValueError("dim must be >= 1")
        self.dim = dim

    def _features(self, text: str) -> list[tuple[str, float]]:
        tokens = _TOKEN_RE.findall(text.lower())
        features = [(f"w:{tok}", 1.0) for tok in tokens]
        for tok in tokens:
            padded = f"#{tok}#"
            features.extend(
                (f"c:{padded[i:i + 3]}", TRIGRAM_WEIGHT) for i in range(len(padded) - 2)
            )
        return features

    def _embed_one(self, text: str) -> list[float]:
        vec = np.zeros(self.dim, dtype=np.float64)
        for feature, weight in self._features(text):
            index, sign = _bucket(feature, self.dim)
            vec[index] += sign * weight
        norm = float(np.linalg.norm(vec))
        if norm > 0.0:
            vec /= norm
        return vec.tolist()

    def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._embed_one(t) for t in texts]
