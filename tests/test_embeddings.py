"""Tests de l'embedder par hachage et de l'empreinte de contenu."""

from __future__ import annotations

import math

import pytest

from physim.infra.embeddings.base import content_hash
from physim.infra.embeddings.hashing_embedder import HashingEmbedder
from physim.services.similarity_cache import similarity


def test_vectors_are_deterministic_and_normalized() -> None:
    embedder = HashingEmbedder(dim=64)
    a, b = embedder.embed(["A pendulum swinging", "A pendulum swinging"])
    assert a == b
    assert len(a) == 64
    assert math.isclose(sum(x * x for x in a), 1.0)


def test_paraphrases_are_closer_than_unrelated_text() -> None:
    embedder = HashingEmbedder(dim=1536)
    base, close, far = embedder.embed(
        [
            "a ball thrown straight up into the air",
            "a ball thrown straight up in the air",
            "two charged particles repelling each other",
        ]
    )
    assert similarity(base, close) > 0.8
    assert similarity(base, far) < similarity(base, close)


def test_empty_text_is_zero_vector() -> None:
    assert HashingEmbedder(dim=8).embed([""])[0] == [0.0] * 8


def test_invalid_dimension() -> None:
    with pytest.raises(ValueError):
        HashingEmbedder(dim=0)


def test_image_embedding_follows_content() -> None:
    embedder = HashingEmbedder(dim=32)
    assert embedder.embed_image(b"abc") == embedder.embed_image(b"abc")
    assert embedder.embed_image(b"abc") != embedder.embed_image(b"abd")
    assert content_hash(b"abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
