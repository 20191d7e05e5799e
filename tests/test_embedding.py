"""Tests for embedding backends and the Embedder wrapper."""

import math
import struct
from types import SimpleNamespace

import pytest

from storyloom.embedding import (
    Embedder,
    HashEmbedding,
    OpenAIEmbedding,
    create_backend,
    serialize_vector,
)
from storyloom.errors import EmbeddingFailure
from storyloom.models import EngineConfig

from conftest import DIMENSIONS, BrokenBackend


def test_hash_embedding_is_deterministic():
    backend = HashEmbedding(dimensions=16)

    assert backend.embed("The red door") == backend.embed("The red door")
    assert backend.embed("The red door") != backend.embed("The blue door")
    assert len(backend.embed("anything")) == 16
    assert backend.dimensions == 16


def test_hash_embedding_is_unit_length():
    vector = HashEmbedding(dimensions=64).embed("A lantern flickers.")

    assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0)


def test_embedder_returns_vector(embedder):
    vector = embedder.embed("A lantern flickers.")

    assert len(vector) == DIMENSIONS
    assert all(isinstance(v, float) for v in vector)


def test_embedder_wraps_backend_errors():
    embedder = Embedder(BrokenBackend(), DIMENSIONS)

    with pytest.raises(EmbeddingFailure) as excinfo:
        embedder.embed("hello")

    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_embedder_rejects_wrong_dimension():
    embedder = Embedder(HashEmbedding(dimensions=8), DIMENSIONS)

    with pytest.raises(EmbeddingFailure, match="32-dimensional"):
        embedder.embed("hello")


def test_create_backend_hash():
    config = EngineConfig(db_path=":memory:", embedding_backend="hash", vector_dimensions=12)

    backend = create_backend(config)

    assert isinstance(backend, HashEmbedding)
    assert backend.dimensions == 12


def test_create_backend_unknown():
    config = EngineConfig(db_path=":memory:", embedding_backend="word2vec")

    with pytest.raises(ValueError, match="word2vec"):
        create_backend(config)


def test_openai_embedding_requests_configured_dimensions(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    backend = OpenAIEmbedding("text-embedding-3-small", dimensions=4)
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(data=[SimpleNamespace(embedding=[3.0, 0.0, 4.0, 0.0])])

    monkeypatch.setattr(backend.client.embeddings, "create", create)

    vector = backend.embed("The keep\nfell.")

    assert backend.dimensions == 4
    assert calls == [
        {"input": "The keep fell.", "model": "text-embedding-3-small", "dimensions": 4}
    ]
    assert vector == pytest.approx([0.6, 0.0, 0.8, 0.0])


def test_openai_embedding_keeps_native_size_for_older_models(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    backend = OpenAIEmbedding("text-embedding-ada-002", dimensions=256)

    assert backend.dimensions == 1536


def test_serialize_vector_packs_float32():
    assert serialize_vector([0.5, -1.0]) == struct.pack("2f", 0.5, -1.0)
