"""Pytest fixtures for Storyloom tests."""

import json

import pytest

from storyloom import Orchestrator
from storyloom.embedding import Embedder, HashEmbedding
from storyloom.segments import SegmentStore
from storyloom.vector_index import SqliteVectorIndex

DIMENSIONS = 32

DOOR_RESPONSE = json.dumps({
    "text": "The door creaks open.",
    "state_updates": {
        "health_change": 0,
        "mood_change": None,
        "location_change": None,
        "skill_usage": [],
        "relationship_change": None,
    },
})


class StubLLM:
    """Scripted LLM: answers per stage and records every call.

    A response may be a string, an exception instance (raised), or a
    callable taking the prompt.
    """

    def __init__(self, responses: dict | None = None):
        self.responses = {"entity_extractor": "none", "narrator": DOOR_RESPONSE}
        self.responses.update(responses or {})
        self.calls: list[dict] = []

    def __call__(self, stage, prompt, *, system=None, json_output=False):
        self.calls.append({
            "stage": stage,
            "prompt": prompt,
            "system": system,
            "json_output": json_output,
        })
        response = self.responses[stage]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response

    def stages(self) -> list[str]:
        return [c["stage"] for c in self.calls]


class BrokenBackend:
    """Embedding backend that is always down."""

    dimensions = DIMENSIONS

    def embed(self, text):
        raise ConnectionError("embedding service unreachable")


@pytest.fixture
def embedder():
    return Embedder(HashEmbedding(DIMENSIONS), DIMENSIONS)


@pytest.fixture
def index():
    index = SqliteVectorIndex(":memory:", DIMENSIONS)
    yield index
    index.close()


@pytest.fixture
def store():
    store = SegmentStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def llm():
    return StubLLM()


@pytest.fixture
def orchestrator(embedder, index, store, llm):
    """Orchestrator over in-memory stores, hash embeddings and a stub LLM."""
    return Orchestrator(embedder=embedder, index=index, store=store, llm=llm)
