"""Embedding backends and the Embedder used by every pipeline step.

All backends return unit-length vectors so that the L2 distances sqlite-vec
reports rank the same way cosine similarity would.
"""

from typing import Protocol
import hashlib
import logging
import math
import random

from sqlite_vec import serialize_float32

from storyloom.errors import EmbeddingFailure
from storyloom.models import EngineConfig

logger = logging.getLogger(__name__)


class EmbeddingBackend(Protocol):
    """Protocol for embedding backends."""

    def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        ...

    @property
    def dimensions(self) -> int:
        """Return the dimensionality of embeddings."""
        ...


def _unit(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0.0:
        return vector
    return [v / norm for v in vector]


class LocalEmbedding:
    """sentence-transformers model loaded in process."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self.model = SentenceTransformer(model_name)
        self._dimensions = self.model.get_sentence_embedding_dimension()
        logger.info("Loaded local embedding model %s (%d dims)", model_name, self._dimensions)

    def embed(self, text: str) -> list[float]:
        return self.model.encode(text, normalize_embeddings=True).tolist()

    @property
    def dimensions(self) -> int:
        return self._dimensions


class OpenAIEmbedding:
    """OpenAI embeddings API.

    The text-embedding-3 models can shorten their output natively, so a
    configured dimension smaller than the model's default is requested from
    the API instead of failing the Embedder's length check.
    """

    _NATIVE_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        timeout: float = 30.0,
    ):
        from openai import OpenAI

        self.model = model
        self.client = OpenAI(timeout=timeout, max_retries=0)
        native = self._NATIVE_DIMENSIONS.get(model, 1536)
        self._shorten = (
            dimensions is not None
            and dimensions != native
            and model.startswith("text-embedding-3")
        )
        self._dimensions = dimensions if self._shorten else native

    def embed(self, text: str) -> list[float]:
        kwargs = {"dimensions": self._dimensions} if self._shorten else {}
        response = self.client.embeddings.create(
            input=text.replace("\n", " "), model=self.model, **kwargs
        )
        return _unit(response.data[0].embedding)

    @property
    def dimensions(self) -> int:
        return self._dimensions


class HashEmbedding:
    """Deterministic embedding seeded from the text's SHA-256 digest.

    Identical texts map to identical vectors and nothing else is similar.
    Used in tests and wherever no model is available.
    """

    def __init__(self, dimensions: int = 384):
        self._dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
        rng = random.Random(seed)
        return _unit([rng.gauss(0.0, 1.0) for _ in range(self._dimensions)])

    @property
    def dimensions(self) -> int:
        return self._dimensions


def create_backend(config: EngineConfig) -> EmbeddingBackend:
    """Build the backend named by ``config.embedding_backend``.

    Raises:
        ValueError: unknown backend name
    """
    name = config.embedding_backend
    if name == "local":
        return LocalEmbedding(model_name=config.embedding_model)
    if name == "openai":
        return OpenAIEmbedding(
            model=config.openai_model,
            dimensions=config.vector_dimensions,
            timeout=config.request_timeout,
        )
    if name == "hash":
        return HashEmbedding(dimensions=config.vector_dimensions)
    raise ValueError(f"Unknown embedding backend: {name!r}")


def serialize_vector(vec: list[float]) -> bytes:
    """Pack a vector as the float32 blob sqlite-vec stores."""
    return serialize_float32(vec)


class Embedder:
    """Turns text into a vector of a fixed dimension.

    Wraps a backend so that every way it can go wrong surfaces as
    ``EmbeddingFailure``. No retries.
    """

    def __init__(self, backend: EmbeddingBackend, dimensions: int):
        self.backend = backend
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        try:
            vector = self.backend.embed(text)
        except Exception as e:
            raise EmbeddingFailure(f"Embedding backend error: {e}") from e

        if not isinstance(vector, list) or len(vector) != self.dimensions:
            size = len(vector) if isinstance(vector, list) else type(vector).__name__
            raise EmbeddingFailure(
                f"Expected a {self.dimensions}-dimensional vector, got {size}"
            )
        logger.debug("embedded text len=%d", len(text))
        return vector
