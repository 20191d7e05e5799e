"""Context retrieval (the "R" in RAG).

Best-effort: any failure yields an empty digest so the turn can continue.
"""

from __future__ import annotations

import logging

from storyloom.embedding import Embedder
from storyloom.models import Match
from storyloom.vector_index import VectorIndex

logger = logging.getLogger(__name__)

DIGEST_SEPARATOR = "\n\n---\n\n"


def render_match(match: Match) -> str:
    kind = match.metadata.get("type") or "Memory"
    return f"[{kind}]: {match.metadata.get('text', '')}"


def render_digest(matches: list[Match]) -> str:
    """Join matches, most similar first."""
    return DIGEST_SEPARATOR.join(render_match(m) for m in matches)


class ContextRetriever:
    def __init__(self, embedder: Embedder, index: VectorIndex, top_k: int = 5):
        self.embedder = embedder
        self.index = index
        self.top_k = top_k

    def retrieve(self, story_id: str, query: str, k: int | None = None) -> str:
        try:
            embedding = self.embedder.embed(query)
            matches = self.index.query(story_id, embedding, k or self.top_k)
        except Exception:
            logger.warning(
                "Context retrieval failed; continuing without context",
                exc_info=True,
                extra={"story_id": story_id, "stage": "retrieval"},
            )
            return ""
        logger.debug("retrieved %d matches", len(matches), extra={"story_id": story_id})
        return render_digest(matches)
