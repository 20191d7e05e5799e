"""Segment persistence: embed, durable write, then index as a Memory."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from storyloom.embedding import Embedder
from storyloom.errors import PersistenceFailure
from storyloom.models import Segment
from storyloom.segments import SegmentStore
from storyloom.vector_index import VectorIndex

logger = logging.getLogger(__name__)


class SegmentPersister:
    def __init__(self, store: SegmentStore, embedder: Embedder, index: VectorIndex):
        self.store = store
        self.embedder = embedder
        self.index = index

    def persist(self, segment: Segment) -> Segment:
        """Embed the segment, write it durably and index it for retrieval.

        The embedding and the durable write are fatal on failure; the upsert
        is best-effort.

        Raises:
            EmbeddingFailure: the segment text could not be embedded; nothing
                was written
            PersistenceFailure: the durable write failed
        """
        embedding = self.embedder.embed(segment.text)

        try:
            stored = self.store.append(segment)
        except Exception as e:
            raise PersistenceFailure(f"Segment write failed: {e}") from e

        self._upsert(stored, embedding)
        return stored

    def reindex(self, segment: Segment) -> bool:
        """Embed and upsert a stored segment. Returns False on failure."""
        try:
            embedding = self.embedder.embed(segment.text)
        except Exception:
            logger.warning(
                "Embedding segment for reindex failed",
                exc_info=True,
                extra={"story_id": segment.story_id, "segment_id": segment.id},
            )
            return False
        return self._upsert(segment, embedding)

    def _upsert(self, segment: Segment, embedding: list[float]) -> bool:
        try:
            self.index.upsert(
                segment.story_id,
                segment.id,
                embedding,
                {
                    "text": segment.text,
                    "userPrompt": segment.user_prompt,
                    "type": "Memory",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception:
            # TODO: queue failed upserts for a reconciliation pass over segments
            logger.warning(
                "Indexing segment failed; segment is stored but not retrievable",
                exc_info=True,
                extra={"story_id": segment.story_id, "segment_id": segment.id},
            )
            return False
        return True
