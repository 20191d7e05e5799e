"""Durable segment store.

One row per segment; the store assigns the id, a monotonic sequence number
and the creation timestamp.
"""

from __future__ import annotations

import json
import sqlite3
import uuid

from storyloom.models import Segment
from storyloom.queries import SEGMENT_SCHEMA, build_segments_for_story_query


class SegmentStore:
    """SQLite-backed store of story segments."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db = sqlite3.connect(db_path, timeout=timeout)
        self.db.row_factory = sqlite3.Row
        self.db.executescript(SEGMENT_SCHEMA)
        self.db.commit()

    def close(self) -> None:
        """Close database connection."""
        self.db.close()

    def __enter__(self) -> SegmentStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def append(self, segment: Segment) -> Segment:
        """Append a segment to its story.

        Args:
            segment: The segment to write; ``id``, ``sequence`` and
                ``timestamp`` are ignored and assigned here

        Returns:
            The stored segment, with id, sequence and timestamp filled in
        """
        segment_id = uuid.uuid4().hex
        try:
            self.db.execute(
                """
                INSERT INTO segments (id, story_id, text, user_prompt, state_updates, entities)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    segment_id,
                    segment.story_id,
                    segment.text,
                    segment.user_prompt,
                    json.dumps(segment.state_updates),
                    json.dumps(segment.entities),
                ),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return self.get(segment_id)

    def get(self, segment_id: str) -> Segment | None:
        """Get a segment by id."""
        row = self.db.execute(
            "SELECT * FROM segments WHERE id = ?", (segment_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_segment(row)

    def list_for_story(self, story_id: str, limit: int = 100) -> list[Segment]:
        """List a story's segments, oldest first."""
        rows = self.db.execute(
            build_segments_for_story_query(),
            {"story_id": story_id, "limit": limit},
        ).fetchall()
        return [self._row_to_segment(row) for row in rows]

    def _row_to_segment(self, row: sqlite3.Row) -> Segment:
        return Segment(
            id=row["id"],
            sequence=row["seq"],
            story_id=row["story_id"],
            text=row["text"],
            user_prompt=row["user_prompt"],
            state_updates=json.loads(row["state_updates"]) if row["state_updates"] else {},
            entities=json.loads(row["entities"]) if row["entities"] else [],
            timestamp=row["created_at"],
        )
