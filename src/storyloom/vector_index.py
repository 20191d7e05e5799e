"""Vector similarity index backed by SQLite and sqlite-vec.

Every story id owns a namespace: one ``vec0`` virtual table holding the
vectors, plus rows in ``index_entries`` holding the string key and metadata.
Nothing ever reads or writes across namespaces.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Protocol

from storyloom.embedding import serialize_vector
from storyloom.models import Match
from storyloom.queries import (
    INDEX_SCHEMA,
    build_entry_upsert,
    build_similarity_query,
    build_vec_table_ddl,
    namespace_table,
)

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    def upsert(
        self, story_id: str, entry_id: str, embedding: list[float], metadata: dict
    ) -> None: ...

    def query(self, story_id: str, embedding: list[float], top_k: int) -> list[Match]: ...


class SqliteVectorIndex:
    """Namespaced vector index with upsert semantics."""

    def __init__(self, db_path: str, dimensions: int, timeout: float = 30.0):
        self.dimensions = dimensions
        self.db = sqlite3.connect(db_path, timeout=timeout)
        self.db.row_factory = sqlite3.Row
        self._load_sqlite_vec()
        self.db.executescript(INDEX_SCHEMA)
        self.db.commit()

    def _load_sqlite_vec(self) -> None:
        """Load the sqlite-vec extension."""
        import sqlite_vec

        # Enable extension loading (disabled by default for security)
        self.db.enable_load_extension(True)
        sqlite_vec.load(self.db)
        self.db.enable_load_extension(False)

    def close(self) -> None:
        """Close database connection."""
        self.db.close()

    def __enter__(self) -> SqliteVectorIndex:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Namespaces
    # -------------------------------------------------------------------------

    def _namespace_id(self, story_id: str, create: bool) -> int | None:
        row = self.db.execute(
            "SELECT id FROM namespaces WHERE story_id = ?", (story_id,)
        ).fetchone()
        if row is not None:
            return row["id"]
        if not create:
            return None

        cursor = self.db.execute(
            "INSERT INTO namespaces (story_id) VALUES (?)", (story_id,)
        )
        namespace_id = cursor.lastrowid
        self.db.execute(build_vec_table_ddl(namespace_id, self.dimensions))
        return namespace_id

    def namespaces(self) -> list[str]:
        rows = self.db.execute("SELECT story_id FROM namespaces ORDER BY id").fetchall()
        return [row["story_id"] for row in rows]

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def upsert(
        self, story_id: str, entry_id: str, embedding: list[float], metadata: dict
    ) -> None:
        """Insert an entry, replacing any entry with the same id in the namespace.

        Args:
            story_id: Namespace to write into
            entry_id: Key of the entry, e.g. ``lore_42``
            embedding: Vector of the configured dimension
            metadata: JSON-serializable metadata; ``text`` and ``type`` are
                used by retrieval
        """
        try:
            namespace_id = self._namespace_id(story_id, create=True)
            (row,) = self.db.execute(
                build_entry_upsert(),
                {
                    "namespace_id": namespace_id,
                    "entry_id": entry_id,
                    "metadata": json.dumps(metadata),
                },
            ).fetchall()
            rowid = row["id"]

            # vec0 has no upsert; replace the vector by hand
            table = namespace_table(namespace_id)
            self.db.execute(f"DELETE FROM {table} WHERE rowid = ?", (rowid,))
            self.db.execute(
                f"INSERT INTO {table} (rowid, embedding) VALUES (?, ?)",
                (rowid, serialize_vector(embedding)),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Upserted index entry",
            extra={"story_id": story_id, "item_id": entry_id},
        )

    def query(self, story_id: str, embedding: list[float], top_k: int = 5) -> list[Match]:
        """Return the ``top_k`` nearest entries in a namespace, nearest first."""
        namespace_id = self._namespace_id(story_id, create=False)
        if namespace_id is None:
            return []

        rows = self.db.execute(
            build_similarity_query(namespace_id),
            {"query_vector": serialize_vector(embedding), "limit": top_k},
        ).fetchall()

        return [
            Match(
                id=row["entry_id"],
                distance=row["distance"],
                metadata=json.loads(row["metadata"]),
            )
            for row in rows
        ]

    def get(self, story_id: str, entry_id: str) -> dict | None:
        """Get an entry's metadata, or None."""
        row = self.db.execute(
            """
            SELECT ie.metadata FROM index_entries ie
            JOIN namespaces n ON ie.namespace_id = n.id
            WHERE n.story_id = ? AND ie.entry_id = ?
            """,
            (story_id, entry_id),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["metadata"])

    def count(self, story_id: str) -> int:
        """Number of entries in a namespace."""
        row = self.db.execute(
            """
            SELECT COUNT(*) AS n FROM index_entries ie
            JOIN namespaces n ON ie.namespace_id = n.id
            WHERE n.story_id = ?
            """,
            (story_id,),
        ).fetchone()
        return row["n"]
