"""SQL builders for the vector index and the segment store."""


INDEX_SCHEMA = """
CREATE TABLE IF NOT EXISTS namespaces (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    story_id TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS index_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    namespace_id INTEGER NOT NULL REFERENCES namespaces(id),
    entry_id TEXT NOT NULL,
    metadata TEXT NOT NULL,
    UNIQUE (namespace_id, entry_id)
);
"""


SEGMENT_SCHEMA = """
CREATE TABLE IF NOT EXISTS segments (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    story_id TEXT NOT NULL,
    text TEXT NOT NULL,
    user_prompt TEXT NOT NULL,
    state_updates TEXT,
    entities TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_segments_story ON segments (story_id, seq);
"""


def namespace_table(namespace_id: int) -> str:
    """Name of the vec0 table backing one namespace.

    Tables are named by the namespace row id rather than the story id, so two
    story ids can never collide on a sanitized table name.
    """
    return f"ns_{int(namespace_id)}_vec"


def build_vec_table_ddl(namespace_id: int, dimensions: int) -> str:
    """Build DDL for creating a namespace's vector table."""
    return f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {namespace_table(namespace_id)}
    USING vec0(embedding float[{dimensions}])
    """


def build_entry_upsert() -> str:
    """Insert an entry's metadata, or overwrite it if the key already exists."""
    return """
    INSERT INTO index_entries (namespace_id, entry_id, metadata)
    VALUES (:namespace_id, :entry_id, :metadata)
    ON CONFLICT (namespace_id, entry_id) DO UPDATE SET metadata = excluded.metadata
    RETURNING id
    """


def build_similarity_query(namespace_id: int) -> str:
    """Build KNN query over one namespace.

    Uses sqlite-vec virtual table for KNN search.
    """
    return f"""
    SELECT ie.entry_id, ie.metadata, nv.distance
    FROM {namespace_table(namespace_id)} nv
    JOIN index_entries ie ON nv.rowid = ie.id
    WHERE nv.embedding MATCH :query_vector
      AND k = :limit
    ORDER BY nv.distance
    """


def build_segments_for_story_query() -> str:
    """Segments of one story in creation order."""
    return """
    SELECT seq, id, story_id, text, user_prompt, state_updates, entities, created_at
    FROM segments
    WHERE story_id = :story_id
    ORDER BY seq
    LIMIT :limit
    """
