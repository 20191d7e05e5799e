"""Failure taxonomy.

Callers see ``category`` and ``public_message`` only. The upstream cause is
chained with ``raise ... from`` and goes to the logs, never to the caller.
"""


class StoryloomError(Exception):
    """Base class for all pipeline failures."""

    category = "internal"
    public_message = "Internal error"
    retryable = False

    def to_dict(self) -> dict:
        return {"error": self.category, "message": self.public_message}


class ValidationFailure(StoryloomError):
    """Required caller input is missing or has the wrong type."""

    category = "validation"
    public_message = "Missing required fields"

    def __init__(self, missing: list[str], public_message: str | None = None):
        self.missing = missing
        if public_message is not None:
            self.public_message = public_message
        super().__init__(f"{self.public_message}: {', '.join(missing)}")

    def to_dict(self) -> dict:
        return {
            "error": self.category,
            "message": f"{self.public_message}: {', '.join(self.missing)}",
        }


class EmbeddingFailure(StoryloomError):
    """The embedding backend was unreachable or returned a bad vector."""

    category = "embedding"
    public_message = "Failed to embed text"
    retryable = True


class GenerationFailure(StoryloomError):
    """The text generation backend errored."""

    category = "generation"
    public_message = "Failed to generate story segment"
    retryable = True


class MalformedResponseFailure(StoryloomError):
    """The generation backend returned a payload that does not fit the schema."""

    category = "malformed_response"
    public_message = "Story model returned an unusable response"
    retryable = True


class IndexingFailure(StoryloomError):
    """An explicit indexing operation failed."""

    category = "indexing"
    public_message = "Failed to index knowledge item"
    retryable = True


class PersistenceFailure(StoryloomError):
    """The durable segment write failed."""

    category = "persistence"
    public_message = "Failed to save story segment"
    retryable = True
