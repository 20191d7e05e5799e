"""Storyloom - retrieval-augmented narrative generation for interactive stories."""

from storyloom.models import (
    EngineConfig,
    Lore,
    CharacterProfile,
    CharacterState,
    StoryTurnContext,
    Segment,
    TurnResult,
)
from storyloom.errors import (
    StoryloomError,
    ValidationFailure,
    EmbeddingFailure,
    GenerationFailure,
    MalformedResponseFailure,
    IndexingFailure,
    PersistenceFailure,
)
from storyloom.orchestrator import Orchestrator

__version__ = "0.1.0"

__all__ = [
    "Orchestrator",
    "EngineConfig",
    "Lore",
    "CharacterProfile",
    "CharacterState",
    "StoryTurnContext",
    "Segment",
    "TurnResult",
    "StoryloomError",
    "ValidationFailure",
    "EmbeddingFailure",
    "GenerationFailure",
    "MalformedResponseFailure",
    "IndexingFailure",
    "PersistenceFailure",
]
