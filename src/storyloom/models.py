"""Data models for Storyloom."""

import os
from dataclasses import dataclass, field
from typing import Any

from storyloom.errors import ValidationFailure


@dataclass
class EngineConfig:
    """Configuration for the Orchestrator and its services."""

    db_path: str
    embedding_backend: str = "local"  # "local" | "openai" | "hash"
    embedding_model: str = "all-MiniLM-L6-v2"  # for local
    openai_model: str = "text-embedding-3-small"  # if backend="openai"
    vector_dimensions: int = 384  # matches model
    generation_model: str = "gpt-4o-mini"
    request_timeout: float = 30.0  # seconds, per external call
    retrieval_top_k: int = 5
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from STORYLOOM_* environment variables."""
        return cls(
            db_path=os.getenv("STORYLOOM_DB_PATH", "storyloom.db"),
            embedding_backend=os.getenv("STORYLOOM_EMBEDDING_BACKEND", "local"),
            embedding_model=os.getenv(
                "STORYLOOM_EMBEDDING_MODEL", "all-MiniLM-L6-v2"
            ),
            openai_model=os.getenv(
                "STORYLOOM_OPENAI_MODEL", "text-embedding-3-small"
            ),
            vector_dimensions=int(os.getenv("STORYLOOM_VECTOR_DIMENSIONS", "384")),
            generation_model=os.getenv("STORYLOOM_GENERATION_MODEL", "gpt-4o-mini"),
            request_timeout=float(os.getenv("STORYLOOM_REQUEST_TIMEOUT", "30")),
            retrieval_top_k=int(os.getenv("STORYLOOM_RETRIEVAL_TOP_K", "5")),
            log_level=os.getenv("STORYLOOM_LOG_LEVEL", "INFO"),
        )


# -------------------------------------------------------------------------
# Knowledge items
# -------------------------------------------------------------------------


@dataclass
class Lore:
    """A piece of world lore."""

    id: str
    text: str
    title: str = ""
    tags: list[str] = field(default_factory=list)

    kind = "lore"
    label = "Lore"
    id_field = "loreId"
    text_field = "text"

    def canonical_text(self) -> str:
        return f"Lore: {self.title}\nTags: {', '.join(self.tags)}\n{self.text}"

    def metadata(self) -> dict:
        return {"text": self.text, "title": self.title, "tags": list(self.tags)}


@dataclass
class CharacterProfile:
    """A character profile, indexed as world knowledge."""

    id: str
    text: str
    name: str = ""
    traits: list[str] = field(default_factory=list)

    kind = "character"
    label = "Character"
    id_field = "characterId"
    text_field = "profileText"

    def canonical_text(self) -> str:
        return f"Character: {self.name}\nTraits: {', '.join(self.traits)}\n{self.text}"

    def metadata(self) -> dict:
        return {"text": self.text, "name": self.name, "traits": list(self.traits)}


KnowledgeItem = Lore | CharacterProfile


def entry_key(item: KnowledgeItem) -> str:
    """Vector index key for a knowledge item, e.g. ``lore_42``."""
    return f"{item.kind}_{item.id}"


# -------------------------------------------------------------------------
# Turn inputs
# -------------------------------------------------------------------------


@dataclass
class CharacterState:
    """Per-turn snapshot of a character, supplied by the caller."""

    name: str
    health: float | None = None  # 0..1
    mood: str | None = None
    location: str | None = None
    skills_summary: str | None = None
    relationships_summary: str | None = None

    _TEXT_FIELDS = ("name", "mood", "location", "skills_summary", "relationships_summary")

    @classmethod
    def from_dict(cls, data: dict, path: str = "characterState") -> "CharacterState":
        """Build from caller JSON.

        Raises:
            ValidationFailure: not an object, a non-numeric health, or a
                non-string text field
        """
        if not isinstance(data, dict):
            raise ValidationFailure([path], "Invalid fields")

        invalid = [
            f"{path}.{name}"
            for name in cls._TEXT_FIELDS
            if data.get(name) is not None and not isinstance(data[name], str)
        ]
        health = data.get("health")
        if health is not None and (
            isinstance(health, bool) or not isinstance(health, (int, float))
        ):
            invalid.append(f"{path}.health")
        if invalid:
            raise ValidationFailure(invalid, "Invalid fields")

        return cls(
            name=data.get("name") or "",
            health=health,
            mood=data.get("mood"),
            location=data.get("location"),
            skills_summary=data.get("skills_summary"),
            relationships_summary=data.get("relationships_summary"),
        )


@dataclass
class StoryTurnContext:
    """Caller-supplied context for one story turn."""

    narration: str | None = None
    world_notes: str | None = None
    user_persona: str | None = None
    character_states: list[CharacterState] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "StoryTurnContext":
        """Build from caller JSON, accepting camelCase or snake_case keys.

        Raises:
            ValidationFailure: the context or one of its fields has the wrong type
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationFailure(["context"], "Invalid fields")

        text = {
            "narration": data.get("narration"),
            "worldNotes": data.get("worldNotes", data.get("world_notes")),
            "userPersona": data.get("userPersona", data.get("user_persona")),
        }
        invalid = [
            f"context.{name}"
            for name, value in text.items()
            if value is not None and not isinstance(value, str)
        ]
        states = data.get("characterStates") or data.get("character_states") or []
        if not isinstance(states, list):
            invalid.append("context.characterStates")
        if invalid:
            raise ValidationFailure(invalid, "Invalid fields")

        return cls(
            narration=text["narration"],
            world_notes=text["worldNotes"],
            user_persona=text["userPersona"],
            character_states=[
                CharacterState.from_dict(c, f"context.characterStates[{i}]")
                for i, c in enumerate(states)
            ],
        )


# -------------------------------------------------------------------------
# Stored records
# -------------------------------------------------------------------------


@dataclass
class Segment:
    """A narrative event produced by one successful turn."""

    story_id: str
    text: str
    user_prompt: str
    state_updates: dict[str, Any] | None = field(default_factory=dict)
    entities: list[str] = field(default_factory=list)
    id: str | None = None  # assigned by the store
    sequence: int | None = None
    timestamp: str | None = None


@dataclass
class Match:
    """A vector index query hit."""

    id: str
    distance: float
    metadata: dict


@dataclass
class TurnResult:
    """What process_turn returns to the caller."""

    segment_id: str
    text: str
    state_updates: dict[str, Any] | None

    def to_dict(self) -> dict:
        return {
            "segmentId": self.segment_id,
            "text": self.text,
            "stateUpdates": self.state_updates,
        }
