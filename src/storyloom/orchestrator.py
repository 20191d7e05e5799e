"""Orchestrator - the two public operations of the pipeline.

Story turn flow:
  1. Validate input (no external calls on failure).
  2. Extract entities from the user prompt (best-effort).
  3. Retrieve related lore and memories for the story (best-effort).
  4. Compose the system instruction.
  5. Generate the next segment and its state updates (fatal).
  6. Embed and persist the segment (fatal), then index it as a Memory
     (best-effort).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from storyloom.embedding import Embedder, create_backend
from storyloom.errors import IndexingFailure, StoryloomError, ValidationFailure
from storyloom.extraction import EntityExtractor
from storyloom.generation import NarrativeGenerator
from storyloom.llm import LLM, OpenAILLM
from storyloom.logging_config import StoryAdapter
from storyloom.models import (
    CharacterProfile,
    EngineConfig,
    KnowledgeItem,
    Lore,
    Segment,
    StoryTurnContext,
    TurnResult,
    entry_key,
)
from storyloom.persistence import SegmentPersister
from storyloom.prompts import compose_system_instruction
from storyloom.retrieval import ContextRetriever
from storyloom.segments import SegmentStore
from storyloom.vector_index import SqliteVectorIndex, VectorIndex

logger = logging.getLogger(__name__)


def _require(**fields) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationFailure(missing)


class Orchestrator:
    """Runs knowledge indexing and story turns over injected services."""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        store: SegmentStore,
        llm: LLM,
        top_k: int = 5,
    ):
        self.embedder = embedder
        self.index = index
        self.store = store
        self.extractor = EntityExtractor(llm)
        self.retriever = ContextRetriever(embedder, index, top_k=top_k)
        self.generator = NarrativeGenerator(llm)
        self.persister = SegmentPersister(store, embedder, index)

    @classmethod
    def from_config(cls, config: EngineConfig, llm: LLM | None = None) -> Orchestrator:
        """Construct every service once from config."""
        embedder = Embedder(create_backend(config), config.vector_dimensions)
        index = SqliteVectorIndex(
            config.db_path, config.vector_dimensions, timeout=config.request_timeout
        )
        store = SegmentStore(config.db_path, timeout=config.request_timeout)
        return cls(
            embedder=embedder,
            index=index,
            store=store,
            llm=llm or OpenAILLM.from_config(config),
            top_k=config.retrieval_top_k,
        )

    def close(self) -> None:
        for service in (self.index, self.store):
            close = getattr(service, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Knowledge indexing
    # -------------------------------------------------------------------------

    def index_knowledge(self, story_id: str, item: KnowledgeItem) -> dict:
        """Embed a knowledge item and upsert it into the story's namespace.

        Args:
            story_id: Story namespace
            item: Lore or CharacterProfile

        Returns:
            ``{"success": True}``

        Raises:
            ValidationFailure: story id, item id or body text missing
            IndexingFailure: embedding or upsert failed
        """
        _require(**{"storyId": story_id, item.id_field: item.id, item.text_field: item.text})

        key = entry_key(item)
        try:
            embedding = self.embedder.embed(item.canonical_text())
            metadata = item.metadata()
            metadata["type"] = item.label
            metadata["timestamp"] = datetime.now(timezone.utc).isoformat()
            self.index.upsert(story_id, key, embedding, metadata)
        except Exception as e:
            logger.error(
                "Error indexing %s",
                item.kind,
                exc_info=True,
                extra={"story_id": story_id, "item_id": key},
            )
            raise IndexingFailure(f"Failed to index {key}") from e
        return {"success": True}

    def index_lore(
        self,
        story_id: str,
        lore_id: str,
        text: str,
        title: str | None = None,
        tags: list[str] | None = None,
    ) -> dict:
        return self.index_knowledge(
            story_id, Lore(id=lore_id, text=text, title=title or "", tags=tags or [])
        )

    def index_character(
        self,
        story_id: str,
        character_id: str,
        profile_text: str,
        name: str | None = None,
        traits: list[str] | None = None,
    ) -> dict:
        return self.index_knowledge(
            story_id,
            CharacterProfile(
                id=character_id, text=profile_text, name=name or "", traits=traits or []
            ),
        )

    # -------------------------------------------------------------------------
    # Story turns
    # -------------------------------------------------------------------------

    def process_turn(
        self,
        story_id: str,
        user_prompt: str,
        context: StoryTurnContext | None = None,
    ) -> TurnResult:
        """Run one story turn end to end.

        Raises:
            ValidationFailure: story id or user prompt missing
            GenerationFailure: the story model call failed
            MalformedResponseFailure: the story model answered off-schema
            PersistenceFailure: the segment could not be stored
            EmbeddingFailure: the new segment could not be embedded
        """
        _require(storyId=story_id, userPrompt=user_prompt)
        context = context or StoryTurnContext()
        log = StoryAdapter(logger, story_id=story_id)

        entities = self.extractor.extract(user_prompt, story_id=story_id)
        query = (
            f"{user_prompt} Entities: {', '.join(entities)}" if entities else user_prompt
        )
        digest = self.retriever.retrieve(story_id, query)

        instruction = compose_system_instruction(
            context.narration,
            context.world_notes,
            context.user_persona,
            context.character_states,
            digest,
        )

        try:
            response = self.generator.generate(instruction, user_prompt)
            state_updates = response.state_updates
            segment = self.persister.persist(
                Segment(
                    story_id=story_id,
                    text=response.text,
                    user_prompt=user_prompt,
                    state_updates=state_updates,
                    entities=entities,
                )
            )
        except StoryloomError as e:
            log.error("Error processing story segment (%s)", e.category, exc_info=True)
            raise

        log.info(
            "Segment processed and stored",
            extra={"segment_id": segment.id, "metadata": {"entities": len(entities)}},
        )
        return TurnResult(
            segment_id=segment.id, text=segment.text, state_updates=state_updates
        )

    def list_segments(self, story_id: str, limit: int = 100) -> list[Segment]:
        _require(storyId=story_id)
        return self.store.list_for_story(story_id, limit=limit)
