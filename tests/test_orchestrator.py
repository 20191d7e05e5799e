"""End-to-end tests for the Orchestrator's public operations."""

import json
import sqlite3

import pytest

from storyloom import (
    CharacterProfile,
    CharacterState,
    EmbeddingFailure,
    GenerationFailure,
    IndexingFailure,
    Lore,
    MalformedResponseFailure,
    Orchestrator,
    PersistenceFailure,
    StoryTurnContext,
    ValidationFailure,
)
from storyloom.embedding import Embedder
from storyloom.llm import LLMError
from storyloom.vector_index import SqliteVectorIndex

from conftest import DIMENSIONS, BrokenBackend, StubLLM


# -------------------------------------------------------------------------
# Knowledge indexing
# -------------------------------------------------------------------------


def test_index_lore(orchestrator, index):
    result = orchestrator.index_lore(
        "s1", "42", "Dragons sleep under the mountain.", title="Dragons", tags=["beasts", "myth"]
    )

    assert result == {"success": True}
    metadata = index.get("s1", "lore_42")
    assert metadata["text"] == "Dragons sleep under the mountain."
    assert metadata["title"] == "Dragons"
    assert metadata["tags"] == ["beasts", "myth"]
    assert metadata["type"] == "Lore"
    assert "timestamp" in metadata


def test_index_lore_embeds_canonical_text(orchestrator, embedder, index):
    orchestrator.index_lore("s1", "42", "Body.", title="T", tags=["a", "b"])

    matches = index.query("s1", embedder.embed("Lore: T\nTags: a, b\nBody."), top_k=1)

    assert matches[0].id == "lore_42"
    assert matches[0].distance == pytest.approx(0.0, abs=1e-6)


def test_index_lore_twice_keeps_one_entry(orchestrator, index):
    orchestrator.index_lore("s1", "42", "Same text.")
    orchestrator.index_lore("s1", "42", "Same text.")

    assert index.count("s1") == 1


def test_index_character(orchestrator, index):
    result = orchestrator.index_character(
        "s1", "mira", "A smuggler with a debt.", name="Mira", traits=["sly"]
    )

    assert result == {"success": True}
    metadata = index.get("s1", "character_mira")
    assert metadata["type"] == "Character"
    assert metadata["name"] == "Mira"
    assert metadata["traits"] == ["sly"]
    assert metadata["text"] == "A smuggler with a debt."


def test_index_knowledge_accepts_items(orchestrator, index):
    orchestrator.index_knowledge("s1", Lore(id="1", text="lore"))
    orchestrator.index_knowledge("s1", CharacterProfile(id="1", text="profile"))

    assert index.get("s1", "lore_1") is not None
    assert index.get("s1", "character_1") is not None


@pytest.mark.parametrize("story_id, lore_id, text, missing", [
    ("", "1", "text", ["storyId"]),
    ("s1", "", "text", ["loreId"]),
    ("s1", "1", "", ["text"]),
    (None, None, None, ["storyId", "loreId", "text"]),
])
def test_index_lore_validation(orchestrator, index, story_id, lore_id, text, missing):
    with pytest.raises(ValidationFailure) as excinfo:
        orchestrator.index_lore(story_id, lore_id, text)

    assert excinfo.value.missing == missing
    assert index.namespaces() == []


def test_index_character_validation(orchestrator):
    with pytest.raises(ValidationFailure) as excinfo:
        orchestrator.index_character("s1", "mira", "")

    assert excinfo.value.missing == ["profileText"]


def test_index_embedding_failure_is_indexing_failure(index, store, llm):
    orchestrator = Orchestrator(Embedder(BrokenBackend(), DIMENSIONS), index, store, llm)

    with pytest.raises(IndexingFailure):
        orchestrator.index_lore("s1", "1", "text")


def test_index_upsert_failure_is_indexing_failure(embedder, store, llm):
    class BrokenIndex:
        def upsert(self, *args):
            raise sqlite3.OperationalError("database is locked")

    orchestrator = Orchestrator(embedder, BrokenIndex(), store, llm)

    with pytest.raises(IndexingFailure):
        orchestrator.index_character("s1", "mira", "profile")


# -------------------------------------------------------------------------
# Story turns
# -------------------------------------------------------------------------


def test_process_turn_open_door(orchestrator, embedder, index, store):
    result = orchestrator.process_turn("s1", "I open the door", StoryTurnContext())

    assert result.segment_id
    assert result.text == "The door creaks open."
    assert result.state_updates["health_change"] == 0

    digest = orchestrator.retriever.retrieve("s1", "The door creaks open.")
    assert "[Memory]: The door creaks open." in digest

    segments = store.list_for_story("s1")
    assert [s.id for s in segments] == [result.segment_id]
    assert segments[0].user_prompt == "I open the door"
    assert index.get("s1", result.segment_id)["type"] == "Memory"


def test_process_turn_without_context(orchestrator):
    assert orchestrator.process_turn("s1", "I wait").text == "The door creaks open."


@pytest.mark.parametrize("story_id, prompt, missing", [
    ("s1", "", ["userPrompt"]),
    ("s1", None, ["userPrompt"]),
    ("", "I open the door", ["storyId"]),
])
def test_process_turn_validation_makes_no_external_calls(
    orchestrator, llm, index, store, story_id, prompt, missing
):
    with pytest.raises(ValidationFailure) as excinfo:
        orchestrator.process_turn(story_id, prompt, StoryTurnContext())

    assert excinfo.value.missing == missing
    assert llm.calls == []
    assert index.namespaces() == []
    assert store.list_for_story("s1") == []


def test_process_turn_generation_failure_stores_nothing(embedder, index, store):
    llm = StubLLM({"narrator": LLMError("HTTP 500")})
    orchestrator = Orchestrator(embedder, index, store, llm)

    with pytest.raises(GenerationFailure):
        orchestrator.process_turn("s1", "I open the door")

    assert store.list_for_story("s1") == []
    assert index.count("s1") == 0


def test_process_turn_malformed_response_stores_nothing(embedder, index, store):
    llm = StubLLM({"narrator": '{"state_updates": {}}'})
    orchestrator = Orchestrator(embedder, index, store, llm)

    with pytest.raises(MalformedResponseFailure):
        orchestrator.process_turn("s1", "I open the door")

    assert store.list_for_story("s1") == []


def test_process_turn_reindex_failure_still_succeeds(embedder, store, llm):
    class UpsertFailingIndex(SqliteVectorIndex):
        def upsert(self, *args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

    index = UpsertFailingIndex(":memory:", DIMENSIONS)
    orchestrator = Orchestrator(embedder, index, store, llm)

    result = orchestrator.process_turn("s1", "I open the door")

    assert result.segment_id
    assert store.get(result.segment_id).text == "The door creaks open."
    index.close()


def test_process_turn_persistence_failure(embedder, index, llm):
    class BrokenStore:
        def append(self, segment):
            raise sqlite3.OperationalError("database is locked")

    orchestrator = Orchestrator(embedder, index, BrokenStore(), llm)

    with pytest.raises(PersistenceFailure):
        orchestrator.process_turn("s1", "I open the door")

    assert index.count("s1") == 0


def test_process_turn_survives_extraction_and_retrieval_failure(embedder, store):
    class QueryFailingIndex(SqliteVectorIndex):
        def query(self, *args, **kwargs):
            raise sqlite3.OperationalError("no such table")

    index = QueryFailingIndex(":memory:", DIMENSIONS)
    llm = StubLLM({"entity_extractor": LLMError("timeout")})
    orchestrator = Orchestrator(embedder, index, store, llm)

    result = orchestrator.process_turn("s1", "I open the door")

    assert result.text == "The door creaks open."
    assert "No relevant lore found." in llm.calls[-1]["system"]
    assert store.get(result.segment_id) is not None
    assert index.get("s1", result.segment_id)["type"] == "Memory"
    index.close()


def test_process_turn_segment_embedding_failure_stores_nothing(index, store):
    llm = StubLLM()
    orchestrator = Orchestrator(Embedder(BrokenBackend(), DIMENSIONS), index, store, llm)

    with pytest.raises(EmbeddingFailure):
        orchestrator.process_turn("s1", "I open the door")

    assert llm.stages() == ["entity_extractor", "narrator"]
    assert store.list_for_story("s1") == []
    assert index.count("s1") == 0


def test_process_turn_returns_state_updates_as_generated(embedder, index, store):
    updates = {
        "skill_usage": "Dodge",
        "relationship_change": {"target_id": "goblin"},
        "health_change": None,
        "gold_change": 5,
    }
    llm = StubLLM({"narrator": json.dumps({"text": "You dodge.", "state_updates": updates})})
    orchestrator = Orchestrator(embedder, index, store, llm)

    result = orchestrator.process_turn("s1", "I dodge")

    assert result.state_updates == updates
    assert store.get(result.segment_id).state_updates == updates


def test_process_turn_null_state_updates(embedder, index, store):
    llm = StubLLM({"narrator": '{"text": "Silence.", "state_updates": null}'})
    orchestrator = Orchestrator(embedder, index, store, llm)

    result = orchestrator.process_turn("s1", "I listen")

    assert result.state_updates is None
    assert result.to_dict()["stateUpdates"] is None


def test_process_turn_feeds_entities_and_lore_into_prompt(embedder, index, store):
    llm = StubLLM({"entity_extractor": "Mira, lantern"})
    orchestrator = Orchestrator(embedder, index, store, llm)
    orchestrator.index_lore("s1", "lantern", "The lantern never goes out.", title="Lantern")

    seen_queries = []
    retrieve = orchestrator.retriever.retrieve

    def spy(story_id, query, k=None):
        seen_queries.append(query)
        return retrieve(story_id, query, k)

    orchestrator.retriever.retrieve = spy

    orchestrator.process_turn(
        "s1",
        "I hand Mira the lantern",
        StoryTurnContext(
            world_notes="A drowned city.",
            character_states=[CharacterState(name="Mira", health=0.8, mood="Wary")],
        ),
    )

    assert seen_queries == ["I hand Mira the lantern Entities: Mira, lantern"]
    assert llm.stages() == ["entity_extractor", "narrator"]
    system = llm.calls[-1]["system"]
    assert "[Lore]: The lantern never goes out." in system
    assert "A drowned city." in system
    assert "- Name: Mira\n- Health: 80%\n- Mood: Wary" in system

    segment = store.list_for_story("s1")[0]
    assert segment.entities == ["Mira", "lantern"]


def test_memories_from_earlier_turns_reach_later_prompts(orchestrator, llm):
    orchestrator.process_turn("s1", "I open the door")
    orchestrator.process_turn("s1", "I step inside")

    assert "[Memory]: The door creaks open." in llm.calls[-1]["system"]


def test_turns_do_not_leak_across_stories(orchestrator, llm):
    orchestrator.index_lore("s2", "secret", "Only s2 knows this.")

    orchestrator.process_turn("s1", "I open the door")

    assert "Only s2 knows this." not in llm.calls[-1]["system"]


def test_list_segments(orchestrator):
    first = orchestrator.process_turn("s1", "I open the door")
    second = orchestrator.process_turn("s1", "I step inside")

    assert [s.id for s in orchestrator.list_segments("s1")] == [
        first.segment_id,
        second.segment_id,
    ]


def test_from_config_with_hash_backend(llm):
    from storyloom.models import EngineConfig

    config = EngineConfig(db_path=":memory:", embedding_backend="hash", vector_dimensions=16)

    with Orchestrator.from_config(config, llm=llm) as orchestrator:
        result = orchestrator.process_turn("s1", "I open the door")

    assert result.text == "The door creaks open."
