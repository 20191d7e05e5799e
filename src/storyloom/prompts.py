"""Prompt templates.

Pure string templating: every function here is total and deterministic.
"""

from __future__ import annotations

from storyloom.models import CharacterState

DEFAULT_NARRATION = "Standard third-person narrative, descriptive and engaging."
DEFAULT_WORLD_NOTES = "A generic fantasy world."
DEFAULT_PERSONA = "An adventurer seeking glory."
NO_CHARACTERS = "No active characters."
NO_CONTEXT = "No relevant lore found."

OUTPUT_CONTRACT = """\
- Continue the story based on the user's input.
- Maintain consistency with the world notes, persona, character states, and lore.
- Keep the response concise but evocative.
- You MUST return your response in JSON format with the following structure:
  {
    "text": "Your narrative response here",
    "state_updates": {
      "health_change": number (e.g., -0.1 for damage, 0.1 for healing),
      "mood_change": "string (new mood)" or null,
      "location_change": "string (new location name)" or null,
      "skill_usage": ["string (skill names used)"],
      "relationship_change": {"target_id": "string", "affinity_delta": number} or null
    }
  }
- If no state updates are needed, use 0, null or [] for those fields."""


def render_character_state(char: CharacterState) -> str:
    health = 1.0 if char.health is None else char.health
    return "\n".join([
        f"- Name: {char.name}",
        f"- Health: {round(health * 100)}%",
        f"- Mood: {char.mood or 'Neutral'}",
        f"- Location: {char.location or 'Unknown'}",
        f"- Skills: {char.skills_summary or 'None'}",
        f"- Relationships: {char.relationships_summary or 'None'}",
    ])


def render_character_states(characters: list[CharacterState]) -> str:
    if not characters:
        return NO_CHARACTERS
    return "\n".join(render_character_state(c) for c in characters)


def compose_system_instruction(
    narration: str | None,
    world_notes: str | None,
    user_persona: str | None,
    character_states: list[CharacterState],
    retrieved_digest: str,
) -> str:
    """Assemble the storyteller's system instruction."""
    return "\n\n".join([
        "You are an expert storyteller and dungeon master.",
        f"NARRATION STYLE:\n{narration or DEFAULT_NARRATION}",
        f"WORLD NOTES:\n{world_notes or DEFAULT_WORLD_NOTES}",
        f"USER PERSONA:\n{user_persona or DEFAULT_PERSONA}",
        f"CURRENT CHARACTER STATES:\n{render_character_states(character_states)}",
        f"RELEVANT LORE & MEMORIES:\n{retrieved_digest or NO_CONTEXT}",
        f"INSTRUCTIONS:\n{OUTPUT_CONTRACT}",
    ])


def entity_prompt(text: str) -> str:
    return (
        "Extract key entities (characters, locations, items, events) from the "
        "following text. Return them as a comma-separated list. "
        f'If none, return "none": "{text}"'
    )
