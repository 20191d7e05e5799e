"""Narrative generation and the response contract with the story model.

The model must answer with a JSON object:

    {"text": "...", "state_updates": {...}}

``text`` is required and non-empty. ``state_updates`` must be an object or
null; its contents belong to the caller and are returned exactly as the
model sent them.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from storyloom.errors import GenerationFailure, MalformedResponseFailure
from storyloom.llm import LLM

logger = logging.getLogger(__name__)


class NarrativeResponse(BaseModel):
    text: str = Field(min_length=1)
    state_updates: dict[str, Any] | None = None


def parse_narrative_response(raw: str) -> NarrativeResponse:
    """Parse the model's raw output.

    Raises:
        MalformedResponseFailure: output is not JSON, not an object, has no
            usable ``text``, or ``state_updates`` is not an object
    """
    try:
        return NarrativeResponse.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedResponseFailure(
            f"Story model response does not fit the schema: {e.error_count()} error(s)"
        ) from e


class NarrativeGenerator:
    def __init__(self, llm: LLM):
        self.llm = llm

    def generate(self, system_instruction: str, user_prompt: str) -> NarrativeResponse:
        try:
            raw = self.llm(
                "narrator", user_prompt, system=system_instruction, json_output=True
            )
        except Exception as e:
            raise GenerationFailure(f"Story model call failed: {e}") from e
        return parse_narrative_response(raw)
