"""Entity extraction for retrieval queries.

Best-effort: a failure yields no entities instead of an error.
"""

from __future__ import annotations

import logging

from storyloom.llm import LLM
from storyloom.prompts import entity_prompt

logger = logging.getLogger(__name__)


def parse_entities(output: str) -> list[str]:
    """Parse a comma-separated entity list, or "none".

    Tokens are trimmed, empty tokens dropped and duplicates removed while
    keeping first-seen order.
    """
    output = output.strip()
    if not output or output.lower() == "none":
        return []

    entities: list[str] = []
    for token in output.split(","):
        token = token.strip()
        if token and token not in entities:
            entities.append(token)
    return entities


class EntityExtractor:
    def __init__(self, llm: LLM):
        self.llm = llm

    def extract(self, text: str, story_id: str | None = None) -> list[str]:
        if not text or not text.strip():
            return []
        try:
            output = self.llm("entity_extractor", entity_prompt(text))
            return parse_entities(output)
        except Exception:
            logger.warning(
                "Entity extraction failed; continuing without entities",
                exc_info=True,
                extra={"story_id": story_id, "stage": "entity_extractor"},
            )
            return []
