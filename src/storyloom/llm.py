"""LLM client: text generation for the pipeline.

The pipeline injects an LLM callable matching the protocol:

    def __call__(self, stage: str, prompt: str, *, system: str | None = None,
                 json_output: bool = False) -> str: ...

`stage` identifies which pipeline step is calling ("entity_extractor",
"narrator"). Implementations may use it for logging or routing.

Production code constructs an OpenAILLM from config and hands it to the
Orchestrator. Tests use StubLLM (defined in tests/conftest.py) instead.
"""

from __future__ import annotations

import logging
from typing import Protocol

from storyloom.models import EngineConfig

logger = logging.getLogger(__name__)


class LLM(Protocol):
    def __call__(
        self,
        stage: str,
        prompt: str,
        *,
        system: str | None = None,
        json_output: bool = False,
    ) -> str: ...


class OpenAILLM:
    """Chat completion client for the OpenAI API.

    Args:
        model:   Model identifier, e.g. "gpt-4o-mini".
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, model: str = "gpt-4o-mini", timeout: float = 30.0) -> None:
        from openai import OpenAI

        self.model = model
        self.client = OpenAI(timeout=timeout, max_retries=0)

    @classmethod
    def from_config(cls, config: EngineConfig) -> OpenAILLM:
        return cls(model=config.generation_model, timeout=config.request_timeout)

    def __call__(
        self,
        stage: str,
        prompt: str,
        *,
        system: str | None = None,
        json_output: bool = False,
    ) -> str:
        import openai

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict = {}
        if json_output:
            kwargs["response_format"] = {"type": "json_object"}

        logger.debug("llm call stage=%s prompt_len=%d", stage, len(prompt))
        try:
            response = self.client.chat.completions.create(
                model=self.model, messages=messages, **kwargs
            )
        except openai.APITimeoutError as e:
            raise LLMError(f"LLM backend timed out ({stage})") from e
        except openai.APIConnectionError as e:
            raise LLMError(f"Cannot connect to LLM backend ({stage})") from e
        except openai.APIStatusError as e:
            raise LLMError(f"LLM backend returned HTTP {e.status_code} ({stage})") from e

        if not response.choices or response.choices[0].message.content is None:
            raise LLMError(f"LLM backend returned no content ({stage})")
        text = response.choices[0].message.content
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
