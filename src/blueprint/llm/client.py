"""Generative-text client over Pydantic AI."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from pydantic_ai import Agent, ModelSettings

from blueprint.errors import ExternalGenerationError
from blueprint.settings import LLMConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass(frozen=True)
class GenerateResult:
    content: str
    tokens_used: TokenUsage


class GenerativeClient(Protocol):
    """Single-shot text generation."""

    model_id: str

    def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> GenerateResult: ...


def model_string(provider: str, model_id: str) -> str:
    """Pydantic AI model string (``provider:model``)."""
    provider = (provider or "anthropic").lower()
    if provider == "anthropic":
        return f"anthropic:{model_id}"
    if provider in ("google", "google-genai"):
        return f"google-genai:{model_id}"
    if provider == "openai":
        return f"openai:{model_id}"
    raise ExternalGenerationError(f"Unsupported LLM provider: {provider}")


class PydanticAIClient:
    """Runs one Pydantic AI agent call per ``generate``.

    API keys come from the provider's usual environment variables
    (``ANTHROPIC_API_KEY``, ``OPENAI_API_KEY``, ``GOOGLE_API_KEY``).
    """

    def __init__(self, provider: str, model_id: str):
        self.provider = provider
        self.model_id = model_id
        self.model = model_string(provider, model_id)

    def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> GenerateResult:
        try:
            # model construction may fail too (missing API key)
            agent = Agent(
                model=self.model,
                system_prompt=system_prompt or (),
                output_type=str,
                model_settings=ModelSettings(max_tokens=max_tokens, temperature=temperature),
            )
            result = agent.run_sync(prompt)
        except Exception as e:
            raise ExternalGenerationError(f"{self.model} generation failed: {e}", cause=e) from e

        usage = result.usage()
        return GenerateResult(
            content=result.output or "",
            tokens_used=TokenUsage(
                input=int(usage.input_tokens or 0),
                output=int(usage.output_tokens or 0),
            ),
        )


def create_generative_client(config: LLMConfig) -> GenerativeClient | None:
    """Build a client, or None when no profiling model is configured."""
    if not config.enabled:
        return None
    return PydanticAIClient(config.provider, config.profiling_model)
