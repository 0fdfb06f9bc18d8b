"""LLM access: Pydantic AI client, model price table, and prompts."""

from __future__ import annotations

from blueprint.llm.client import (
    GenerateResult,
    GenerativeClient,
    PydanticAIClient,
    TokenUsage,
    create_generative_client,
)
from blueprint.llm.models import estimate_cost, get_model

__all__ = [
    "GenerateResult",
    "GenerativeClient",
    "PydanticAIClient",
    "TokenUsage",
    "create_generative_client",
    "estimate_cost",
    "get_model",
]
