"""Known LLM models and their token prices (USD per million tokens)."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LLMModel:
    id: str
    name: str
    provider: str
    context_window: int
    cost_per_1m_input: float
    cost_per_1m_output: float
    speed: str = "balanced"
    capabilities: list[str] = field(default_factory=list)
    recommended: str | None = None  # "general" or "profiling"


ANTHROPIC_MODELS = [
    LLMModel(
        id="claude-3-5-sonnet-20241022",
        name="Claude 3.5 Sonnet",
        provider="anthropic",
        context_window=200_000,
        cost_per_1m_input=3.0,
        cost_per_1m_output=15.0,
        capabilities=["analysis", "reasoning", "code", "long-context"],
        recommended="general",
    ),
    LLMModel(
        id="claude-3-5-haiku-20241022",
        name="Claude 3.5 Haiku",
        provider="anthropic",
        context_window=200_000,
        cost_per_1m_input=1.0,
        cost_per_1m_output=5.0,
        speed="fast",
        capabilities=["analysis", "speed", "cost-effective"],
        recommended="profiling",
    ),
    LLMModel(
        id="claude-3-opus-20240229",
        name="Claude 3 Opus",
        provider="anthropic",
        context_window=200_000,
        cost_per_1m_input=15.0,
        cost_per_1m_output=75.0,
        speed="slow",
        capabilities=["analysis", "reasoning", "complex-tasks", "highest-quality"],
    ),
]

OPENAI_MODELS = [
    LLMModel(
        id="gpt-4o",
        name="GPT-4o",
        provider="openai",
        context_window=128_000,
        cost_per_1m_input=2.5,
        cost_per_1m_output=10.0,
        capabilities=["analysis", "vision", "code", "multimodal"],
        recommended="general",
    ),
    LLMModel(
        id="gpt-4o-mini",
        name="GPT-4o Mini",
        provider="openai",
        context_window=128_000,
        cost_per_1m_input=0.15,
        cost_per_1m_output=0.6,
        speed="fast",
        capabilities=["analysis", "speed", "cost-effective"],
        recommended="profiling",
    ),
    LLMModel(
        id="gpt-4-turbo",
        name="GPT-4 Turbo",
        provider="openai",
        context_window=128_000,
        cost_per_1m_input=10.0,
        cost_per_1m_output=30.0,
        capabilities=["analysis", "reasoning", "code"],
    ),
    LLMModel(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        provider="openai",
        context_window=16_385,
        cost_per_1m_input=0.5,
        cost_per_1m_output=1.5,
        speed="fast",
        capabilities=["speed", "cost-effective"],
    ),
]

# Applied to model ids missing from the table (Haiku-class pricing)
DEFAULT_INPUT_RATE = 1.0
DEFAULT_OUTPUT_RATE = 5.0


def get_model(model_id: str) -> LLMModel | None:
    for model in ANTHROPIC_MODELS + OPENAI_MODELS:
        if model.id == model_id:
            return model
    return None


def estimate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    """Linear cost estimate in USD."""
    model = get_model(model_id)
    input_rate = model.cost_per_1m_input if model else DEFAULT_INPUT_RATE
    output_rate = model.cost_per_1m_output if model else DEFAULT_OUTPUT_RATE
    return (input_tokens / 1_000_000) * input_rate + (output_tokens / 1_000_000) * output_rate
