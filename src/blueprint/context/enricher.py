"""LLM enrichment of table profiles and project documents.

Every call returns either ``Enriched`` (LLM content plus token usage) or
``Fallback`` (deterministic template plus the error that caused it).  The
LLM is called exactly once per document; there are no retries.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Union

from blueprint.context.fallback import render_basic_summary, render_fallback_profile
from blueprint.context.manifest import DbtModelMetadata
from blueprint.context.scanner import ModelGraph, extract_domains, layer_counts, render_modelling_markdown
from blueprint.context.statistics import TableStatisticsProfile
from blueprint.errors import ExternalGenerationError
from blueprint.llm.client import GenerativeClient, TokenUsage
from blueprint.llm.models import estimate_cost
from blueprint.llm.prompts import (
    MODELLING_SYSTEM_PROMPT,
    PROFILER_SYSTEM_PROMPT,
    PROJECT_SUMMARY_SYSTEM_PROMPT,
    format_modelling_input,
    format_project_summary_input,
    format_table_profile_input,
)
from blueprint.settings import CompanyContext, LLMConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileError:
    model_name: str
    error_type: Literal["llm", "warehouse"]
    error: str
    fallback_used: bool


@dataclass(frozen=True)
class Enriched:
    content: str
    tokens_used: TokenUsage


@dataclass(frozen=True)
class Fallback:
    content: str
    error: ProfileError | None = None


EnrichmentOutcome = Union[Enriched, Fallback]


class LLMEnricher:
    """Turns statistics and metadata into narrative Markdown via one LLM call.

    Args:
        client: Generative-text client.
        config: Token limits and temperature per document kind.
    """

    def __init__(self, client: GenerativeClient, config: LLMConfig | None = None):
        self.client = client
        self.config = config or LLMConfig(profiling_model=client.model_id)

    @property
    def model_id(self) -> str:
        return self.client.model_id

    def estimate_cost(self, tokens: TokenUsage) -> float:
        return estimate_cost(self.model_id, tokens.input, tokens.output)

    def _generate(self, prompt: str, system_prompt: str, max_tokens: int) -> Enriched:
        result = self.client.generate(
            prompt,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=self.config.temperature,
        )
        if not result.content or not result.content.strip():
            raise ExternalGenerationError("LLM returned an empty response")
        return Enriched(content=result.content, tokens_used=result.tokens_used)

    def enrich_table_profile(
        self,
        stats: TableStatisticsProfile,
        metadata: DbtModelMetadata | None = None,
        company: CompanyContext | None = None,
    ) -> EnrichmentOutcome:
        model_name = metadata.name if metadata else stats.table_name
        prompt = format_table_profile_input(stats, metadata, company)
        try:
            return self._generate(prompt, PROFILER_SYSTEM_PROMPT, self.config.max_tokens)
        except Exception as e:
            logger.warning("LLM profiling failed for %s, using fallback template: %s", model_name, e)
            return Fallback(
                content=render_fallback_profile(stats, metadata),
                error=ProfileError(model_name=model_name, error_type="llm", error=str(e), fallback_used=True),
            )

    def enrich_project_summary(
        self,
        company: CompanyContext,
        graph: ModelGraph,
        *,
        dbt_project: dict[str, Any],
        warehouse_type: str,
    ) -> EnrichmentOutcome:
        prompt = format_project_summary_input(
            company,
            project_name=str(dbt_project.get("name") or "Unknown"),
            dbt_version=dbt_project.get("version"),
            warehouse_type=warehouse_type,
            model_count=graph.model_count,
            layers=layer_counts(graph),
            domains=extract_domains(graph),
        )
        try:
            return self._generate(prompt, PROJECT_SUMMARY_SYSTEM_PROMPT, self.config.summary_max_tokens)
        except Exception as e:
            logger.warning("LLM project summary failed, using basic summary: %s", e)
            return Fallback(
                content=render_basic_summary(
                    dbt_project,
                    warehouse_type=warehouse_type,
                    llm_provider=self.config.provider,
                    company=company,
                ),
                error=ProfileError(model_name="summary", error_type="llm", error=str(e), fallback_used=True),
            )

    def enrich_modelling_analysis(self, graph: ModelGraph, company: CompanyContext | None = None) -> EnrichmentOutcome:
        prompt = format_modelling_input(graph, company)
        try:
            return self._generate(prompt, MODELLING_SYSTEM_PROMPT, self.config.modelling_max_tokens)
        except Exception as e:
            logger.warning("LLM modelling analysis failed, using model catalog: %s", e)
            return Fallback(
                content=render_modelling_markdown(graph),
                error=ProfileError(model_name="modelling", error_type="llm", error=str(e), fallback_used=True),
            )
