"""Warehouse profiler: one Markdown artifact per table.

For each table: gather statistics, try LLM enrichment (if configured), write
``<schema>_<table>.md``, and fold the outcome into a ``ProfileSummary``.
A table whose statistics cannot be gathered is counted as failed and the
loop moves on; artifact write errors propagate.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from blueprint.context.enricher import Enriched, Fallback, LLMEnricher, ProfileError
from blueprint.context.fallback import render_fallback_profile
from blueprint.context.manifest import DbtModelMetadata
from blueprint.context.statistics import StatisticsGatherer
from blueprint.errors import BlueprintError
from blueprint.llm.client import TokenUsage
from blueprint.settings import CompanyContext
from blueprint.warehouse import WarehouseClient

logger = logging.getLogger(__name__)


@dataclass
class ProfileResult:
    """Outcome of profiling one table."""
    model_name: str
    warehouse_table: str
    success: bool
    duration_s: float = 0.0
    content: str | None = None
    tokens_used: TokenUsage | None = None
    error: ProfileError | None = None
    artifact_path: Path | None = None

    @property
    def written(self) -> bool:
        return self.artifact_path is not None


@dataclass
class ProfileSummary:
    """Aggregate statistics for one profiling run."""
    total: int = 0
    successful: int = 0
    fallback: int = 0
    failed: int = 0
    skipped: int = 0
    total_cost: float = 0.0
    total_time_s: float = 0.0
    errors: list[ProfileError] = field(default_factory=list)
    results: list[ProfileResult] = field(default_factory=list)

    @property
    def profiled(self) -> int:
        return self.successful + self.fallback


def artifact_filename(schema_name: str, table_name: str) -> str:
    return f"{schema_name}_{table_name}.md"


class WarehouseProfiler:
    """Profiles warehouse tables into Markdown artifacts.

    Args:
        client: Warehouse to read from.
        enricher: Optional LLM enricher; without one every table gets the
            deterministic template.
        company: Business context forwarded to the LLM.
    """

    def __init__(
        self,
        client: WarehouseClient,
        enricher: LLMEnricher | None = None,
        company: CompanyContext | None = None,
    ):
        self.client = client
        self.enricher = enricher
        self.company = company
        self.statistics = StatisticsGatherer(client)

    def profile_table(
        self,
        schema_name: str,
        table_name: str,
        output_dir: Path,
        metadata: DbtModelMetadata | None = None,
    ) -> ProfileResult:
        """Profile one table and write its artifact.

        Raises:
            BlueprintError: If the table statistics cannot be gathered.
            OSError: If the artifact cannot be written.
        """
        start = time.monotonic()
        model_name = metadata.name if metadata else table_name
        logger.info("Profiling %s.%s", schema_name, table_name)

        stats = self.statistics.gather_table_stats(schema_name, table_name)
        if self.enricher is not None:
            outcome = self.enricher.enrich_table_profile(stats, metadata, self.company)
        else:
            outcome = Fallback(content=render_fallback_profile(stats, metadata))

        path = Path(output_dir) / artifact_filename(schema_name, table_name)
        path.write_text(outcome.content, encoding="utf-8")

        result = ProfileResult(
            model_name=model_name,
            warehouse_table=f"{schema_name}.{table_name}",
            success=isinstance(outcome, Enriched),
            content=outcome.content,
            artifact_path=path,
        )
        if isinstance(outcome, Enriched):
            result.tokens_used = outcome.tokens_used
        else:
            result.error = outcome.error
        result.duration_s = time.monotonic() - start
        logger.info(
            "Saved %s (%s, %.1fs)", path.name, "enriched" if result.success else "fallback", result.duration_s,
        )
        return result

    def profile_all(
        self,
        output_dir: Path,
        tables: list[tuple[str, str]] | None = None,
        metadata: dict[str, DbtModelMetadata] | None = None,
        *,
        skipped: int = 0,
    ) -> ProfileSummary:
        """Profile ``tables`` (default: every table the warehouse lists).

        Args:
            output_dir: Directory for the ``<schema>_<table>.md`` artifacts.
            tables: ``(schema, table)`` pairs to profile.
            metadata: dbt metadata keyed by table name.
            skipped: Tables already skipped by the caller, carried into the summary.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        if tables is None:
            tables = self.client.list_tables()
        metadata = metadata or {}

        summary = ProfileSummary(total=len(tables) + skipped, skipped=skipped)
        logger.info("Found %d tables to profile", len(tables))

        for schema_name, table_name in tables:
            try:
                result = self.profile_table(schema_name, table_name, output_dir, metadata.get(table_name))
            except BlueprintError as e:
                logger.error("Failed to profile %s.%s: %s", schema_name, table_name, e)
                summary.failed += 1
                summary.errors.append(ProfileError(
                    model_name=f"{schema_name}.{table_name}",
                    error_type="warehouse",
                    error=str(e),
                    fallback_used=False,
                ))
                summary.results.append(ProfileResult(
                    model_name=table_name,
                    warehouse_table=f"{schema_name}.{table_name}",
                    success=False,
                ))
                continue

            summary.results.append(result)
            summary.total_time_s += result.duration_s
            if result.success:
                summary.successful += 1
                if result.tokens_used and self.enricher is not None:
                    summary.total_cost += self.enricher.estimate_cost(result.tokens_used)
            else:
                summary.fallback += 1
                if result.error:
                    summary.errors.append(result.error)

            if summary.profiled % 10 == 0:
                logger.info("Profiled %d/%d tables", summary.profiled, len(tables))

        logger.info(
            "Profiled %d/%d tables (enriched %d, fallback %d, failed %d, skipped %d, cost $%.4f)",
            summary.profiled, len(tables), summary.successful, summary.fallback,
            summary.failed, summary.skipped, summary.total_cost,
        )
        return summary
