"""Builds and updates the ``agent-context/`` directory.

Layout::

    agent-context/
      system_prompt.md
      summary.md
      modelling.md
      models/<schema>_<table>.md
      .cache/model-hashes.json

``build`` creates everything from scratch; ``update`` re-profiles a
selection (or everything) and skips models whose fingerprints are unchanged.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from blueprint.context.changes import (
    ChangeDetector,
    HashCache,
    cache_path_for,
    clear_cache,
    load_cache,
    save_cache,
)
from blueprint.context.enricher import LLMEnricher
from blueprint.context.fallback import render_basic_summary
from blueprint.context.manifest import DbtIntegration, DbtModelMetadata, read_dbt_project
from blueprint.context.profiler import ProfileSummary, WarehouseProfiler
from blueprint.context.scanner import ModelGraph, render_modelling_markdown, scan_models
from blueprint.context.selector import ModelSelector, parse_selection, split_selection
from blueprint.errors import ContextBuildError
from blueprint.llm.client import create_generative_client
from blueprint.settings import CompanyContext, Settings
from blueprint.warehouse import WarehouseClient, parse_table_name

logger = logging.getLogger(__name__)

MODELS_SUBDIR = "models"

SYSTEM_PROMPT = """\
# System Prompt

You are an expert analytics agent working with a dbt (data build tool) project.

## Your Capabilities

### Analytics Engineer Role
As an Analytics Engineer, you have full access to:
- Query the data warehouse
- Create, modify, and delete dbt models
- Run dbt commands (compile, run, test)
- Read and write files in the project
- Generate visualizations and reports

### Data Analyst Role
As a Data Analyst, you can:
- Query the data warehouse
- Generate visualizations and reports
- Ask questions about data and models
- View existing dbt models and documentation

## Project Context

All relevant project information is available in the `agent-context/` directory:

- `summary.md`: Project overview, company info, and goals
- `modelling.md`: dbt model catalog with lineage and best practices
- `models/`: Warehouse table profiles

## Guidelines

1. **Be Precise**: Always reference specific models, tables, and columns by name
2. **Use dbt Patterns**: Follow dbt best practices (staging, intermediate, marts)
3. **Validate Changes**: Run dbt compile and test before committing changes
4. **Document Work**: Add clear descriptions to new models and tests
5. **Ask Clarifying Questions**: If requirements are unclear, ask the user
6. **Show Your Work**: Explain your reasoning and approach

## Communication Style

- Be concise and direct
- Use markdown formatting for code and queries
- Present options when multiple approaches are valid
- Highlight potential issues or risks
"""


class ContextBuilder:
    """Orchestrates scanning, selection, change detection and profiling.

    Args:
        project_path: dbt project root.
        context_path: Output directory (usually ``<root>/agent-context``).
        client: Warehouse client.
        dbt: dbt metadata access (manifest, docs, compiled SQL).
        enricher: Optional LLM enricher.
        company: Business context for LLM prompts and the summary.
        warehouse_type: Shown in the project summary.
        llm_provider: Shown in the project summary.
        models_dir: Model directory inside the dbt project.
        default_schema: Schema for bare table names.
        case_sensitive_logic: Keep identifier case in the logic hash.
    """

    def __init__(
        self,
        project_path: Path,
        context_path: Path,
        client: WarehouseClient,
        dbt: DbtIntegration,
        *,
        enricher: LLMEnricher | None = None,
        company: CompanyContext | None = None,
        warehouse_type: str = "duckdb",
        llm_provider: str = "anthropic",
        models_dir: str = "models",
        default_schema: str = "public",
        case_sensitive_logic: bool = False,
    ):
        self.project_path = Path(project_path)
        self.context_path = Path(context_path)
        self.client = client
        self.dbt = dbt
        self.enricher = enricher
        self.company = company or CompanyContext()
        self.warehouse_type = warehouse_type
        self.llm_provider = llm_provider
        self.models_dir = models_dir
        self.default_schema = default_schema
        self.detector = ChangeDetector(
            client, dbt, default_schema=default_schema, case_sensitive_logic=case_sensitive_logic,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: WarehouseClient,
        *,
        dbt_target: str | None = None,
    ) -> ContextBuilder:
        """Wire a builder from loaded settings; the LLM is used only when a model is configured."""
        dbt = DbtIntegration(
            settings.dbt_project_path,
            target=dbt_target or settings.advanced.dbt_target,
            models_dir=settings.advanced.models_dir,
        )
        enricher = None
        gen_client = create_generative_client(settings.llm)
        if gen_client is not None:
            enricher = LLMEnricher(gen_client, settings.llm)
            logger.info("LLM enrichment enabled (%s)", settings.llm.profiling_model)
        return cls(
            settings.dbt_project_path,
            settings.context_path,
            client,
            dbt,
            enricher=enricher,
            company=settings.company,
            warehouse_type=str(settings.connection.get("type") or "duckdb"),
            llm_provider=settings.llm.provider,
            models_dir=settings.advanced.models_dir,
            default_schema=settings.advanced.default_schema,
            case_sensitive_logic=settings.advanced.case_sensitive_logic_hash,
        )

    @property
    def cache_path(self) -> Path:
        return cache_path_for(self.context_path)

    @property
    def profiles_path(self) -> Path:
        return self.context_path / MODELS_SUBDIR

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def build(self, force: bool = False) -> ProfileSummary:
        """Create the full agent context.

        Raises:
            ContextBuildError: If the context directory exists and ``force`` is False.
            ValidationError: If the dbt project has no models directory.
        """
        if self.context_path.exists() and not force:
            raise ContextBuildError(
                f"{self.context_path.name}/ directory already exists. Use --force to overwrite."
            )

        logger.info("Building agent context in %s", self.context_path)
        if force:
            clear_cache(self.cache_path)
        self.profiles_path.mkdir(parents=True, exist_ok=True)
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._write("system_prompt.md", SYSTEM_PROMPT)

        graph = scan_models(self.project_path, models_dir=self.models_dir)
        self._write_documents(graph)

        table_models = self._table_model_index(graph)
        profiler = WarehouseProfiler(self.client, self.enricher, self.company)
        summary = profiler.profile_all(self.profiles_path, metadata=self._metadata_by_table(graph.names()))

        cache = self._record_hashes(HashCache(), summary, table_models)
        save_cache(self.cache_path, cache)
        logger.info("Agent context built")
        return summary

    def update(
        self,
        select: str | Iterable[str] | None = None,
        exclude: str | Iterable[str] | None = None,
        profiles_only: bool = False,
        force: bool = False,
    ) -> ProfileSummary:
        """Refresh the agent context.

        Without a selection every warehouse table is re-profiled.  With one,
        models resolve to warehouse tables via the dbt manifest; when nothing
        resolves every table is profiled instead.  Unless ``force`` is set,
        resolved models with unchanged fingerprints are skipped.

        Raises:
            ContextBuildError: If the context directory does not exist.
            ValidationError: On a malformed selection pattern.
        """
        if not self.context_path.exists():
            raise ContextBuildError(
                f"{self.context_path.name}/ directory not found. Run 'blueprint build' first."
            )

        parse_selection(select)
        parse_selection(exclude)

        logger.info("Updating agent context in %s", self.context_path)
        graph = scan_models(self.project_path, models_dir=self.models_dir)
        if not profiles_only:
            self._write_documents(graph)

        cache = load_cache(self.cache_path)
        table_models = self._table_model_index(graph)
        resolved = self._resolve_selection(graph, select, exclude)

        tables: list[tuple[str, str]] | None = None
        model_names = graph.names()
        skipped = 0
        if resolved:
            tables = []
            model_names = []
            for model_name, warehouse_table in resolved:
                if not force:
                    detection = self.detector.detect_changes(cache, model_name, warehouse_table)
                    if not detection.should_reprofile:
                        logger.info("Skipping %s (unchanged)", model_name)
                        skipped += 1
                        continue
                tables.append(parse_table_name(warehouse_table, self.default_schema))
                model_names.append(model_name)

        profiler = WarehouseProfiler(self.client, self.enricher, self.company)
        summary = profiler.profile_all(
            self.profiles_path, tables, metadata=self._metadata_by_table(model_names), skipped=skipped,
        )

        cache = self._record_hashes(cache, summary, table_models)
        save_cache(self.cache_path, cache)
        logger.info("Agent context updated")
        return summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write(self, filename: str, content: str) -> Path:
        path = self.context_path / filename
        path.write_text(content, encoding="utf-8")
        return path

    def _write_documents(self, graph: ModelGraph) -> None:
        dbt_project = read_dbt_project(self.project_path)
        if self.enricher is not None:
            summary = self.enricher.enrich_project_summary(
                self.company, graph, dbt_project=dbt_project, warehouse_type=self.warehouse_type,
            ).content
            modelling = self.enricher.enrich_modelling_analysis(graph, self.company).content
        else:
            summary = render_basic_summary(
                dbt_project,
                warehouse_type=self.warehouse_type,
                llm_provider=self.llm_provider,
                company=self.company,
            )
            modelling = render_modelling_markdown(graph)
        self._write("summary.md", summary)
        self._write("modelling.md", modelling)

    def _resolve_selection(
        self,
        graph: ModelGraph,
        select: str | Iterable[str] | None,
        exclude: str | Iterable[str] | None,
    ) -> list[tuple[str, str]]:
        """``(model_name, warehouse_table)`` pairs for a selection; empty without one."""
        if not split_selection(select) and not split_selection(exclude):
            return []

        self.dbt.ensure_manifest()
        selected = ModelSelector(graph, self.dbt.load_manifest()).select(select, exclude)
        if not selected:
            logger.warning("Selection %r matched no scanned models", select)

        resolved: list[tuple[str, str]] = []
        for model in selected:
            table = self.dbt.get_model_table_name(model.name)
            if table:
                resolved.append((model.name, table))
            else:
                logger.warning("Could not resolve model '%s' to a table name", model.name)

        if not resolved:
            logger.warning("No valid models found, profiling all tables")
        else:
            logger.info("Resolved %d models to warehouse tables", len(resolved))
        return resolved

    def _table_model_index(self, graph: ModelGraph) -> dict[str, tuple[str, str]]:
        """Map ``schema.table`` (and bare table) to ``(model_name, warehouse_table)``."""
        index: dict[str, tuple[str, str]] = {}
        for model in graph.models:
            table = self.dbt.get_model_table_name(model.name)
            if table:
                schema_name, table_name = parse_table_name(table, self.default_schema)
                index[f"{schema_name}.{table_name}"] = (model.name, table)
            else:
                index.setdefault(model.name, (model.name, model.name))
        return index

    def _metadata_by_table(self, model_names: list[str]) -> dict[str, DbtModelMetadata]:
        if self.dbt.load_manifest() is None:
            return {}
        metadata: dict[str, DbtModelMetadata] = {}
        for name in model_names:
            meta = self.dbt.get_model_metadata(name)
            if meta is not None:
                metadata[meta.alias or meta.name] = meta
        return metadata

    def _record_hashes(
        self,
        cache: HashCache,
        summary: ProfileSummary,
        table_models: dict[str, tuple[str, str]],
    ) -> HashCache:
        """Fingerprint every table whose profile is complete and maps to a scanned model.

        LLM fallbacks are not recorded so the next sync retries them.
        """
        for result in summary.results:
            if not result.written or result.error is not None:
                continue
            table_name = result.warehouse_table.split(".", 1)[-1]
            match = table_models.get(result.warehouse_table) or table_models.get(table_name)
            if match is None:
                continue
            model_name, warehouse_table = match
            if warehouse_table == model_name:
                warehouse_table = result.warehouse_table
            profile_path = str(Path(MODELS_SUBDIR) / result.artifact_path.name)
            cache = self.detector.update_model_hashes(cache, model_name, warehouse_table, profile_path)
        return cache
