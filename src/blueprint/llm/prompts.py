"""System prompts and input formatting for context enrichment."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from blueprint.context.fallback import format_bytes

if TYPE_CHECKING:
    from blueprint.context.manifest import DbtModelMetadata
    from blueprint.context.scanner import ModelGraph
    from blueprint.context.statistics import TableStatisticsProfile
    from blueprint.settings import CompanyContext

MODELLING_INPUT_MODEL_LIMIT = 50

PROFILER_SYSTEM_PROMPT = """\
You are a senior analytics engineer documenting a data warehouse table
for analysts, data scientists, and finance stakeholders.

Your goal is to produce a **clear, usage-oriented table profile**
that explains what the table contains, how to query it safely,
and what to watch out for.

Use a professional but readable tone.
Avoid speculation: infer meaning only from the data, column names,
and provided metadata.
Highlight non-obvious patterns and modeling intent.

You will receive structured input with:
- Table name and basic metadata (row count, size, time coverage)
- Column details (name, type, statistics, sample values)
- dbt model context (if applicable): descriptions, tags, dependencies, SQL excerpt
- Company context (if available): industry, business domain, key metrics

OUTPUT FORMAT (STRICT MARKDOWN):

# Data Summary: <table_name>

## Overall Dataset Characteristics

- Concise paragraph describing what the table represents and its grain
- Time span and row volume (if applicable)
- Structural characteristics (e.g. sparsity, hierarchy, adjustments, units)

**Key Observations:**

- Bullet points with important, non-obvious insights

---

## Column Details

For EACH column, include a subsection:

### <COLUMN_NAME> (<TYPE>)

- **Type:** <description>
- **Completeness:** <% populated>
- **Cardinality:** <unique count>
- **Range / Values:** <ranges or representative values>
- **Purpose:** <what this column represents conceptually>
- **Query Usage:** <how analysts should use or filter/group by it>

---

## dbt Model Information (if applicable)

**Model Type:** <table/view/incremental>
**Tags:** <list of tags>

**Upstream Dependencies:**
- Models this depends on (with purpose)
- Sources from raw data

---

## Query Considerations

### Good Filtering Columns
### Good Grouping / Aggregation Columns
### Aggregation Targets

---

## Data Quality Considerations

- Null semantics, negative or zero values, unit or currency constraints,
  and any known pitfalls when querying

---

## Potential Join Keys

---

## Common Query Patterns

---

## Keywords

- Domain, technical, and business keywords useful for search and retrieval"""

PROJECT_SUMMARY_SYSTEM_PROMPT = """\
You are a senior data engineer creating documentation for an analytics dbt project.

Your goal is to generate a clear project summary that helps stakeholders understand:
- What the company does (business context)
- What this dbt project accomplishes (technical context)
- What analytical capabilities are available (data domains, metrics)
- How the project is organized (structure, patterns)

Use a professional, accessible tone suitable for both technical and business audiences.

OUTPUT FORMAT (STRICT MARKDOWN):

# Project Summary

## Company Context
## Data Infrastructure
## Analytical Capabilities
## Project Structure
## Getting Started

---

**Note:** This summary is generated from project analysis and may be customized."""

MODELLING_SYSTEM_PROMPT = """\
You are a senior analytics engineer reviewing a dbt project's modeling patterns and structure.

Your goal is to provide insightful analysis of:
- Overall modeling approach and patterns
- Data lineage and dependencies
- Best practices observed
- Potential improvements

Use a constructive, educational tone.

OUTPUT FORMAT (STRICT MARKDOWN):

# dbt Modeling Guide

## Project Overview
## Modeling Patterns
## Data Lineage
## Layer Analysis
## Best Practices Observed
## Recommendations

## dbt Best Practices Reference

- Use staging models (stg_*) to clean and standardize raw data
- Use intermediate models (int_*) for complex transformations
- Use fact and dimension models (fct_*, dim_*) for final analytics tables
- Always use `ref()` and `source()` macros for dependencies
- Add tests to validate data quality
- Document models with descriptions and column comments"""


def _join(values: list[Any]) -> str:
    return ", ".join(str(v) for v in values)


def format_table_profile_input(
    stats: TableStatisticsProfile,
    metadata: DbtModelMetadata | None = None,
    company: CompanyContext | None = None,
) -> str:
    """Structured user prompt describing one table."""
    lines = ["INPUT:", "", f"Table name: {stats.full_name}", ""]
    if stats.row_count is not None:
        lines.append(f"Row count: {stats.row_count:,}")
    if stats.size_in_bytes is not None:
        lines.append(f"Size: {format_bytes(stats.size_in_bytes)}")
    if stats.time_range:
        lines.append(f"Time coverage: {stats.time_range.min_date} to {stats.time_range.max_date}")

    lines += ["", "Columns (name, type, stats, examples):", ""]
    for col in stats.columns:
        doc = metadata.column(col.name) if metadata else None
        lines.append(f"### {col.name} ({col.type})")
        lines.append(f"- Nullable: {'Yes' if col.nullable else 'No'}")
        if col.null_percentage is not None:
            lines.append(f"- Completeness: {100 - col.null_percentage:.1f}%")
        if col.distinct_count is not None:
            lines.append(f"- Cardinality: {col.distinct_count:,} unique values")
        if col.min_value is not None and col.max_value is not None:
            lines.append(f"- Range: {col.min_value} to {col.max_value}")
        if col.sample_values:
            lines.append(f"- Sample values: {_join(col.sample_values[:5])}")
        if doc and doc.description:
            lines.append(f'- dbt description: "{doc.description}"')
        if doc and doc.tests:
            lines.append(f"- dbt tests: {_join(doc.tests)}")
        lines.append("")

    if metadata:
        lines += ["", "dbt Model Context:", "", f"Model name: {metadata.name}"]
        if metadata.description:
            lines.append(f"Description: {metadata.description}")
        lines.append(f"Materialization: {metadata.materialized}")
        if metadata.tags:
            lines.append(f"Tags: {_join(metadata.tags)}")
        if metadata.upstream_models:
            lines += ["", "Upstream dependencies:"]
            lines += [f"- ref('{m}')" for m in metadata.upstream_models]
        if metadata.sources:
            lines += ["", "Sources:"]
            lines += [f"- source('{s.source_name}', '{s.table_name}')" for s in metadata.sources]
        if metadata.compiled_sql:
            lines += ["", "Logic excerpt (first 500 chars of compiled SQL):", "```sql", metadata.compiled_sql, "```"]

    if company and not company.is_empty:
        lines += ["", "Company Context:", ""]
        if company.name:
            lines.append(f"Company: {company.name}")
        if company.industry:
            lines.append(f"Industry: {company.industry}")
        if company.key_metrics:
            lines.append(f"Key metrics: {_join(company.key_metrics)}")

    return "\n".join(lines) + "\n"


def format_project_summary_input(
    company: CompanyContext,
    *,
    project_name: str,
    dbt_version: str | None,
    warehouse_type: str,
    model_count: int,
    layers: dict[str, int],
    domains: list[str],
) -> str:
    lines = [
        "Company Context:",
        f"- Name: {company.name or 'Unknown'}",
        f"- Industry: {company.industry or 'General'}",
        f"- Websites: {_join(company.websites) or 'None provided'}",
        "",
    ]
    if company.context:
        lines += ["User-Provided Context:", company.context, ""]
    lines += [
        "dbt Project Metadata:",
        f"- Project Name: {project_name}",
        f"- dbt Version: {dbt_version or 'Unknown'}",
        f"- Warehouse: {warehouse_type}",
        f"- Total Models: {model_count}",
        f"  - Staging: {layers.get('staging', 0)}",
        f"  - Intermediate: {layers.get('intermediate', 0)}",
        f"  - Marts: {layers.get('marts', 0)}",
        f"- Identified Domains: {_join(domains)}",
        f"- Key Metrics: {_join(company.key_metrics) or 'None identified'}",
    ]
    return "\n".join(lines) + "\n"


def format_modelling_input(graph: ModelGraph, company: CompanyContext | None = None) -> str:
    lines = [
        "Project Overview:",
        f"- Total Models: {graph.model_count}",
        f"- Total References: {graph.ref_count}",
        f"- Total Sources: {graph.source_count}",
        "",
    ]
    if company and not company.is_empty:
        lines += [
            "Company Context:",
            f"- Industry: {company.industry or 'General'}",
            f"- Key Metrics: {_join(company.key_metrics)}",
            "",
        ]
    lines.append("Models:")
    for model in graph.models[:MODELLING_INPUT_MODEL_LIMIT]:
        lines.append(f"- {model.name} ({model.relative_path})")
        lines.append(f"  - Refs: {_join(model.refs) or 'none'}")
        lines.append(f"  - Sources: {_join(model.sources) or 'none'}")
        if model.config:
            lines.append(f"  - Config: {json.dumps(model.config)}")
    remaining = graph.model_count - MODELLING_INPUT_MODEL_LIMIT
    if remaining > 0:
        lines.append(f"... and {remaining} more models")
    return "\n".join(lines) + "\n"
