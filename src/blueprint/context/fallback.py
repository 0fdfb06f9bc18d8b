"""Deterministic Markdown templates used when no LLM output is available.

Nothing here reads the clock or any other ambient state: the same inputs
always render the same bytes.
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from blueprint.context.manifest import DbtModelMetadata
    from blueprint.context.statistics import TableStatisticsProfile
    from blueprint.settings import CompanyContext

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB", "PB"]


def format_bytes(num_bytes: int) -> str:
    """Human-readable size, e.g. ``1.5 KB``."""
    if num_bytes <= 0:
        return "0 Bytes"
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(_SIZE_UNITS) - 1)
    value = round(num_bytes / (1024 ** i), 2)
    return f"{value:g} {_SIZE_UNITS[i]}"


def retry_command(model_name: str) -> str:
    return f"blueprint sync --select {model_name} --force"


def render_fallback_profile(stats: TableStatisticsProfile, metadata: DbtModelMetadata | None = None) -> str:
    """Table profile built from statistics and manifest metadata only."""
    model_name = metadata.name if metadata else stats.table_name
    lines = [
        f"# {stats.full_name}",
        "",
        "**Notice:** This profile was generated using a basic template",
        "because no LLM-enriched documentation was available. Run",
        f"`{retry_command(model_name)}`",
        "to retry with full profiling.",
        "",
        "---",
        "",
        "## Table Information",
        "",
        f"- **Schema**: {stats.schema_name}",
        f"- **Table**: {stats.table_name}",
    ]
    if stats.row_count is not None:
        lines.append(f"- **Row Count**: {stats.row_count:,}")
    if stats.size_in_bytes is not None:
        lines.append(f"- **Size**: {format_bytes(stats.size_in_bytes)}")
    if stats.time_range:
        lines.append(f"- **Time Range**: {stats.time_range.min_date} to {stats.time_range.max_date}")

    lines += [
        "",
        "## Schema",
        "",
        "| Column | Type | Nullable | Distinct | Null % |",
        "|--------|------|----------|----------|--------|",
    ]
    for col in stats.columns:
        distinct = f"{col.distinct_count:,}" if col.distinct_count is not None else "-"
        null_pct = f"{col.null_percentage:.1f}%" if col.null_percentage is not None else "-"
        nullable = "Yes" if col.nullable else "No"
        lines.append(f"| {col.name} | {col.type} | {nullable} | {distinct} | {null_pct} |")
    lines.append("")

    samples = [c for c in stats.columns if c.sample_values]
    if samples:
        lines += ["## Sample Values", ""]
        for col in samples:
            lines.append(f"- **{col.name}**: {', '.join(_sample(v) for v in col.sample_values or [])}")
        lines.append("")

    if metadata:
        lines += ["## dbt Model Metadata", "", f"- **Materialization**: {metadata.materialized}"]
        if metadata.tags:
            lines.append(f"- **Tags**: {', '.join(metadata.tags)}")
        if metadata.description:
            lines.append(f"- **Description**: {metadata.description}")
        lines.append("")
        if metadata.upstream_models:
            lines.append("**Upstream Dependencies:**")
            lines += [f"- `{m}`" for m in metadata.upstream_models]
            lines.append("")
        if metadata.sources:
            lines.append("**Sources:**")
            lines += [f"- `{s}`" for s in metadata.sources]
            lines.append("")

        described = [c for c in metadata.columns if c.description]
        if described:
            lines += ["## Column Descriptions", ""]
            for col in described:
                lines += [f"### {col.name}", "", col.description or "", ""]
                if col.tests:
                    lines += [f"**Tests**: {', '.join(col.tests)}", ""]

    lines += [
        "## Example Query",
        "",
        "```sql",
        "SELECT *",
        f"FROM {stats.full_name}",
        "LIMIT 10;",
        "```",
        "",
        "---",
        "",
        "## To Complete This Profile",
        "",
        f"Run: `{retry_command(model_name)}`",
        "",
    ]
    return "\n".join(lines)


def _sample(value: Any) -> str:
    text = str(value)
    return text if len(text) <= 60 else text[:57] + "..."


def render_basic_summary(
    dbt_project: dict[str, Any],
    *,
    warehouse_type: str,
    llm_provider: str,
    company: CompanyContext | None = None,
) -> str:
    """Project summary from ``dbt_project.yml`` and company settings."""
    name = dbt_project.get("name") or "Unknown"
    lines = [
        "# Project Summary",
        "",
        "## Overview",
        "",
        f"- **Project Name**: {name}",
        f"- **dbt Version**: {dbt_project.get('version') or 'Unknown'}",
        f"- **Profile**: {dbt_project.get('profile') or dbt_project.get('name') or 'default'}",
        f"- **Warehouse**: {warehouse_type}",
        f"- **LLM Provider**: {llm_provider}",
        "",
    ]
    if company and not company.is_empty:
        lines += ["## Company Context", "", f"**{company.name or 'Company Name'}**", ""]
        lines += [f"Industry: {company.industry or 'General'}", ""]
        if company.websites:
            lines += [f"Websites: {', '.join(company.websites)}", ""]
        if company.context:
            lines += [company.context.strip(), ""]
        if company.key_metrics:
            lines += ["**Key Metrics:**", *[f"- {m}" for m in company.key_metrics], ""]

    lines += [
        "## Description",
        "",
        "This is a dbt (data build tool) project for analytics and data transformation.",
        "",
        "The project uses dbt to:",
        "- Transform raw data into clean, analytics-ready models",
        "- Document data lineage and dependencies",
        "- Test data quality and integrity",
        "- Generate documentation for the data warehouse",
        "",
        "## Project Structure",
        "",
        "- `models/`: dbt SQL models organized by layer (staging, intermediate, marts)",
        "- `tests/`: Custom data quality tests",
        "- `macros/`: Reusable SQL macros",
        "- `seeds/`: Static reference data (CSV files)",
        "",
        "## Getting Started",
        "",
        "1. Review `modelling.md` to understand existing models",
        "2. Check the `models/` directory for table profiles",
        "3. Ask questions about the data or request analysis",
        "",
        "---",
        "",
        "*Note: This summary is auto-generated. You can customize it to add company-specific context.*",
        "",
    ]
    return "\n".join(lines)
