"""blueprint: agent context for dbt projects (model catalog + warehouse profiles).

File guide
----------
settings.py              Configuration (blueprint_project.yaml, .env)
errors.py                Exception hierarchy with stable error codes
warehouse/               WarehouseClient protocol + DuckDB client
context/scanner.py       Model graph from models/*.sql
context/selector.py      dbt-style selection (exact, wildcard, tag, path, +graph+)
context/statistics.py    Per-column warehouse statistics
context/changes.py       Fingerprint cache and change detection
context/manifest.py      dbt manifest, schema.yml docs, compiled SQL
context/enricher.py      LLM enrichment with deterministic fallback
context/profiler.py      Table profiling loop and run summary
context/builder.py       build / update of agent-context/
llm/                     Pydantic AI client, prompts, model price table
observability.py         Optional Logfire tracing
cli.py                   Typer CLI (build, sync, ls, status)

Public API
----------
- ``ContextBuilder`` - build and update agent-context/
- ``load_settings``  - read blueprint_project.yaml
"""

from blueprint.context.builder import ContextBuilder
from blueprint.settings import load_settings

__version__ = "0.1.0"

__all__ = ["ContextBuilder", "load_settings"]
