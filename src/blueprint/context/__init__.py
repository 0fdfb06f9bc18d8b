"""Agent-context pipeline: scan, select, profile, enrich, and write.

Module guide
------------
scanner.py      Model graph from models/*.sql (ref / source / config markers)
selector.py     dbt-style selection patterns over the graph
statistics.py   Bounded per-column warehouse statistics
changes.py      Schema / documentation / logic fingerprints and hash cache
manifest.py     dbt manifest, schema.yml docs, compiled SQL
enricher.py     One LLM call per document, with deterministic fallback
fallback.py     Deterministic Markdown templates
profiler.py     Per-table profiling loop and run summary
builder.py      build / update orchestration of agent-context/
"""
