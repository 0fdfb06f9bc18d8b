"""dbt model scanner: rebuilds the model graph from SQL source files.

Each ``.sql`` file under ``models/`` becomes one ``ModelNode``.  Dependencies
are read from the Jinja markers dbt itself uses:

- ``{{ ref('stg_orders') }}``            → upstream model
- ``{{ source('shop', 'orders') }}``     → external raw table
- ``{{ config(materialized='table') }}`` → inline configuration

Markers are found with a small tokenizer rather than one big regex so quotes,
nested brackets and Jinja comments (``{# ... #}``) cannot cause runaway or
false matches.  A file that cannot be read or tokenized is logged and
skipped; the scan itself never fails on one bad file.
"""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from blueprint.errors import ValidationError

logger = logging.getLogger(__name__)

_BLOCK_START = re.compile(r"\{[{#%]")
_IDENTIFIER = re.compile(r"[A-Za-z_]\w*")
_NUMBER = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_QUOTES = ("'", '"')


class ModelParseError(ValidationError):
    """A model file contains a malformed Jinja block."""


@dataclass(frozen=True)
class SourceRef:
    """A ``source('group', 'table')`` reference."""
    source_name: str
    table_name: str

    def __str__(self) -> str:
        return f"{self.source_name}.{self.table_name}"


@dataclass(frozen=True)
class ModelNode:
    """One declared transformation unit (one SQL file)."""
    name: str
    path: Path
    relative_path: str  # posix-style, relative to the models directory
    sql: str
    refs: list[str] = field(default_factory=list)
    sources: list[SourceRef] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelGraph:
    """The full scanned project, models in discovery order."""
    models: list[ModelNode] = field(default_factory=list)

    @property
    def model_count(self) -> int:
        return len(self.models)

    @property
    def ref_count(self) -> int:
        return sum(len(m.refs) for m in self.models)

    @property
    def source_count(self) -> int:
        return sum(len(m.sources) for m in self.models)

    def names(self) -> list[str]:
        return [m.name for m in self.models]

    def dependents(self) -> dict[str, list[str]]:
        """Reverse reference index: model name → names of models that ref it."""
        reverse: dict[str, list[str]] = {}
        for model in self.models:
            for ref in model.refs:
                bucket = reverse.setdefault(ref, [])
                if model.name not in bucket:
                    bucket.append(model.name)
        return reverse


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


def _scan_until(text: str, pos: int, terminator: str) -> int:
    """Return the index of ``terminator`` at or after ``pos``, skipping quoted text.

    Returns -1 when the terminator never appears outside quotes.
    """
    quote: str | None = None
    n = len(text)
    while pos < n:
        ch = text[pos]
        if quote:
            if ch == "\\":
                pos += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif text.startswith(terminator, pos):
            return pos
        pos += 1
    return -1


def iter_jinja_expressions(text: str) -> Iterator[str]:
    """Yield the inner text of every ``{{ ... }}`` block.

    ``{# ... #}`` comments and ``{% ... %}`` statements are skipped.

    Raises:
        ModelParseError: On an unterminated block.
    """
    pos = 0
    while True:
        match = _BLOCK_START.search(text, pos)
        if match is None:
            return
        start = match.start()
        kind = text[start + 1]
        if kind == "#":
            end = text.find("#}", start + 2)
            if end < 0:
                raise ModelParseError(f"Unterminated Jinja comment at offset {start}")
            pos = end + 2
            continue
        terminator = "}}" if kind == "{" else "%}"
        end = _scan_until(text, start + 2, terminator)
        if end < 0:
            raise ModelParseError(f"Unterminated Jinja block at offset {start}")
        if kind == "{":
            yield text[start + 2:end]
        pos = end + 2


def split_top_level(text: str, sep: str = ",") -> list[str]:
    """Split on ``sep`` outside quotes and brackets."""
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    current: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            current.append(ch)
            if ch == "\\" and i + 1 < len(text):
                current.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
            current.append(ch)
        elif ch in "([{":
            depth += 1
            current.append(ch)
        elif ch in ")]}":
            depth -= 1
            current.append(ch)
        elif ch == sep and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    tail = "".join(current)
    if tail.strip() or parts:
        parts.append(tail)
    return parts


def parse_call(expr: str) -> tuple[str, str] | None:
    """Parse ``name(args)`` spanning the whole expression.

    Returns ``(name, args_text)`` or None when the expression is anything else
    (a filter chain, arithmetic, two calls...).
    """
    expr = expr.strip()
    match = _IDENTIFIER.match(expr)
    if match is None:
        return None
    pos = match.end()
    while pos < len(expr) and expr[pos].isspace():
        pos += 1
    if pos >= len(expr) or expr[pos] != "(":
        return None

    depth = 0
    quote: str | None = None
    i = pos
    while i < len(expr):
        ch = expr[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                break
        i += 1
    else:
        return None

    if expr[i + 1:].strip():
        return None
    return match.group(0), expr[pos + 1:i]


def _string_literal(text: str) -> str | None:
    """Return the contents of a simple quoted literal (no embedded quotes)."""
    text = text.strip()
    if len(text) < 3 or text[0] not in _QUOTES or text[-1] != text[0]:
        return None
    inner = text[1:-1]
    if any(q in inner for q in _QUOTES):
        return None
    return inner


def parse_config_value(raw: str) -> Any:
    """Coerce one ``config()`` value.

    Quotes are stripped, ``true``/``false`` become booleans, fully numeric
    text becomes int/float, ``[...]`` becomes a list of coerced items.
    Anything else is kept as the raw text.
    """
    value = raw.strip()
    if value.startswith("[") and value.endswith("]"):
        return [parse_config_value(item) for item in split_top_level(value[1:-1]) if item.strip()]
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        value = value[1:-1]
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    if _NUMBER.fullmatch(value):
        try:
            return int(value)
        except ValueError:
            return float(value)
    return value


def parse_config_args(args: str) -> dict[str, Any]:
    """Parse ``key = value, ...`` pairs from a ``config()`` call."""
    config: dict[str, Any] = {}
    for part in split_top_level(args):
        key, sep, value = part.partition("=")
        key = key.strip()
        if not sep or not _IDENTIFIER.fullmatch(key):
            continue
        config[key] = parse_config_value(value)
    return config


def extract_markers(sql: str) -> tuple[list[str], list[SourceRef], dict[str, Any]]:
    """Extract ``(refs, sources, config)`` from one model's SQL text."""
    refs: list[str] = []
    sources: list[SourceRef] = []
    config: dict[str, Any] | None = None

    for expr in iter_jinja_expressions(sql):
        call = parse_call(expr)
        if call is None:
            continue
        name, args_text = call
        args = split_top_level(args_text)

        if name == "ref" and len(args) == 1:
            target = _string_literal(args[0])
            if target is not None:
                refs.append(target)
        elif name == "source" and len(args) == 2:
            group = _string_literal(args[0])
            table = _string_literal(args[1])
            if group is not None and table is not None:
                sources.append(SourceRef(source_name=group, table_name=table))
        elif name == "config" and config is None:
            config = parse_config_args(args_text)

    return refs, sources, config or {}


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def find_model_files(models_path: Path, extensions: tuple[str, ...] = (".sql",)) -> list[Path]:
    """Recursively list model files, sorted for a stable scan order."""
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(models_path):
        dirnames.sort()
        for filename in sorted(filenames):
            if filename.endswith(extensions):
                found.append(Path(dirpath) / filename)
    return found


def parse_model(path: Path, models_path: Path) -> ModelNode:
    """Parse a single model file."""
    sql = path.read_text(encoding="utf-8")
    refs, sources, config = extract_markers(sql)
    relative = path.relative_to(models_path).as_posix()
    return ModelNode(
        name=path.stem,
        path=path,
        relative_path=relative,
        sql=sql,
        refs=refs,
        sources=sources,
        config=config,
    )


def scan_models(
    project_path: Path,
    *,
    models_dir: str = "models",
    extensions: tuple[str, ...] = (".sql",),
) -> ModelGraph:
    """Scan every model file in the project.

    Raises:
        ValidationError: If the models directory does not exist.
    """
    models_path = Path(project_path) / models_dir
    if not models_path.is_dir():
        raise ValidationError(f"{models_dir}/ directory not found in dbt project: {project_path}")

    models: list[ModelNode] = []
    for path in find_model_files(models_path, extensions):
        try:
            models.append(parse_model(path, models_path))
        except (OSError, UnicodeDecodeError, ModelParseError) as e:
            logger.warning("Failed to parse model %s: %s", path.relative_to(models_path), e)

    graph = ModelGraph(models=models)
    logger.info(
        "Scanned %d models (%d refs, %d sources) in %s",
        graph.model_count, graph.ref_count, graph.source_count, models_path,
    )
    return graph


# ---------------------------------------------------------------------------
# Project-level analysis
# ---------------------------------------------------------------------------


def layer_counts(graph: ModelGraph) -> dict[str, int]:
    """Count models per conventional dbt layer, by directory name."""
    return {
        "staging": sum(1 for m in graph.models if "staging" in m.relative_path),
        "intermediate": sum(1 for m in graph.models if "intermediate" in m.relative_path),
        "marts": sum(1 for m in graph.models if "marts" in m.relative_path),
    }


def extract_domains(graph: ModelGraph) -> list[str]:
    """Domains from ``<prefix>_<domain>_<rest>`` model names, first-seen order."""
    domains: list[str] = []
    for model in graph.models:
        parts = model.name.split("_")
        if len(parts) > 2 and parts[1] not in domains:
            domains.append(parts[1])
    return domains


def render_modelling_markdown(graph: ModelGraph) -> str:
    """Deterministic model catalog, grouped by directory."""
    lines = [
        "# dbt Models",
        "",
        "## Summary",
        "",
        f"- **Total Models**: {graph.model_count}",
        f"- **Total References**: {graph.ref_count}",
        f"- **Total Sources**: {graph.source_count}",
        "",
    ]

    by_dir: dict[str, list[ModelNode]] = {}
    for model in graph.models:
        directory = os.path.dirname(model.relative_path) or "."
        by_dir.setdefault(directory, []).append(model)

    lines += ["## Models by Directory", ""]
    for directory, models in by_dir.items():
        lines += [f"### {directory}", ""]
        for model in models:
            lines += [f"#### {model.name}", "", f"- **Path**: `{model.relative_path}`"]
            if model.refs:
                lines.append("- **References**: " + ", ".join(f"`{r}`" for r in model.refs))
            if model.sources:
                lines.append("- **Sources**: " + ", ".join(f"`{s}`" for s in model.sources))
            if model.config:
                lines.append(f"- **Config**: {json.dumps(model.config, indent=2)}")
            lines.append("")

    lines += [
        "## dbt Best Practices",
        "",
        "- Use staging models (stg_*) to clean and standardize raw data",
        "- Use intermediate models (int_*) for complex transformations",
        "- Use fact and dimension models (fct_*, dim_*) for final analytics tables",
        "- Always use `ref()` and `source()` macros for dependencies",
        "- Add tests to validate data quality",
        "- Document models with descriptions and column comments",
        "",
    ]
    return "\n".join(lines)
