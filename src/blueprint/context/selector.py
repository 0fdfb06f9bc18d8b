"""dbt-style model selection.

Supported patterns (whitespace or comma separated, unioned):

    stg_orders        exact name
    fct_*             wildcard, anchored to the whole name
    tag:finance       manifest tag (empty without a manifest)
    path:marts/core   glob on the path relative to models/
    +dim_customers    model plus everything it refs, transitively
    stg_customers+    model plus everything that refs it, transitively
    +dim_customers+   both of the above

Exclusion patterns are resolved the same way and always win.
"""
from __future__ import annotations

import fnmatch
import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from blueprint.context.scanner import ModelGraph, ModelNode
from blueprint.errors import ValidationError

logger = logging.getLogger(__name__)

_NAME_CHARS = re.compile(r"[A-Za-z0-9_.\-*]+")
_PATH_CHARS = re.compile(r"[A-Za-z0-9_.\-*/?\[\]]+")
_TOKEN_SPLIT = re.compile(r"[\s,]+")


class PatternKind(str, Enum):
    EXACT = "exact"
    WILDCARD = "wildcard"
    TAG = "tag"
    PATH = "path"
    UPSTREAM = "upstream"
    DOWNSTREAM = "downstream"
    BOTH = "both"


@dataclass(frozen=True)
class SelectionPattern:
    """One parsed selection token."""
    raw: str
    kind: PatternKind
    value: str


def parse_pattern(raw: str) -> SelectionPattern:
    """Parse a single selection token.

    Raises:
        ValidationError: If the token is malformed.
    """
    token = raw.strip()
    if not token:
        raise ValidationError("Empty selection pattern")

    if token.startswith("tag:"):
        tag = token[4:]
        if not tag or not _NAME_CHARS.fullmatch(tag) or "*" in tag:
            raise ValidationError(f"Invalid tag selector: {raw!r}")
        return SelectionPattern(raw=raw, kind=PatternKind.TAG, value=tag)

    if token.startswith("path:"):
        path = token[5:].strip("/")
        if not path or not _PATH_CHARS.fullmatch(path):
            raise ValidationError(f"Invalid path selector: {raw!r}")
        return SelectionPattern(raw=raw, kind=PatternKind.PATH, value=path)

    leading = token.startswith("+")
    trailing = token.endswith("+") and len(token) > 1
    name = token[1 if leading else 0: len(token) - 1 if trailing else len(token)]

    if not name:
        raise ValidationError(f"Missing model name in selection pattern: {raw!r}")
    if "+" in name:
        raise ValidationError(f"Misplaced graph operator in selection pattern: {raw!r}")
    if not _NAME_CHARS.fullmatch(name):
        raise ValidationError(f"Illegal characters in selection pattern: {raw!r}")
    if "*" in name and (leading or trailing):
        raise ValidationError(f"Wildcards cannot be combined with graph operators: {raw!r}")

    if leading and trailing:
        kind = PatternKind.BOTH
    elif leading:
        kind = PatternKind.UPSTREAM
    elif trailing:
        kind = PatternKind.DOWNSTREAM
    elif "*" in name:
        kind = PatternKind.WILDCARD
    else:
        kind = PatternKind.EXACT
    return SelectionPattern(raw=raw, kind=kind, value=name)


def split_selection(selection: str | Iterable[str] | None) -> list[str]:
    """Split a selection string (or list of strings) into tokens."""
    if selection is None:
        return []
    items = [selection] if isinstance(selection, str) else list(selection)
    tokens: list[str] = []
    for item in items:
        tokens.extend(t for t in _TOKEN_SPLIT.split(item) if t)
    return tokens


def parse_selection(selection: str | Iterable[str] | None) -> list[SelectionPattern]:
    """Parse every token of a selection."""
    return [parse_pattern(token) for token in split_selection(selection)]


def wildcard_regex(pattern: str) -> re.Pattern[str]:
    """Anchored regex for a ``*`` wildcard; every other character is literal."""
    return re.compile("^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$")


class ModelSelector:
    """Resolves selection patterns against a scanned model graph.

    Args:
        graph: The scanned project.
        manifest: Parsed ``target/manifest.json``; needed only for ``tag:``.
    """

    def __init__(self, graph: ModelGraph, manifest: dict[str, Any] | None = None):
        self.graph = graph
        self.manifest = manifest
        self._by_name = {m.name: m for m in graph.models}
        self._dependents = graph.dependents()

    def select(
        self,
        include: str | Iterable[str] | None = None,
        exclude: str | Iterable[str] | None = None,
    ) -> list[ModelNode]:
        """Return the selected models in graph order.

        An empty include selects every model. Malformed patterns raise
        ``ValidationError`` before anything is resolved.
        """
        include_patterns = parse_selection(include)
        exclude_patterns = parse_selection(exclude)

        if include_patterns:
            included: set[str] = set()
            for pattern in include_patterns:
                included |= self.resolve(pattern)
        else:
            included = set(self._by_name)

        excluded: set[str] = set()
        for pattern in exclude_patterns:
            excluded |= self.resolve(pattern)

        return [m for m in self.graph.models if m.name in included and m.name not in excluded]

    def resolve(self, pattern: SelectionPattern) -> set[str]:
        """Names matched by one pattern."""
        kind = pattern.kind
        if kind is PatternKind.EXACT:
            return {pattern.value} if pattern.value in self._by_name else set()
        if kind is PatternKind.WILDCARD:
            regex = wildcard_regex(pattern.value)
            return {name for name in self._by_name if regex.match(name)}
        if kind is PatternKind.TAG:
            return self._match_tag(pattern.value)
        if kind is PatternKind.PATH:
            return self._match_path(pattern.value)
        if kind is PatternKind.UPSTREAM:
            return self.upstream(pattern.value)
        if kind is PatternKind.DOWNSTREAM:
            return self.downstream(pattern.value)
        return self.upstream(pattern.value) | self.downstream(pattern.value)

    def upstream(self, name: str) -> set[str]:
        """``name`` and every model it transitively refs."""
        return self._walk(name, lambda n: self._by_name[n].refs if n in self._by_name else [])

    def downstream(self, name: str) -> set[str]:
        """``name`` and every model that transitively refs it."""
        return self._walk(name, lambda n: self._dependents.get(n, []))

    def _walk(self, start: str, neighbours) -> set[str]:
        if start not in self._by_name:
            return set()
        visited: set[str] = set()
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            queue.extend(n for n in neighbours(current) if n not in visited)
        # refs to models outside the scanned graph are not selectable
        return {n for n in visited if n in self._by_name}

    def _match_tag(self, tag: str) -> set[str]:
        if not self.manifest:
            logger.warning("Selector tag:%s needs target/manifest.json; nothing selected", tag)
            return set()
        tagged = {
            node.get("name")
            for node in (self.manifest.get("nodes") or {}).values()
            if node.get("resource_type") == "model" and tag in (node.get("tags") or [])
        }
        return {name for name in self._by_name if name in tagged}

    def _match_path(self, path: str) -> set[str]:
        matched: set[str] = set()
        for model in self.graph.models:
            rel = model.relative_path
            if fnmatch.fnmatchcase(rel, path) or rel.startswith(path + "/"):
                matched.add(model.name)
        return matched


def select_models(
    graph: ModelGraph,
    include: str | Iterable[str] | None = None,
    exclude: str | Iterable[str] | None = None,
    manifest: dict[str, Any] | None = None,
) -> list[ModelNode]:
    """Convenience wrapper around ``ModelSelector.select``."""
    return ModelSelector(graph, manifest).select(include, exclude)
