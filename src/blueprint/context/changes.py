"""Change detection for model profiles.

Each profiled model keeps three fingerprints in
``agent-context/.cache/model-hashes.json``:

- schema hash: the warehouse-reported columns (name, type, nullable), in
  the order the warehouse reports them, so a column reorder counts as a
  schema change
- documentation hash: the model and column descriptions from ``schema.yml``
- logic hash: the compiled SQL with comments and whitespace normalized

The cache is a plain value (``HashCache``) loaded once per run, passed in
explicitly, and saved once at the end by the caller.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from blueprint.context.manifest import ModelDocumentation, ProjectMetadata
from blueprint.errors import BlueprintError
from blueprint.warehouse import TableSchema, WarehouseClient, parse_table_name

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0"
CACHE_RELATIVE_PATH = Path(".cache") / "model-hashes.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ModelHashRecord:
    schema_hash: str
    documentation_hash: str
    logic_hash: str
    last_profiled: str
    profile_path: str
    warehouse_table: str

    def to_dict(self) -> dict[str, str]:
        return {
            "schemaHash": self.schema_hash,
            "documentationHash": self.documentation_hash,
            "logicHash": self.logic_hash,
            "lastProfiled": self.last_profiled,
            "profilePath": self.profile_path,
            "warehouseTable": self.warehouse_table,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelHashRecord:
        return cls(
            schema_hash=str(data.get("schemaHash", "")),
            documentation_hash=str(data.get("documentationHash", "")),
            logic_hash=str(data.get("logicHash", "")),
            last_profiled=str(data.get("lastProfiled", "")),
            profile_path=str(data.get("profilePath", "")),
            warehouse_table=str(data.get("warehouseTable", "")),
        )


@dataclass(frozen=True)
class HashCache:
    version: str = CACHE_VERSION
    last_sync: str | None = None
    models: dict[str, ModelHashRecord] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastSync": self.last_sync,
            "models": {name: rec.to_dict() for name, rec in self.models.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HashCache:
        models = data.get("models") or {}
        return cls(
            version=str(data.get("version") or CACHE_VERSION),
            last_sync=data.get("lastSync"),
            models={str(k): ModelHashRecord.from_dict(v) for k, v in models.items() if isinstance(v, dict)},
        )


@dataclass(frozen=True)
class ChangeDetection:
    model_name: str
    schema_changed: bool
    documentation_changed: bool
    logic_changed: bool
    is_new: bool
    should_reprofile: bool


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_json(value: Any) -> str:
    """Key-sorted, whitespace-free JSON."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_schema(schema: TableSchema) -> str:
    return sha256_hex(canonical_json([
        {"name": c.name, "type": c.type, "nullable": c.nullable} for c in schema.columns
    ]))


def hash_documentation(docs: ModelDocumentation | None) -> str:
    """Documentation fingerprint; missing docs hash like empty docs."""
    payload = {
        "description": (docs.description if docs else None) or "",
        "columns": [
            {"name": c.name, "description": c.description or ""}
            for c in (docs.columns if docs else [])
        ],
    }
    return sha256_hex(canonical_json(payload))


_SQL_TOKEN = re.compile(
    r"""
    (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    | (?P<line>--[^\n]*)
    | (?P<block>/\*.*?\*/)
    """,
    re.VERBOSE | re.DOTALL,
)


def strip_sql_comments(sql: str) -> str:
    """Remove ``--`` and ``/* */`` comments, leaving quoted literals intact."""
    def _sub(match: re.Match[str]) -> str:
        if match.group("string") is not None:
            return match.group("string")
        return " "
    return _SQL_TOKEN.sub(_sub, sql)


def normalize_sql(sql: str, *, case_sensitive: bool = False) -> str:
    normalized = " ".join(strip_sql_comments(sql).split())
    return normalized if case_sensitive else normalized.lower()


def hash_logic(compiled_sql: str | None, *, case_sensitive: bool = False) -> str:
    return sha256_hex(normalize_sql(compiled_sql, case_sensitive=case_sensitive) if compiled_sql else "")


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def cache_path_for(context_path: Path) -> Path:
    return Path(context_path) / CACHE_RELATIVE_PATH


def load_cache(path: Path) -> HashCache:
    """Load the hash cache; a missing or corrupt file gives an empty cache."""
    path = Path(path)
    if not path.exists():
        return HashCache()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("cache root is not an object")
        return HashCache.from_dict(data)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load hash cache %s, starting empty: %s", path, e)
        return HashCache()


def save_cache(path: Path, cache: HashCache) -> HashCache:
    """Atomically rewrite the cache file, stamping ``lastSync``.

    Returns the stamped cache.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    stamped = replace(cache, last_sync=_now())
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".model-hashes.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(stamped.to_dict(), f, indent=2)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    return stamped


def clear_cache(path: Path) -> None:
    path = Path(path)
    if path.exists():
        path.unlink()


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class ChangeDetector:
    """Compares current fingerprints of a model with its cached record.

    Args:
        client: Warehouse used for the schema fingerprint.
        metadata: Project metadata used for documentation and compiled SQL.
        default_schema: Schema for bare table names.
        case_sensitive_logic: Keep identifier case in the logic hash.
    """

    def __init__(
        self,
        client: WarehouseClient,
        metadata: ProjectMetadata,
        *,
        default_schema: str = "public",
        case_sensitive_logic: bool = False,
    ):
        self.client = client
        self.metadata = metadata
        self.default_schema = default_schema
        self.case_sensitive_logic = case_sensitive_logic

    def _current_schema_hash(self, warehouse_table: str) -> str:
        schema_name, table_name = parse_table_name(warehouse_table, self.default_schema)
        return hash_schema(self.client.get_table_schema(schema_name, table_name))

    def _schema_changed(self, warehouse_table: str, cached: str) -> bool:
        try:
            return self._current_schema_hash(warehouse_table) != cached
        except BlueprintError as e:
            logger.warning("Failed to check schema for %s, treating as changed: %s", warehouse_table, e)
            return True

    def _documentation_changed(self, model_name: str, cached: str) -> bool:
        try:
            docs = self.metadata.get_model_documentation(model_name)
        except (BlueprintError, OSError) as e:
            logger.warning("Failed to check documentation for %s: %s", model_name, e)
            return False
        return hash_documentation(docs) != cached

    def _logic_changed(self, model_name: str, cached: str) -> bool:
        try:
            compiled = self.metadata.get_compiled_sql(model_name)
        except (BlueprintError, OSError) as e:
            logger.warning("Failed to check logic for %s: %s", model_name, e)
            return False
        if not compiled:
            return False
        return hash_logic(compiled, case_sensitive=self.case_sensitive_logic) != cached

    def detect_changes(self, cache: HashCache, model_name: str, warehouse_table: str) -> ChangeDetection:
        cached = cache.models.get(model_name)
        if cached is None:
            return ChangeDetection(
                model_name=model_name,
                schema_changed=True,
                documentation_changed=True,
                logic_changed=True,
                is_new=True,
                should_reprofile=True,
            )

        schema_changed = self._schema_changed(warehouse_table, cached.schema_hash)
        documentation_changed = self._documentation_changed(model_name, cached.documentation_hash)
        logic_changed = self._logic_changed(model_name, cached.logic_hash)
        return ChangeDetection(
            model_name=model_name,
            schema_changed=schema_changed,
            documentation_changed=documentation_changed,
            logic_changed=logic_changed,
            is_new=False,
            should_reprofile=schema_changed or documentation_changed or logic_changed,
        )

    def update_model_hashes(
        self,
        cache: HashCache,
        model_name: str,
        warehouse_table: str,
        profile_path: str,
    ) -> HashCache:
        """Return a new cache with fresh fingerprints for ``model_name``.

        If the schema cannot be read the cache is returned unchanged.
        """
        try:
            schema_hash = self._current_schema_hash(warehouse_table)
        except BlueprintError as e:
            logger.warning("Failed to update hashes for %s: %s", model_name, e)
            return cache

        try:
            docs = self.metadata.get_model_documentation(model_name)
        except (BlueprintError, OSError) as e:
            logger.warning("Documentation lookup failed for %s: %s", model_name, e)
            docs = None
        try:
            compiled = self.metadata.get_compiled_sql(model_name)
        except (BlueprintError, OSError) as e:
            logger.warning("Compiled SQL lookup failed for %s: %s", model_name, e)
            compiled = None

        record = ModelHashRecord(
            schema_hash=schema_hash,
            documentation_hash=hash_documentation(docs),
            logic_hash=hash_logic(compiled, case_sensitive=self.case_sensitive_logic),
            last_profiled=_now(),
            profile_path=profile_path,
            warehouse_table=warehouse_table,
        )
        return replace(cache, models={**cache.models, model_name: record})
