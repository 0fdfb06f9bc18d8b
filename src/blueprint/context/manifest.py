"""dbt project metadata: manifest, schema.yml docs and compiled SQL.

``DbtIntegration`` is the only place that touches dbt's own artifacts
(``target/manifest.json``, ``target/compiled/``) or shells out to the ``dbt``
executable.  Everything else consumes it through ``ProjectMetadata``.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from blueprint.context.scanner import SourceRef
from blueprint.errors import DbtProjectError

logger = logging.getLogger(__name__)

SQL_EXCERPT_CHARS = 500
SCHEMA_FILENAMES = ("schema.yml", "_schema.yml")


@dataclass(frozen=True)
class ColumnDoc:
    name: str
    description: str | None = None
    tests: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ModelDocumentation:
    """Model and column descriptions from a ``schema.yml``."""
    description: str | None = None
    columns: list[ColumnDoc] = field(default_factory=list)


@dataclass(frozen=True)
class DbtModelMetadata:
    """What the manifest knows about one model."""
    unique_id: str
    name: str
    materialized: str
    database: str | None = None
    schema: str | None = None
    alias: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    columns: list[ColumnDoc] = field(default_factory=list)
    upstream_models: list[str] = field(default_factory=list)
    sources: list[SourceRef] = field(default_factory=list)
    compiled_sql: str | None = None

    def column(self, name: str) -> ColumnDoc | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None


class ProjectMetadata(Protocol):
    """Read-only model metadata lookups used by sync and change detection."""

    def get_model_table_name(self, model_name: str) -> str | None: ...

    def get_model_documentation(self, model_name: str) -> ModelDocumentation | None: ...

    def get_compiled_sql(self, model_name: str) -> str | None: ...


def _find_files(root: Path, filename: str) -> list[Path]:
    if not root.is_dir():
        return []
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        if filename in filenames:
            found.append(Path(dirpath) / filename)
    return found


class DbtIntegration:
    """Access to a dbt project's manifest, docs and compiled SQL.

    Args:
        project_path: dbt project root (holds ``dbt_project.yml``).
        target: Optional ``--target`` passed to every dbt command.
        models_dir: Directory holding models and ``schema.yml`` files.
    """

    def __init__(self, project_path: Path, target: str | None = None, models_dir: str = "models"):
        self.project_path = Path(project_path)
        self.target = target
        self.models_dir = models_dir
        self._manifest: dict[str, Any] | None = None

    @property
    def manifest_path(self) -> Path:
        return self.project_path / "target" / "manifest.json"

    # ------------------------------------------------------------------
    # dbt executable
    # ------------------------------------------------------------------

    @staticmethod
    def check_dbt_installed() -> bool:
        """True if a ``dbt`` executable is on PATH."""
        return shutil.which("dbt") is not None

    def run_dbt_command(self, args: list[str]) -> str:
        """Run ``dbt <args>`` in the project directory.

        Raises:
            DbtProjectError: If dbt is missing or exits non-zero.
        """
        if not self.check_dbt_installed():
            raise DbtProjectError("dbt executable not found on PATH")
        cmd = ["dbt", *args]
        if self.target:
            cmd += ["--target", self.target]
        logger.info("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, cwd=self.project_path, check=True, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise DbtProjectError("dbt executable not found on PATH", cause=e) from e
        except subprocess.CalledProcessError as e:
            output = (e.stdout or "") + (e.stderr or "")
            raise DbtProjectError(f"dbt command failed: {' '.join(cmd)}: {output.strip()[:500]}", cause=e) from e
        if result.stdout:
            logger.debug("dbt output: %s", result.stdout[:200])
        return result.stdout

    def ensure_manifest(self) -> bool:
        """Run ``dbt parse`` when ``target/manifest.json`` is missing.

        Returns True if a manifest is available afterwards.
        """
        if self.manifest_path.exists():
            return True
        if not self.check_dbt_installed():
            logger.warning("dbt not found on PATH, cannot run dbt parse to generate manifest")
            return False
        logger.info("Running dbt parse to generate manifest")
        try:
            self.run_dbt_command(["parse"])
        except DbtProjectError as e:
            logger.warning("Failed to run dbt parse: %s", e)
            return False
        self._manifest = None
        return self.manifest_path.exists()

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def load_manifest(self) -> dict[str, Any] | None:
        """Parsed manifest, or None if absent or unreadable."""
        if self._manifest is not None:
            return self._manifest
        if not self.manifest_path.exists():
            return None
        try:
            with open(self.manifest_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Failed to load manifest %s: %s", self.manifest_path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Manifest %s is not a JSON object", self.manifest_path)
            return None
        self._manifest = data
        return data

    def _model_nodes(self) -> list[dict[str, Any]]:
        manifest = self.load_manifest()
        if not manifest:
            return []
        return [n for n in (manifest.get("nodes") or {}).values() if n.get("resource_type") == "model"]

    def _find_model_node(self, model_name: str) -> dict[str, Any] | None:
        for node in self._model_nodes():
            if node.get("name") == model_name or node.get("alias") == model_name:
                return node
        return None

    def get_model_table_name(self, model_name: str) -> str | None:
        """Fully-qualified ``database.schema.alias`` for a model, or None."""
        node = self._find_model_node(model_name)
        if node is None:
            logger.debug("Model %r not found in manifest", model_name)
            return None
        alias = node.get("alias") or node.get("name")
        parts = [p for p in (node.get("database"), node.get("schema"), alias) if p]
        table_name = ".".join(parts)
        logger.debug("Resolved %r to %r", model_name, table_name)
        return table_name

    def get_model_metadata(self, model_name: str) -> DbtModelMetadata | None:
        """Manifest metadata for one model, with a compiled SQL excerpt."""
        node = self._find_model_node(model_name)
        if node is None:
            return None
        manifest = self.load_manifest() or {}
        nodes = manifest.get("nodes") or {}
        manifest_sources = manifest.get("sources") or {}
        depends_on = (node.get("depends_on") or {}).get("nodes") or []

        upstream = [
            str((nodes.get(uid) or {}).get("name") or uid)
            for uid in depends_on
            if uid.startswith("model.")
        ]
        sources = []
        for uid in depends_on:
            if not uid.startswith("source."):
                continue
            src = manifest_sources.get(uid) or {}
            sources.append(SourceRef(
                source_name=str(src.get("source_name") or "unknown"),
                table_name=str(src.get("name") or "unknown"),
            ))

        columns = [
            ColumnDoc(
                name=str(col.get("name") or key),
                description=col.get("description") or None,
                tests=list(col.get("tags") or []),
            )
            for key, col in (node.get("columns") or {}).items()
        ]

        compiled = self.get_compiled_sql(model_name) or node.get("compiled_code")
        if compiled and len(compiled) > SQL_EXCERPT_CHARS:
            compiled = compiled[:SQL_EXCERPT_CHARS] + "\n-- ... (truncated)"

        return DbtModelMetadata(
            unique_id=str(node.get("unique_id") or ""),
            name=str(node.get("name")),
            materialized=str((node.get("config") or {}).get("materialized") or "view"),
            database=node.get("database"),
            schema=node.get("schema"),
            alias=node.get("alias"),
            description=node.get("description") or None,
            tags=list(node.get("tags") or []),
            columns=columns,
            upstream_models=upstream,
            sources=sources,
            compiled_sql=compiled or None,
        )

    # ------------------------------------------------------------------
    # Compiled SQL
    # ------------------------------------------------------------------

    def find_compiled_file(self, model_name: str) -> Path | None:
        matches = _find_files(self.project_path / "target" / "compiled", f"{model_name}.sql")
        return matches[0] if matches else None

    def get_compiled_sql(self, model_name: str) -> str | None:
        """Compiled SQL for a model, compiling it on demand once if needed."""
        path = self.find_compiled_file(model_name)
        if path is None:
            try:
                self.run_dbt_command(["compile", "--select", model_name])
            except DbtProjectError as e:
                logger.debug("On-demand compile of %s failed: %s", model_name, e)
                return None
            path = self.find_compiled_file(model_name)
            if path is None:
                return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read compiled SQL %s: %s", path, e)
            return None

    # ------------------------------------------------------------------
    # schema.yml documentation
    # ------------------------------------------------------------------

    def get_model_documentation(self, model_name: str) -> ModelDocumentation | None:
        """Description and column docs from the first ``schema.yml`` declaring the model."""
        models_path = self.project_path / self.models_dir
        yaml_files: list[Path] = []
        for filename in SCHEMA_FILENAMES:
            yaml_files.extend(_find_files(models_path, filename))

        for yaml_file in yaml_files:
            try:
                with open(yaml_file, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
                logger.debug("Skipping unreadable %s: %s", yaml_file, e)
                continue
            if not isinstance(data, dict):
                continue
            for model in data.get("models") or []:
                if not isinstance(model, dict) or model.get("name") != model_name:
                    continue
                return ModelDocumentation(
                    description=model.get("description") or None,
                    columns=[
                        ColumnDoc(name=str(col.get("name")), description=col.get("description") or None)
                        for col in model.get("columns") or []
                        if isinstance(col, dict)
                    ],
                )
        return None


def read_dbt_project(project_path: Path) -> dict[str, Any]:
    """Parsed ``dbt_project.yml`` or an empty dict."""
    path = Path(project_path) / "dbt_project.yml"
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        logger.warning("Could not read %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}
