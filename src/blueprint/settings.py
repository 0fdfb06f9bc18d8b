"""Configuration for blueprint.

Loads configuration from:
1. blueprint_project.yaml (LLM, warehouse connection, company context)
2. Environment variables (.env)
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from blueprint.errors import ConfigurationError

CONFIG_FILENAME = "blueprint_project.yaml"


@dataclass(frozen=True)
class LLMConfig:
    """Generative-text settings used for profile enrichment.

    An empty ``profiling_model`` disables enrichment; every artifact is then
    rendered from the deterministic template.
    """
    provider: str = "anthropic"
    profiling_model: str = ""
    max_tokens: int = 4096
    temperature: float = 0.7
    summary_max_tokens: int = 2048
    modelling_max_tokens: int = 3072

    @property
    def enabled(self) -> bool:
        return bool(self.profiling_model)


@dataclass(frozen=True)
class AdvancedConfig:
    """Technical settings (hidden from analyst-facing config)."""
    log_level: str = "INFO"
    context_dir: str = "agent-context"
    models_dir: str = "models"
    default_schema: str = "public"
    dbt_target: str | None = None
    case_sensitive_logic_hash: bool = False  # True = identifier case changes count as logic changes


@dataclass(frozen=True)
class CompanyContext:
    """Business context passed to the LLM for summaries and profiles."""
    name: str | None = None
    industry: str | None = None
    websites: list[str] = field(default_factory=list)
    context: str | None = None
    key_metrics: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.industry or self.websites or self.context or self.key_metrics)


@dataclass(frozen=True)
class Settings:
    """Complete blueprint configuration."""
    # Core paths
    project_root: Path
    dbt_project_path: Path

    # Connection (inline dict from blueprint_project.yaml)
    connection: dict[str, Any]

    # Configuration objects
    llm: LLMConfig
    advanced: AdvancedConfig
    company: CompanyContext

    @property
    def context_path(self) -> Path:
        return self.project_root / self.advanced.context_dir


def _find_project_root() -> Path:
    """Find project root by looking for blueprint config, dbt_project.yml or .env."""
    current = Path.cwd().resolve()

    for path in [current] + list(current.parents):
        if (path / CONFIG_FILENAME).exists():
            return path
        if (path / "dbt_project.yml").exists():
            return path
        if (path / ".env").exists():
            return path

    return current


def _load_yaml_config(path: Path) -> dict[str, Any]:
    """Load and parse YAML config file."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path.name}: {e}", cause=e) from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain a mapping at the top level")
    return data


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


def load_settings(project_root: Path | None = None) -> Settings:
    """Load blueprint configuration.

    Process:
    1. Find project root (unless given)
    2. Load .env file
    3. Load blueprint_project.yaml (if exists)
    4. Resolve paths and connection
    5. Build Settings object
    """
    # 1. Find project root
    if project_root is None:
        project_root = _find_project_root()
    project_root = Path(project_root).resolve()

    # 2. Load .env file
    env_file = project_root / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    # 3. Load blueprint_project.yaml
    config = _load_yaml_config(project_root / CONFIG_FILENAME)

    # 4. LLM config
    llm_raw = config.get("llm") or {}
    llm = LLMConfig(
        provider=str(llm_raw.get("provider") or "anthropic").strip().lower(),
        profiling_model=str(llm_raw.get("profiling_model") or "").strip(),
        max_tokens=int(llm_raw.get("max_tokens", 4096)),
        temperature=float(llm_raw.get("temperature", 0.7)),
        summary_max_tokens=int(llm_raw.get("summary_max_tokens", 2048)),
        modelling_max_tokens=int(llm_raw.get("modelling_max_tokens", 3072)),
    )

    # 5. Advanced config (env overrides win)
    advanced_raw = config.get("advanced") or {}
    dbt_target = os.getenv("BLUEPRINT_DBT_TARGET") or advanced_raw.get("dbt_target")
    advanced = AdvancedConfig(
        log_level=str(os.getenv("BLUEPRINT_LOG_LEVEL") or advanced_raw.get("log_level", "INFO")),
        context_dir=str(advanced_raw.get("context_dir") or "agent-context"),
        models_dir=str(advanced_raw.get("models_dir") or "models"),
        default_schema=str(advanced_raw.get("default_schema") or "public"),
        dbt_target=str(dbt_target) if dbt_target else None,
        case_sensitive_logic_hash=bool(advanced_raw.get("case_sensitive_logic_hash", False)),
    )

    # 6. Company context
    company_raw = config.get("company") or {}
    company = CompanyContext(
        name=company_raw.get("name"),
        industry=company_raw.get("industry"),
        websites=_string_list(company_raw.get("websites")),
        context=company_raw.get("context"),
        key_metrics=_string_list(company_raw.get("key_metrics")),
    )

    # 7. Connection (inline in blueprint_project.yaml)
    connection = config.get("connection")
    if not connection or not isinstance(connection, dict):
        connection = {"type": "duckdb", "database": "data/warehouse.duckdb"}
    else:
        connection = dict(connection)
    if "database" in connection and isinstance(connection["database"], str):
        db_path = Path(connection["database"])
        if connection.get("type", "duckdb") == "duckdb" and connection["database"] != ":memory:" and not db_path.is_absolute():
            connection = {**connection, "database": str(project_root / db_path)}

    # 8. dbt project path (defaults to the project root itself)
    paths_config = config.get("paths") or {}
    dbt_path = Path(paths_config.get("dbt_project") or ".")
    if not dbt_path.is_absolute():
        dbt_path = project_root / dbt_path
    dbt_path = dbt_path.resolve()

    return Settings(
        project_root=project_root,
        dbt_project_path=dbt_path,
        connection=connection,
        llm=llm,
        advanced=advanced,
        company=company,
    )
