from __future__ import annotations

import json
import logging
from pathlib import Path

import duckdb
import pytest

from blueprint.context import builder as builder_module
from blueprint.context import manifest as manifest_module
from blueprint.context.builder import ContextBuilder
from blueprint.context.changes import load_cache
from blueprint.context.manifest import DbtIntegration
from blueprint.errors import ContextBuildError, ValidationError
from blueprint.settings import AdvancedConfig, CompanyContext, LLMConfig, Settings
from blueprint.warehouse.duckdb_client import DuckDBWarehouse


def _model_node(name: str) -> dict:
    return {
        "unique_id": f"model.shop.{name}",
        "name": name,
        "resource_type": "model",
        "database": "memory",
        "schema": "main",
        "alias": name,
        "config": {"materialized": "table"},
    }


@pytest.fixture(autouse=True)
def no_dbt(monkeypatch):
    monkeypatch.setattr(manifest_module.shutil, "which", lambda name: None)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    models = tmp_path / "models"
    (models / "marts").mkdir(parents=True)
    (models / "marts" / "orders.sql").write_text("select * from {{ ref('customers') }}")
    (models / "customers.sql").write_text("select * from {{ source('shop', 'customers') }}")
    (tmp_path / "dbt_project.yml").write_text("name: shop\nversion: '1.0.0'\nprofile: shop\n")
    (tmp_path / "target").mkdir()
    manifest = {"nodes": {f"model.shop.{n}": _model_node(n) for n in ("orders", "customers")}}
    (tmp_path / "target" / "manifest.json").write_text(json.dumps(manifest))
    return tmp_path


@pytest.fixture
def con():
    con = duckdb.connect(":memory:")
    con.execute("CREATE TABLE customers AS SELECT range AS id FROM range(3)")
    con.execute("CREATE TABLE orders AS SELECT range AS id, range % 3 AS customer_id FROM range(9)")
    return con


@pytest.fixture
def builder(project: Path, con) -> ContextBuilder:
    return ContextBuilder(
        project,
        project / "agent-context",
        DuckDBWarehouse(connection=con),
        DbtIntegration(project),
        default_schema="main",
    )


def _documents(context: Path) -> dict[str, bytes]:
    return {
        str(p.relative_to(context)): p.read_bytes()
        for p in sorted(context.rglob("*.md"))
    }


def test_build_writes_full_context(builder: ContextBuilder):
    summary = builder.build()

    context = builder.context_path
    assert sorted(_documents(context)) == [
        "modelling.md",
        "models/main_customers.md",
        "models/main_orders.md",
        "summary.md",
        "system_prompt.md",
    ]
    assert summary.total == 2
    assert summary.fallback == 2
    assert "- **Project Name**: shop" in (context / "summary.md").read_text()
    assert "`customers`" in (context / "modelling.md").read_text()

    cache = load_cache(builder.cache_path)
    assert sorted(cache.models) == ["customers", "orders"]
    assert cache.models["orders"].warehouse_table == "memory.main.orders"
    assert cache.models["orders"].profile_path == "models/main_orders.md"
    assert cache.last_sync is not None


def test_build_refuses_existing_context(builder: ContextBuilder):
    builder.context_path.mkdir()

    with pytest.raises(ContextBuildError, match="Use --force"):
        builder.build()


def test_forced_rebuilds_are_identical(builder: ContextBuilder):
    builder.build()
    first = _documents(builder.context_path)

    builder.build(force=True)

    assert _documents(builder.context_path) == first


def test_update_requires_existing_context(builder: ContextBuilder):
    with pytest.raises(ContextBuildError, match="blueprint build"):
        builder.update()


def test_update_skips_unchanged_models(builder: ContextBuilder):
    builder.build()

    summary = builder.update(select="orders")

    assert summary.skipped == 1
    assert summary.total == 1
    assert summary.profiled == 0


def test_force_reprofiles_unchanged_models(builder: ContextBuilder):
    builder.build()
    (builder.profiles_path / "main_orders.md").unlink()

    summary = builder.update(select="orders", force=True)

    assert summary.skipped == 0
    assert summary.profiled == 1
    assert (builder.profiles_path / "main_orders.md").exists()
    assert sorted(load_cache(builder.cache_path).models) == ["customers", "orders"]


def test_schema_change_triggers_reprofile(builder: ContextBuilder, con):
    builder.build()
    con.execute("ALTER TABLE orders ADD COLUMN status VARCHAR")

    summary = builder.update(select="+orders")

    # customers is unchanged and skipped; orders gained a column
    assert summary.skipped == 1
    assert summary.profiled == 1
    assert "status" in (builder.profiles_path / "main_orders.md").read_text()


def test_unknown_selection_profiles_everything(builder: ContextBuilder, caplog):
    builder.build()

    with caplog.at_level(logging.WARNING, logger="blueprint.context.builder"):
        summary = builder.update(select="unknown_model")

    assert summary.total == 2
    assert summary.profiled == 2
    assert "No valid models found, profiling all tables" in caplog.text


def test_profiles_only_leaves_documents_alone(builder: ContextBuilder):
    builder.build()
    (builder.context_path / "summary.md").unlink()

    builder.update(profiles_only=True)
    assert not (builder.context_path / "summary.md").exists()

    builder.update()
    assert (builder.context_path / "summary.md").exists()


def test_malformed_selection_raises_before_writing(builder: ContextBuilder):
    builder.build()
    summary_md = builder.context_path / "summary.md"
    summary_md.write_text("# Edited by hand")

    with pytest.raises(ValidationError):
        builder.update(select="+")
    with pytest.raises(ValidationError):
        builder.update(select="orders", exclude="+")

    assert summary_md.read_text() == "# Edited by hand"


def test_non_utf8_compiled_sql_does_not_abort_build(builder: ContextBuilder, project: Path):
    compiled = project / "target" / "compiled" / "shop" / "models"
    compiled.mkdir(parents=True)
    (compiled / "customers.sql").write_bytes(b"select 1 as id -- caf\xe9\n")

    summary = builder.build()

    assert summary.total == 2
    assert summary.failed == 0
    assert (builder.profiles_path / "main_customers.md").exists()
    assert (builder.profiles_path / "main_orders.md").exists()
    assert sorted(load_cache(builder.cache_path).models) == ["customers", "orders"]

    assert builder.update(select="customers").skipped == 1


def test_forced_build_clears_previous_hashes(builder: ContextBuilder, monkeypatch):
    builder.build()
    assert builder.cache_path.exists()

    def broken_scan(*args, **kwargs):
        raise ValidationError("models directory vanished")

    monkeypatch.setattr(builder_module, "scan_models", broken_scan)

    with pytest.raises(ValidationError):
        builder.build(force=True)
    assert not builder.cache_path.exists()


def _settings(project: Path, llm: LLMConfig) -> Settings:
    return Settings(
        project_root=project,
        dbt_project_path=project,
        connection={"type": "duckdb", "database": ":memory:"},
        llm=llm,
        advanced=AdvancedConfig(default_schema="main"),
        company=CompanyContext(name="Acme"),
    )


def test_from_settings_enables_llm_only_with_model(project: Path, con):
    client = DuckDBWarehouse(connection=con)

    plain = ContextBuilder.from_settings(_settings(project, LLMConfig()), client)
    enriched = ContextBuilder.from_settings(
        _settings(project, LLMConfig(profiling_model="claude-3-5-haiku-20241022")), client,
    )

    assert plain.enricher is None
    assert enriched.enricher is not None
    assert enriched.enricher.client.model_id == "claude-3-5-haiku-20241022"
    assert enriched.context_path == project / "agent-context"
    assert enriched.default_schema == "main"
