from __future__ import annotations

import re
from pathlib import Path

import duckdb
import pytest
import yaml
from typer.testing import CliRunner

from blueprint import console, observability
from blueprint.cli import app
from blueprint.context import manifest as manifest_module

runner = CliRunner()


def _plain(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    con = duckdb.connect(str(tmp_path / "warehouse.duckdb"))
    con.execute("CREATE TABLE customers AS SELECT range AS id FROM range(3)")
    con.execute("CREATE TABLE orders AS SELECT range AS id, range % 3 AS customer_id FROM range(9)")
    con.close()

    (tmp_path / "blueprint_project.yaml").write_text(
        yaml.safe_dump({"connection": {"type": "duckdb", "database": "warehouse.duckdb"}}),
        encoding="utf-8",
    )
    (tmp_path / "dbt_project.yml").write_text("name: shop\nversion: '1.0.0'\n", encoding="utf-8")
    models = tmp_path / "models"
    (models / "staging").mkdir(parents=True)
    (models / "staging" / "customers.sql").write_text("select * from {{ source('shop', 'customers') }}")
    (models / "orders.sql").write_text("select * from {{ ref('customers') }}")

    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("LOGFIRE_TOKEN", raising=False)
    monkeypatch.setattr(manifest_module.shutil, "which", lambda name: None)
    monkeypatch.setattr(console._CONSOLE, "width", 200)
    observability.reset()
    return tmp_path


def test_cli_lists_commands():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    output = _plain(result.output)
    for command in ("build", "sync", "ls", "status"):
        assert command in output


def test_sync_help_mentions_selection():
    result = runner.invoke(app, ["sync", "--help"])
    assert result.exit_code == 0
    assert "--select" in _plain(result.output)


def test_build_then_status(project: Path):
    result = runner.invoke(app, ["build"])
    assert result.exit_code == 0, result.output
    assert "2/2 tables profiled" in result.output
    assert (project / "agent-context" / "models" / "main_orders.md").exists()

    status = runner.invoke(app, ["status"])
    assert status.exit_code == 0
    assert "orders" in status.output
    assert "main.customers" in status.output


def test_build_twice_fails_without_force(project: Path):
    assert runner.invoke(app, ["build"]).exit_code == 0

    result = runner.invoke(app, ["build"])

    assert result.exit_code == 1
    assert "CONTEXT_BUILD_ERROR" in result.output
    assert runner.invoke(app, ["build", "--force"]).exit_code == 0


def test_sync_without_build_fails(project: Path):
    result = runner.invoke(app, ["sync"])

    assert result.exit_code == 1
    assert "blueprint build" in result.output


def test_sync_rejects_malformed_selection(project: Path):
    assert runner.invoke(app, ["build"]).exit_code == 0

    result = runner.invoke(app, ["sync", "--select", "+"])

    assert result.exit_code == 1
    assert "VALIDATION_ERROR" in result.output


def test_status_without_context(project: Path):
    result = runner.invoke(app, ["status"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_ls_resolves_selection(project: Path):
    result = runner.invoke(app, ["ls", "--select", "+orders"])

    assert result.exit_code == 0, result.output
    lines = [line for line in result.output.splitlines() if "\t" in line]
    assert lines == ["orders\torders.sql", "customers\tstaging/customers.sql"]
    assert "2 of 2 models selected" in result.output


def test_ls_exclude(project: Path):
    result = runner.invoke(app, ["ls", "--exclude", "path:staging"])

    assert result.exit_code == 0
    assert "orders\torders.sql" in result.output
    assert "staging/customers.sql" not in result.output
    assert "1 of 2 models selected" in result.output
