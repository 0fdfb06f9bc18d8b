from __future__ import annotations

import json
from pathlib import Path

import pytest

from blueprint.context.changes import (
    ChangeDetector,
    HashCache,
    ModelHashRecord,
    cache_path_for,
    clear_cache,
    hash_documentation,
    hash_logic,
    hash_schema,
    load_cache,
    normalize_sql,
    save_cache,
    strip_sql_comments,
)
from blueprint.context.manifest import ColumnDoc, ModelDocumentation
from blueprint.errors import DbtProjectError, WarehouseQueryError
from blueprint.warehouse import ColumnInfo, TableSchema


class FakeWarehouse:
    def __init__(self, schemas: dict[tuple[str, str], TableSchema]):
        self.schemas = schemas

    def query(self, sql):
        return []

    def get_table_schema(self, schema_name, table_name):
        try:
            return self.schemas[(schema_name, table_name)]
        except KeyError:
            raise WarehouseQueryError(f"Table not found: {schema_name}.{table_name}")

    def list_tables(self, schema_name=None):
        return list(self.schemas)

    def close(self):
        pass


class FakeMetadata:
    def __init__(self, docs=None, compiled=None, broken=False):
        self.docs = docs or {}
        self.compiled = compiled or {}
        self.broken = broken

    def get_model_table_name(self, model_name):
        return f"analytics.{model_name}"

    def get_model_documentation(self, model_name):
        if self.broken:
            raise DbtProjectError("docs unavailable")
        return self.docs.get(model_name)

    def get_compiled_sql(self, model_name):
        if self.broken:
            raise DbtProjectError("dbt compile failed")
        return self.compiled.get(model_name)


def _orders_schema(*columns: ColumnInfo) -> TableSchema:
    return TableSchema("analytics", "orders", list(columns or [ColumnInfo("id", "INTEGER", False)]))


def _detector(warehouse, metadata, **kwargs) -> ChangeDetector:
    return ChangeDetector(warehouse, metadata, default_schema="analytics", **kwargs)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def test_schema_hash_is_sensitive_to_column_order():
    a = ColumnInfo("id", "INTEGER", False)
    b = ColumnInfo("amount", "DOUBLE")

    assert hash_schema(_orders_schema(a, b)) == hash_schema(_orders_schema(a, b))
    assert hash_schema(_orders_schema(a, b)) != hash_schema(_orders_schema(b, a))
    assert hash_schema(_orders_schema(a)) != hash_schema(_orders_schema(ColumnInfo("id", "INTEGER", True)))


def test_missing_documentation_hashes_like_empty():
    assert hash_documentation(None) == hash_documentation(ModelDocumentation())
    assert hash_documentation(ModelDocumentation(description="")) == hash_documentation(None)
    documented = ModelDocumentation(description="Orders", columns=[ColumnDoc("id", "Primary key")])
    assert hash_documentation(documented) != hash_documentation(None)


def test_comments_stripped_but_string_literals_kept():
    sql = "select '--not a comment' as a, /* note */ b -- trailing\nfrom t"

    assert strip_sql_comments(sql).split() == ["select", "'--not", "a", "comment'", "as", "a,", "b", "from", "t"]


def test_logic_hash_ignores_whitespace_and_comments():
    first = "SELECT id,\n    amount\nFROM orders -- all rows"
    second = "select id, amount /* same */ from orders"

    assert hash_logic(first) == hash_logic(second)
    assert hash_logic(first) != hash_logic("select id from orders")
    assert hash_logic(None) == hash_logic("")


def test_logic_hash_case_folding_is_switchable():
    upper = "SELECT Id FROM Orders"
    lower = "select id from orders"

    assert hash_logic(upper) == hash_logic(lower)
    assert hash_logic(upper, case_sensitive=True) != hash_logic(lower, case_sensitive=True)
    assert normalize_sql("SELECT  'A'", case_sensitive=True) == "SELECT 'A'"


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _record(**overrides) -> ModelHashRecord:
    values = dict(
        schema_hash="s",
        documentation_hash="d",
        logic_hash="l",
        last_profiled="2024-01-01T00:00:00+00:00",
        profile_path="models/analytics_orders.md",
        warehouse_table="db.analytics.orders",
    )
    values.update(overrides)
    return ModelHashRecord(**values)


def test_save_and_load_cache(tmp_path: Path):
    path = cache_path_for(tmp_path / "agent-context")
    cache = HashCache(models={"orders": _record()})

    stamped = save_cache(path, cache)

    assert stamped.last_sync is not None
    assert cache.last_sync is None
    data = json.loads(path.read_text())
    assert data["version"] == "1.0"
    assert data["models"]["orders"]["warehouseTable"] == "db.analytics.orders"
    loaded = load_cache(path)
    assert loaded.models == {"orders": _record()}
    assert loaded.last_sync == stamped.last_sync
    assert [p.name for p in path.parent.iterdir()] == ["model-hashes.json"]


def test_corrupt_or_missing_cache_loads_empty(tmp_path: Path, caplog):
    path = tmp_path / "model-hashes.json"
    assert load_cache(path) == HashCache()

    path.write_text("{not json")
    assert load_cache(path) == HashCache()
    assert "Failed to load hash cache" in caplog.text

    path.write_text("[1, 2]")
    assert load_cache(path).models == {}


def test_clear_cache(tmp_path: Path):
    path = tmp_path / "model-hashes.json"
    save_cache(path, HashCache())

    clear_cache(path)
    clear_cache(path)

    assert not path.exists()


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse({("analytics", "orders"): _orders_schema()})


def test_unknown_model_is_new(warehouse):
    detection = _detector(warehouse, FakeMetadata()).detect_changes(HashCache(), "orders", "analytics.orders")

    assert detection.is_new
    assert detection.should_reprofile
    assert detection.schema_changed and detection.documentation_changed and detection.logic_changed


def test_unchanged_model_is_not_reprofiled(warehouse):
    metadata = FakeMetadata(
        docs={"orders": ModelDocumentation(description="Orders")},
        compiled={"orders": "select * from raw.orders"},
    )
    detector = _detector(warehouse, metadata)
    cache = detector.update_model_hashes(HashCache(), "orders", "analytics.orders", "models/analytics_orders.md")

    detection = detector.detect_changes(cache, "orders", "analytics.orders")

    assert not detection.is_new
    assert not detection.should_reprofile


def test_each_fingerprint_detects_its_change(warehouse):
    metadata = FakeMetadata(compiled={"orders": "select 1"})
    detector = _detector(warehouse, metadata)
    cache = detector.update_model_hashes(HashCache(), "orders", "analytics.orders", "p")

    metadata.compiled["orders"] = "select 2"
    logic = detector.detect_changes(cache, "orders", "analytics.orders")
    assert logic.logic_changed and not logic.schema_changed and not logic.documentation_changed

    metadata.compiled["orders"] = "select 1"
    metadata.docs["orders"] = ModelDocumentation(description="now documented")
    docs = detector.detect_changes(cache, "orders", "analytics.orders")
    assert docs.documentation_changed and not docs.logic_changed

    metadata.docs.clear()
    warehouse.schemas[("analytics", "orders")] = _orders_schema(
        ColumnInfo("id", "INTEGER", False), ColumnInfo("status", "VARCHAR"),
    )
    schema = detector.detect_changes(cache, "orders", "analytics.orders")
    assert schema.schema_changed and schema.should_reprofile


def test_schema_failure_counts_as_changed(warehouse, caplog):
    detector = _detector(warehouse, FakeMetadata())
    cache = detector.update_model_hashes(HashCache(), "orders", "analytics.orders", "p")
    warehouse.schemas.clear()

    detection = detector.detect_changes(cache, "orders", "analytics.orders")

    assert detection.schema_changed
    assert detection.should_reprofile
    assert "treating as changed" in caplog.text


def test_docs_and_logic_failures_count_as_unchanged(warehouse):
    metadata = FakeMetadata(compiled={"orders": "select 1"})
    detector = _detector(warehouse, metadata)
    cache = detector.update_model_hashes(HashCache(), "orders", "analytics.orders", "p")
    metadata.broken = True

    detection = detector.detect_changes(cache, "orders", "analytics.orders")

    assert not detection.documentation_changed
    assert not detection.logic_changed
    assert not detection.should_reprofile


def test_update_returns_new_cache(warehouse):
    detector = _detector(warehouse, FakeMetadata())
    original = HashCache()

    updated = detector.update_model_hashes(original, "orders", "analytics.orders", "models/analytics_orders.md")

    assert original.models == {}
    record = updated.models["orders"]
    assert record.warehouse_table == "analytics.orders"
    assert record.profile_path == "models/analytics_orders.md"
    assert record.documentation_hash == hash_documentation(None)
    assert record.logic_hash == hash_logic(None)


def test_update_keeps_cache_when_schema_unreadable(warehouse):
    detector = _detector(warehouse, FakeMetadata())
    cache = HashCache(models={"orders": _record()})

    assert detector.update_model_hashes(cache, "orders", "analytics.missing", "p") is cache
