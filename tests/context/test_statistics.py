from __future__ import annotations

import duckdb
import pytest

from blueprint.context.statistics import (
    StatisticsGatherer,
    is_numeric_type,
    is_temporal_type,
    normalize_type,
)
from blueprint.errors import WarehouseQueryError
from blueprint.warehouse import ColumnInfo, TableSchema
from blueprint.warehouse.duckdb_client import DuckDBWarehouse


class FakeWarehouse:
    """Records queries; raises for any SQL containing a failing fragment."""

    def __init__(self, schema: TableSchema, rows: dict[str, list[dict]], fail_on: tuple[str, ...] = ()):
        self.schema = schema
        self.rows = rows
        self.fail_on = fail_on
        self.queries: list[str] = []

    def query(self, sql):
        self.queries.append(sql)
        if any(fragment in sql for fragment in self.fail_on):
            raise WarehouseQueryError("boom")
        for fragment, rows in self.rows.items():
            if fragment in sql:
                return rows
        return []

    def get_table_schema(self, schema_name, table_name):
        return self.schema

    def list_tables(self, schema_name=None):
        return [(self.schema.schema_name, self.schema.table_name)]

    def close(self):
        pass


def test_type_lookup_normalizes_parameters():
    assert normalize_type("DECIMAL(18, 2)") == "decimal"
    assert is_numeric_type("BIGINT")
    assert is_numeric_type("numeric(10,2)")
    assert is_temporal_type("TIMESTAMP WITH TIME ZONE")
    assert is_temporal_type("date")
    assert not is_numeric_type("VARCHAR")
    # substring matches are not enough
    assert not is_numeric_type("interval")
    assert not is_temporal_type("datetime_label_text")


def test_query_budget_per_column():
    schema = TableSchema(
        schema_name="main",
        table_name="orders",
        columns=[
            ColumnInfo("id", "INTEGER", False),
            ColumnInfo("status", "VARCHAR"),
            ColumnInfo("ordered_at", "TIMESTAMP"),
        ],
        row_count=3,
    )
    fake = FakeWarehouse(schema, {})

    StatisticsGatherer(fake).gather_table_stats("main", "orders")

    aggregate = [q for q in fake.queries if "COUNT(DISTINCT" in q]
    min_max = [q for q in fake.queries if q.startswith("SELECT MIN(")]
    samples = [q for q in fake.queries if "GROUP BY" in q]
    assert len(aggregate) == 3
    # id + ordered_at, plus the time-range query on ordered_at
    assert len(min_max) == 3
    assert len(samples) == 3
    assert len(fake.queries) == 9
    assert all('"main"."orders"' in q for q in fake.queries)


def test_failed_query_only_drops_its_statistic():
    schema = TableSchema("main", "orders", [ColumnInfo("amount", "DOUBLE")], row_count=2)
    fake = FakeWarehouse(
        schema,
        {
            "COUNT(DISTINCT": [{"distinct_count": 2, "total_count": 4, "null_count": 1}],
            "GROUP BY": [{"value": 9.5, "frequency": 2}],
        },
        fail_on=("MIN(",),
    )

    stats = StatisticsGatherer(fake).gather_table_stats("main", "orders")

    column = stats.columns[0]
    assert column.distinct_count == 2
    assert column.null_percentage == pytest.approx(25.0)
    assert column.min_value is None and column.max_value is None
    assert column.sample_values == [9.5]
    assert stats.time_range is None


def test_schema_failure_propagates():
    class Broken(FakeWarehouse):
        def get_table_schema(self, schema_name, table_name):
            raise WarehouseQueryError("Table not found")

    with pytest.raises(WarehouseQueryError):
        StatisticsGatherer(Broken(TableSchema("a", "b"), {})).gather_table_stats("a", "b")


def test_identifiers_are_quoted():
    schema = TableSchema('we"ird', "t", [ColumnInfo('col"x', "VARCHAR")])
    fake = FakeWarehouse(schema, {})

    StatisticsGatherer(fake).gather_table_stats('we"ird', "t")

    assert all('"we""ird"."t"' in q for q in fake.queries)
    assert any('"col""x"' in q for q in fake.queries)


def test_gather_against_duckdb():
    con = duckdb.connect(":memory:")
    con.execute(
        """
        CREATE TABLE orders AS SELECT * FROM (VALUES
            (1, 'placed', 10.0, DATE '2024-01-01'),
            (2, 'shipped', 20.0, DATE '2024-02-15'),
            (3, 'shipped', NULL, DATE '2024-03-31'),
            (4, NULL, 5.5, DATE '2024-03-01')
        ) AS t(id, status, amount, ordered_on)
        """
    )
    warehouse = DuckDBWarehouse(connection=con)

    stats = StatisticsGatherer(warehouse).gather_table_stats("main", "orders")

    assert stats.row_count == 4
    by_name = {c.name: c for c in stats.columns}
    assert list(by_name) == ["id", "status", "amount", "ordered_on"]
    assert by_name["id"].distinct_count == 4
    assert by_name["id"].min_value == 1 and by_name["id"].max_value == 4
    assert by_name["status"].null_percentage == pytest.approx(25.0)
    assert by_name["status"].sample_values[0] == "shipped"
    assert by_name["status"].min_value is None
    assert float(by_name["amount"].max_value) == 20.0
    assert stats.time_range is not None
    assert stats.time_range.min_date == "2024-01-01"
    assert stats.time_range.max_date == "2024-03-31"
