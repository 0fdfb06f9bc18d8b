"""Column and table statistics for warehouse profiling.

For one table the gatherer runs a fixed, read-only set of queries:

- per column: one aggregate (distinct count, total, null count)
- per numeric/temporal column: one MIN/MAX
- per column: one top-5 most frequent values
- per table: one time range on the first temporal column

A failed query is logged and only the statistic it would have produced is
left as None.  Schema lookup failures propagate to the caller.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from blueprint.errors import WarehouseQueryError
from blueprint.warehouse import ColumnInfo, WarehouseClient, quote_identifier

logger = logging.getLogger(__name__)

SAMPLE_LIMIT = 5

NUMERIC_TYPES = frozenset({
    "int", "integer", "bigint", "smallint", "tinyint", "hugeint", "ubigint",
    "uinteger", "usmallint", "utinyint", "int2", "int4", "int8", "int16",
    "int32", "int64", "decimal", "numeric", "number", "float", "float4",
    "float8", "float32", "float64", "double", "double precision", "real",
})

TEMPORAL_TYPES = frozenset({
    "date", "time", "timestamp", "datetime", "timestamptz", "timetz",
    "timestamp with time zone", "timestamp without time zone",
    "time with time zone", "time without time zone",
    "timestamp_ntz", "timestamp_ltz", "timestamp_tz",
    "timestamp_s", "timestamp_ms", "timestamp_ns",
})

_TYPE_PARAMS = re.compile(r"\(.*\)")


def normalize_type(type_name: str) -> str:
    """Lowercase a type name and drop precision/length parameters."""
    return " ".join(_TYPE_PARAMS.sub("", type_name).lower().split())


def is_numeric_type(type_name: str) -> bool:
    return normalize_type(type_name) in NUMERIC_TYPES


def is_temporal_type(type_name: str) -> bool:
    return normalize_type(type_name) in TEMPORAL_TYPES


@dataclass
class ColumnStatistics:
    name: str
    type: str
    nullable: bool = True
    distinct_count: int | None = None
    null_percentage: float | None = None
    min_value: Any = None
    max_value: Any = None
    sample_values: list[Any] | None = None


@dataclass(frozen=True)
class TimeRange:
    min_date: str
    max_date: str


@dataclass
class TableStatisticsProfile:
    """Everything observed about one table in a single profiling pass."""
    schema_name: str
    table_name: str
    row_count: int | None = None
    size_in_bytes: int | None = None
    columns: list[ColumnStatistics] = field(default_factory=list)
    time_range: TimeRange | None = None

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class StatisticsGatherer:
    """Runs the bounded statistics queries against a warehouse client."""

    def __init__(self, client: WarehouseClient):
        self.client = client

    def gather_table_stats(self, schema_name: str, table_name: str) -> TableStatisticsProfile:
        """Profile one table.

        Raises:
            WarehouseQueryError: If the table schema cannot be fetched.
        """
        table_schema = self.client.get_table_schema(schema_name, table_name)
        relation = f"{quote_identifier(schema_name)}.{quote_identifier(table_name)}"
        logger.debug("Analyzing %d columns of %s.%s", len(table_schema.columns), schema_name, table_name)

        columns = [self._column_stats(relation, col) for col in table_schema.columns]
        time_range = self._time_range(relation, table_schema.columns)

        return TableStatisticsProfile(
            schema_name=schema_name,
            table_name=table_name,
            row_count=table_schema.row_count,
            size_in_bytes=table_schema.size_in_bytes,
            columns=columns,
            time_range=time_range,
        )

    # ------------------------------------------------------------------
    # Per-column queries
    # ------------------------------------------------------------------

    def _column_stats(self, relation: str, column: ColumnInfo) -> ColumnStatistics:
        stats = ColumnStatistics(name=column.name, type=column.type, nullable=column.nullable)
        col = quote_identifier(column.name)

        try:
            row = self._first_row(
                f"SELECT COUNT(DISTINCT {col}) AS distinct_count, COUNT(*) AS total_count, "
                f"SUM(CASE WHEN {col} IS NULL THEN 1 ELSE 0 END) AS null_count FROM {relation}"
            )
            total = int(row.get("total_count") or 0)
            nulls = int(row.get("null_count") or 0)
            stats.distinct_count = int(row.get("distinct_count") or 0)
            stats.null_percentage = (nulls / total) * 100 if total else 0.0
        except (WarehouseQueryError, ValueError, TypeError) as e:
            logger.warning("Basic stats failed for %s.%s: %s", relation, column.name, e)

        if is_numeric_type(column.type) or is_temporal_type(column.type):
            try:
                low, high = self._min_max(relation, col)
                stats.min_value = low
                stats.max_value = high
            except WarehouseQueryError as e:
                logger.warning("Min/max failed for %s.%s: %s", relation, column.name, e)

        try:
            rows = self.client.query(
                f"SELECT {col} AS value, COUNT(*) AS frequency FROM {relation} "
                f"WHERE {col} IS NOT NULL GROUP BY {col} "
                f"ORDER BY frequency DESC, value LIMIT {SAMPLE_LIMIT}"
            )
            stats.sample_values = [r.get("value") for r in rows]
        except WarehouseQueryError as e:
            logger.warning("Sample values failed for %s.%s: %s", relation, column.name, e)

        return stats

    def _min_max(self, relation: str, col: str) -> tuple[Any, Any]:
        row = self._first_row(f"SELECT MIN({col}) AS min_value, MAX({col}) AS max_value FROM {relation}")
        return row.get("min_value"), row.get("max_value")

    def _first_row(self, sql: str) -> dict[str, Any]:
        rows = self.client.query(sql)
        if not rows:
            raise WarehouseQueryError(f"Query returned no rows: {sql}")
        return rows[0]

    # ------------------------------------------------------------------
    # Table-level
    # ------------------------------------------------------------------

    def _time_range(self, relation: str, columns: list[ColumnInfo]) -> TimeRange | None:
        temporal = next((c for c in columns if is_temporal_type(c.type)), None)
        if temporal is None:
            return None
        try:
            low, high = self._min_max(relation, quote_identifier(temporal.name))
        except WarehouseQueryError as e:
            logger.warning("Time range failed for %s.%s: %s", relation, temporal.name, e)
            return None
        if low is None or high is None:
            return None
        return TimeRange(min_date=str(low), max_date=str(high))
