"""Warehouse access for profiling.

The profiling pipeline only needs three read-only calls, described by the
``WarehouseClient`` protocol.  ``create_warehouse_client`` builds the concrete
client from the inline ``connection`` dict in ``blueprint_project.yaml``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from blueprint.errors import ConfigurationError


@dataclass(frozen=True)
class ColumnInfo:
    """One column as reported by the warehouse."""
    name: str
    type: str
    nullable: bool = True
    description: str | None = None


@dataclass(frozen=True)
class TableSchema:
    """Warehouse-reported shape of one table, columns in ordinal order."""
    schema_name: str
    table_name: str
    columns: list[ColumnInfo] = field(default_factory=list)
    row_count: int | None = None
    size_in_bytes: int | None = None


class WarehouseClient(Protocol):
    """Read-only interface the profiler consumes."""

    def query(self, sql: str) -> list[dict[str, Any]]:
        """Run a SQL statement and return rows as dicts."""
        ...

    def get_table_schema(self, schema_name: str, table_name: str) -> TableSchema:
        """Return column list and size facts for one table."""
        ...

    def list_tables(self, schema_name: str | None = None) -> list[tuple[str, str]]:
        """Return ``(schema, table)`` pairs, optionally limited to one schema."""
        ...

    def close(self) -> None:
        """Release the connection."""
        ...


def parse_table_name(full_name: str, default_schema: str = "public") -> tuple[str, str]:
    """Split a qualified table name into ``(schema, table)``.

    ``database.schema.table`` and ``schema.table`` keep the last two parts;
    a bare ``table`` lands in ``default_schema``.
    """
    parts = [p.strip().strip('"').strip("`") for p in full_name.split(".")]
    if len(parts) >= 3:
        return parts[-2], parts[-1]
    if len(parts) == 2:
        return parts[0], parts[1]
    return default_schema, parts[0]


def quote_identifier(name: str) -> str:
    """Double-quote an identifier, escaping embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


def create_warehouse_client(connection: dict[str, Any]) -> WarehouseClient:
    """Create a warehouse client from a connection dict.

    Only DuckDB ships in-tree; other warehouses plug in by implementing
    ``WarehouseClient``.
    """
    wtype = str(connection.get("type") or "duckdb").lower()
    if wtype == "duckdb":
        from blueprint.warehouse.duckdb_client import DuckDBWarehouse

        return DuckDBWarehouse(
            database=str(connection.get("database") or ":memory:"),
            read_only=bool(connection.get("read_only", True)),
        )
    raise ConfigurationError(f"Unsupported warehouse type: {wtype}")


__all__ = [
    "ColumnInfo",
    "TableSchema",
    "WarehouseClient",
    "create_warehouse_client",
    "parse_table_name",
    "quote_identifier",
]
