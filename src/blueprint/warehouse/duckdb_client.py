"""DuckDB implementation of ``WarehouseClient``."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import duckdb

from blueprint.errors import WarehouseConnectionError, WarehouseQueryError
from blueprint.warehouse import ColumnInfo, TableSchema, quote_identifier

logger = logging.getLogger(__name__)

_SKIP_SCHEMAS = ("information_schema", "pg_catalog")


class DuckDBWarehouse:
    """Warehouse client over a DuckDB database file (or ``:memory:``)."""

    def __init__(
        self,
        database: str = ":memory:",
        *,
        read_only: bool = True,
        connection: Any = None,
    ):
        if connection is not None:
            self._con = connection
            self.database = database
            return

        if database != ":memory:" and not Path(database).exists():
            raise WarehouseConnectionError(f"DuckDB database not found: {database}")
        try:
            self._con = duckdb.connect(database, read_only=read_only and database != ":memory:")
        except duckdb.Error as e:
            raise WarehouseConnectionError(f"Failed to open DuckDB database {database}: {e}", cause=e) from e
        self.database = database

    def _execute(self, sql: str, params: list[Any] | None = None) -> list[dict[str, Any]]:
        try:
            cursor = self._con.execute(sql, params) if params else self._con.execute(sql)
            rows = cursor.fetchall()
            names = [d[0] for d in (cursor.description or [])]
        except duckdb.Error as e:
            raise WarehouseQueryError(str(e), cause=e) from e
        return [dict(zip(names, row)) for row in rows]

    def query(self, sql: str) -> list[dict[str, Any]]:
        return self._execute(sql)

    def get_table_schema(self, schema_name: str, table_name: str) -> TableSchema:
        rows = self._execute(
            """
            SELECT column_name, data_type, is_nullable
            FROM information_schema.columns
            WHERE table_schema = ? AND table_name = ?
            ORDER BY ordinal_position
            """,
            [schema_name, table_name],
        )
        if not rows:
            raise WarehouseQueryError(f"Table not found: {schema_name}.{table_name}")

        columns = [
            ColumnInfo(
                name=str(r["column_name"]),
                type=str(r["data_type"]),
                nullable=str(r["is_nullable"]).upper() == "YES",
            )
            for r in rows
        ]

        count_rows = self._execute(
            f"SELECT COUNT(*) AS row_count FROM {quote_identifier(schema_name)}.{quote_identifier(table_name)}"
        )
        row_count = int(count_rows[0]["row_count"]) if count_rows else None

        return TableSchema(
            schema_name=schema_name,
            table_name=table_name,
            columns=columns,
            row_count=row_count,
        )

    def list_tables(self, schema_name: str | None = None) -> list[tuple[str, str]]:
        if schema_name:
            rows = self._execute(
                """
                SELECT table_schema, table_name
                FROM information_schema.tables
                WHERE table_schema = ?
                ORDER BY table_schema, table_name
                """,
                [schema_name],
            )
        else:
            rows = self._execute(
                """
                SELECT table_schema, table_name
                FROM information_schema.tables
                WHERE table_schema NOT IN (?, ?)
                ORDER BY table_schema, table_name
                """,
                list(_SKIP_SCHEMAS),
            )
        return [(str(r["table_schema"]), str(r["table_name"])) for r in rows]

    def close(self) -> None:
        self._con.close()
