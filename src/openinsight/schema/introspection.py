from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from openinsight.config import DatabaseType
from openinsight.db.base import DatabaseConnection
from openinsight.models.domain import ColumnInfo, SchemaSnapshot

logger = structlog.get_logger()

RESERVED_SQLITE_PREFIX = "sqlite_"

_POSTGRES_CATALOG_SQL = """
    SELECT table_name AS table_name, column_name AS column_name, data_type AS data_type
    FROM information_schema.columns
    WHERE table_schema = 'public'
    ORDER BY table_name, ordinal_position
"""

# MySQL 8 reports information_schema labels in upper case unless aliased.
_MYSQL_CATALOG_SQL = """
    SELECT table_name AS table_name, column_name AS column_name, data_type AS data_type
    FROM information_schema.columns
    WHERE table_schema = DATABASE()
    ORDER BY table_name, ordinal_position
"""

_SQLITE_TABLES_SQL = """
    SELECT name FROM sqlite_master
    WHERE type = 'table' AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'
    ORDER BY name
"""


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SchemaIntrospector:
    """Builds a SchemaSnapshot from a live connection, per dialect."""

    async def get_schema(
        self, connection: DatabaseConnection, dialect: DatabaseType | str
    ) -> SchemaSnapshot:
        try:
            db_type = DatabaseType.parse(dialect)
        except ValueError:
            logger.warning("schema_dialect_unsupported", dialect=str(dialect))
            return SchemaSnapshot()

        match db_type:
            case DatabaseType.POSTGRES:
                rows = await connection.query(_POSTGRES_CATALOG_SQL)
                schema = group_catalog_rows(rows)
            case DatabaseType.MYSQL:
                rows = await connection.query(_MYSQL_CATALOG_SQL)
                schema = group_catalog_rows(rows)
            case DatabaseType.SQLITE:
                schema = await self._sqlite_schema(connection)

        logger.info("schema_discovered", dialect=db_type.value, table_count=schema.table_count)
        return schema

    async def _sqlite_schema(self, connection: DatabaseConnection) -> SchemaSnapshot:
        table_rows = await connection.query(_SQLITE_TABLES_SQL)

        tables: dict[str, tuple[ColumnInfo, ...]] = {}
        for row in table_rows:
            name = row["name"]
            if name.startswith(RESERVED_SQLITE_PREFIX):
                continue
            col_rows = await connection.query(f"PRAGMA table_info({quote_identifier(name)})")
            # PRAGMA rows come back in declaration order (cid ascending)
            tables[name] = tuple(
                ColumnInfo(name=col["name"], data_type=col["type"] or "")
                for col in col_rows
            )
        return SchemaSnapshot(tables=tables)


def group_catalog_rows(rows: Iterable[Mapping[str, Any]]) -> SchemaSnapshot:
    """Group (table_name, column_name, data_type) rows by table, keeping row order."""
    grouped: dict[str, list[ColumnInfo]] = {}
    for row in rows:
        grouped.setdefault(row["table_name"], []).append(
            ColumnInfo(name=row["column_name"], data_type=row["data_type"])
        )
    return SchemaSnapshot(tables={name: tuple(cols) for name, cols in grouped.items()})


def render_schema_context(schema: SchemaSnapshot) -> str:
    """Format the snapshot as CREATE TABLE text for LLM context.

    Identifiers are double-quoted so the model sees the exact casing it must
    reproduce.
    """
    if not schema.tables:
        return "-- (no tables)"
    return "\n\n".join(
        _render_table_ddl(table, columns) for table, columns in schema.tables.items()
    )


def _render_table_ddl(table: str, columns: Iterable[ColumnInfo]) -> str:
    col_defs = [f"  {quote_identifier(col.name)} {col.data_type}".rstrip() for col in columns]
    columns_str = ",\n".join(col_defs)
    return f"CREATE TABLE {quote_identifier(table)} (\n{columns_str}\n);"
