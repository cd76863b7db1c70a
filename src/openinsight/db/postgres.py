from __future__ import annotations

from openinsight.db.base import SQLAlchemyConnection

_SCHEMES = ("postgresql://", "postgres://")


def to_asyncpg_url(connection_string: str) -> str:
    """Rewrite a ``postgres://`` URL for SQLAlchemy's asyncpg dialect."""
    if connection_string.startswith("postgresql+"):
        return connection_string
    for scheme in _SCHEMES:
        if connection_string.startswith(scheme):
            return "postgresql+asyncpg://" + connection_string[len(scheme):]
    raise ValueError(f"Not a PostgreSQL URL: {connection_string.split('@')[-1]}")


class PostgresConnection(SQLAlchemyConnection):
    """PostgreSQL connection using SQLAlchemy async + asyncpg."""

    dialect_name = "postgres"

    def __init__(
        self,
        connection_string: str,
        connect_timeout: float | None = None,
        query_timeout: float | None = None,
    ) -> None:
        super().__init__(
            to_asyncpg_url(connection_string),
            connect_timeout=connect_timeout,
            query_timeout=query_timeout,
        )
