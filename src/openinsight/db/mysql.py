from __future__ import annotations

from openinsight.db.base import SQLAlchemyConnection

_SCHEMES = ("mysql2://", "mysql://")


def to_aiomysql_url(connection_string: str) -> str:
    """Rewrite a ``mysql://`` URL for SQLAlchemy's aiomysql dialect."""
    if connection_string.startswith("mysql+"):
        return connection_string
    for scheme in _SCHEMES:
        if connection_string.startswith(scheme):
            return "mysql+aiomysql://" + connection_string[len(scheme):]
    raise ValueError(f"Not a MySQL URL: {connection_string.split('@')[-1]}")


class MySQLConnection(SQLAlchemyConnection):
    """MySQL connection using SQLAlchemy async + aiomysql."""

    dialect_name = "mysql"

    def __init__(
        self,
        connection_string: str,
        connect_timeout: float | None = None,
        query_timeout: float | None = None,
    ) -> None:
        super().__init__(
            to_aiomysql_url(connection_string),
            connect_timeout=connect_timeout,
            query_timeout=query_timeout,
        )
