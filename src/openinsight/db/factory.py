from __future__ import annotations

from openinsight.config import DatabaseType
from openinsight.db.base import DatabaseConnection
from openinsight.db.mysql import MySQLConnection
from openinsight.db.postgres import PostgresConnection
from openinsight.db.sqlite import SqliteConnection
from openinsight.exceptions import ConnectionError

_SCHEME_PROTOCOLS = {
    "postgres": DatabaseType.POSTGRES,
    "postgresql": DatabaseType.POSTGRES,
    "mysql": DatabaseType.MYSQL,
    "mysql2": DatabaseType.MYSQL,
    "sqlite": DatabaseType.SQLITE,
    "file": DatabaseType.SQLITE,
}


def detect_protocol(connection_string: str) -> DatabaseType:
    """Infer the backend from the URL scheme (``postgres://``, ``mysql://``, ...)."""
    scheme, sep, _ = connection_string.partition("://")
    protocol = _SCHEME_PROTOCOLS.get(scheme.split("+")[0].lower()) if sep else None
    if protocol is None:
        raise ConnectionError(
            "Unsupported database type. Use postgres://, mysql://, or sqlite://"
        )
    return protocol


def create_connection(
    connection_string: str,
    protocol: DatabaseType | str | None = None,
    connect_timeout: float | None = None,
    query_timeout: float | None = None,
) -> DatabaseConnection:
    """Build an unconnected connection for the given protocol tag.

    The connection is not opened here; callers own ``connect``/``close``.
    """
    if not connection_string:
        raise ConnectionError("Connection string is required")

    try:
        db_type = (
            DatabaseType.parse(protocol) if protocol else detect_protocol(connection_string)
        )
    except ValueError as e:
        raise ConnectionError(f"Unsupported database type: {protocol}") from e

    connection: DatabaseConnection
    try:
        match db_type:
            case DatabaseType.POSTGRES:
                connection = PostgresConnection(
                    connection_string,
                    connect_timeout=connect_timeout,
                    query_timeout=query_timeout,
                )
            case DatabaseType.MYSQL:
                connection = MySQLConnection(
                    connection_string,
                    connect_timeout=connect_timeout,
                    query_timeout=query_timeout,
                )
            case DatabaseType.SQLITE:
                connection = SqliteConnection(
                    connection_string,
                    connect_timeout=connect_timeout,
                    query_timeout=query_timeout,
                )
    except ValueError as e:
        raise ConnectionError(str(e)) from e

    return connection
