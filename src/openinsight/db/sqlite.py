from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection

from openinsight.db.base import SQLAlchemyConnection

_SCHEMES = ("sqlite://", "file://")


def sqlite_path(connection_string: str) -> str:
    """Database file path from ``sqlite://path`` or ``file://path``."""
    for scheme in _SCHEMES:
        if connection_string.startswith(scheme):
            return connection_string[len(scheme):]
    return connection_string


def to_aiosqlite_url(connection_string: str) -> str:
    if connection_string.startswith("sqlite+"):
        return connection_string
    return f"sqlite+aiosqlite:///{sqlite_path(connection_string)}"


class SqliteConnection(SQLAlchemyConnection):
    """SQLite connection using SQLAlchemy async + aiosqlite."""

    dialect_name = "sqlite"

    def __init__(
        self,
        connection_string: str,
        connect_timeout: float | None = None,
        query_timeout: float | None = None,
    ) -> None:
        super().__init__(
            to_aiosqlite_url(connection_string),
            connect_timeout=connect_timeout,
            query_timeout=query_timeout,
        )

    async def _execute(self, conn: AsyncConnection, sql: str) -> list[dict[str, Any]]:
        # aiosqlite runs statements on a worker thread. Cancelling the task
        # would leave the statement running and make close() wait for it, so
        # on timeout the driver is interrupted and the task runs to its error.
        raw = await conn.get_raw_connection()
        driver = raw.driver_connection
        task = asyncio.ensure_future(self._run(conn, sql))
        try:
            done, _ = await asyncio.wait({task}, timeout=self._query_timeout)
        except asyncio.CancelledError:
            await driver.interrupt()
            raise
        if task in done:
            return task.result()

        await driver.interrupt()
        try:
            return await task
        except OperationalError as e:
            raise asyncio.TimeoutError() from e
