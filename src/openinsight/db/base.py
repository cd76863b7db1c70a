from __future__ import annotations

import asyncio
from typing import Any, Protocol

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from openinsight.exceptions import ConnectionError, ExecutionError

logger = structlog.get_logger()


class DatabaseConnection(Protocol):
    """One short-lived connection to a user database."""

    async def connect(self) -> None: ...

    async def query(self, sql: str) -> list[dict[str, Any]]:
        """Run raw SQL and return rows as column -> value dicts, in order."""
        ...

    async def close(self) -> None: ...

    @property
    def dialect(self) -> str: ...


def driver_message(exc: BaseException) -> str:
    """Pull the underlying driver text out of a SQLAlchemy wrapper."""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) and not str(exc):
        return "Operation timed out"
    return str(exc) or exc.__class__.__name__


class SQLAlchemyConnection:
    """Shared implementation over a SQLAlchemy async engine.

    The engine uses ``NullPool`` so disposing it closes the underlying
    driver connection; nothing is pooled between attempts.
    """

    dialect_name = ""

    def __init__(
        self,
        url: str,
        connect_timeout: float | None = None,
        query_timeout: float | None = None,
    ) -> None:
        self._url = url
        self._connect_timeout = connect_timeout
        self._query_timeout = query_timeout
        self._engine: AsyncEngine | None = None
        self._conn: AsyncConnection | None = None

    @property
    def dialect(self) -> str:
        return self.dialect_name

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def safe_url(self) -> str:
        try:
            return make_url(self._url).render_as_string(hide_password=True)
        except (ArgumentError, ValueError):
            return "<unparseable url>"

    async def connect(self) -> None:
        if self._conn is not None:
            return

        engine: AsyncEngine | None = None
        try:
            engine = create_async_engine(self._url, echo=False, poolclass=NullPool)
            self._conn = await asyncio.wait_for(engine.connect(), self._connect_timeout)
        except (SQLAlchemyError, ValueError, OSError, asyncio.TimeoutError) as e:
            if engine is not None:
                await engine.dispose()
            logger.warning("db_connect_failed", dialect=self.dialect, url=self.safe_url, error=str(e))
            raise ConnectionError(driver_message(e), {"dialect": self.dialect}) from e

        self._engine = engine
        logger.debug("db_connected", dialect=self.dialect, url=self.safe_url)

    async def query(self, sql: str) -> list[dict[str, Any]]:
        await self.connect()
        assert self._conn is not None

        try:
            rows = await self._execute(self._conn, sql)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            raise ExecutionError(driver_message(e), {"dialect": self.dialect}) from e

        logger.info("db_query_executed", dialect=self.dialect, row_count=len(rows))
        return rows

    @staticmethod
    async def _run(conn: AsyncConnection, sql: str) -> list[dict[str, Any]]:
        # Driver-level execution: no bind-parameter parsing, and with
        # no_parameters the DBAPI never %-formats the statement.
        result = await conn.exec_driver_sql(
            sql, execution_options={"no_parameters": True}
        )
        if not result.returns_rows:
            return []
        return [dict(row) for row in result.mappings()]

    async def _execute(self, conn: AsyncConnection, sql: str) -> list[dict[str, Any]]:
        """Run ``sql`` bounded by the query timeout.

        Relies on task cancellation stopping the statement, which holds for
        drivers with native asyncio I/O. Thread-backed drivers override this.
        """
        return await asyncio.wait_for(self._run(conn, sql), self._query_timeout)

    async def close(self) -> None:
        conn, engine = self._conn, self._engine
        self._conn = None
        self._engine = None
        try:
            if conn is not None:
                await conn.close()
        finally:
            if engine is not None:
                await engine.dispose()

    async def __aenter__(self) -> SQLAlchemyConnection:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
