from __future__ import annotations

import structlog

from openinsight.config import DatabaseType
from openinsight.db.factory import create_connection
from openinsight.exceptions import ErrorKind, OpenInsightError
from openinsight.llm.sql_generator import SQLGenerator, strip_code_fences
from openinsight.models.domain import (
    ConnectionTestResult,
    DataSource,
    GenerationResult,
    QueryResult,
    SchemaFetchResult,
    SessionContext,
)
from openinsight.pipeline.executor import EventCallback, QueryExecutor
from openinsight.pipeline.graph import ConnectionFactory
from openinsight.pipeline.validators import READ_ONLY_ERROR, check_read_only
from openinsight.schema.introspection import SchemaIntrospector

logger = structlog.get_logger()

MISSING_KEY_ERROR = "OPENROUTER_KEY environment variable is required"
MISSING_SCHEMA_ERROR = "Database schema not loaded"


class PipelineOrchestrator:
    """Coordinates schema loading, NL -> SQL generation and confirmed execution.

    Holds no per-session state: callers pass the SessionContext they own.
    """

    def __init__(
        self,
        generator: SQLGenerator | None,
        connection_factory: ConnectionFactory = create_connection,
        introspector: SchemaIntrospector | None = None,
        executor: QueryExecutor | None = None,
    ) -> None:
        self._generator = generator
        self._connection_factory = connection_factory
        self._introspector = introspector or SchemaIntrospector()
        self._executor = executor
        if self._executor is None and generator is not None:
            self._executor = QueryExecutor(generator, connection_factory)

    @property
    def has_generator(self) -> bool:
        return self._generator is not None

    async def test_connection(
        self, connection_string: str, protocol: DatabaseType | str | None = None
    ) -> ConnectionTestResult:
        """Connect and run ``SELECT 1``; used before a data source is saved."""
        conn = None
        try:
            conn = self._connection_factory(connection_string, protocol)
            await conn.connect()
            await conn.query("SELECT 1")
        except OpenInsightError as e:
            logger.warning("connection_test_failed", error=e.message, kind=e.kind.value)
            return ConnectionTestResult(success=False, error=e.message, error_kind=e.kind)
        finally:
            if conn is not None:
                await conn.close()

        logger.info("connection_test_succeeded", protocol=str(protocol))
        return ConnectionTestResult(success=True)

    async def fetch_schema(
        self, connection_string: str, protocol: DatabaseType | str
    ) -> SchemaFetchResult:
        """Open a connection, introspect it, and always close it again."""
        conn = None
        try:
            conn = self._connection_factory(connection_string, protocol)
            await conn.connect()
        except OpenInsightError as e:
            if conn is not None:
                await conn.close()
            logger.warning("schema_connect_failed", error=e.message)
            return SchemaFetchResult(
                error=f"Failed to connect: {e.message}", error_kind=ErrorKind.CONNECTION
            )

        try:
            schema = await self._introspector.get_schema(conn, protocol)
        except Exception as e:
            message = e.message if isinstance(e, OpenInsightError) else str(e)
            logger.warning("schema_fetch_failed", error=message)
            return SchemaFetchResult(
                error=f"Failed to fetch schema: {message}", error_kind=ErrorKind.EXECUTION
            )
        finally:
            await conn.close()

        return SchemaFetchResult(schema_snapshot=schema)

    async def load_source(
        self, source: DataSource
    ) -> tuple[SessionContext, SchemaFetchResult]:
        """Fetch the schema for ``source`` and return a session bound to it.

        The returned session starts a fresh conversation.
        """
        result = await self.fetch_schema(source.connection_string, source.type)
        session = SessionContext(schema_snapshot=result.schema_snapshot, dialect=source.type.value)
        return session, result

    async def generate_query(
        self,
        question: str,
        session: SessionContext,
        dialect: DatabaseType | str | None = None,
    ) -> GenerationResult:
        if self._generator is None:
            return GenerationResult(error=MISSING_KEY_ERROR, error_kind=ErrorKind.CONFIGURATION)
        if session.schema_snapshot is None:
            return GenerationResult(error=MISSING_SCHEMA_ERROR, error_kind=ErrorKind.CONFIGURATION)

        logger.info(
            "using_cached_schema",
            table_count=session.schema_snapshot.table_count,
            history_turns=len(session.history),
        )
        result = await self._generator.generate(
            question,
            session.schema_snapshot,
            session.recent_history(),
            dialect=_dialect_tag(dialect or session.dialect),
        )
        if not result.ok:
            return result

        sql = strip_code_fences(result.sql or "")
        errors = check_read_only(sql)
        if errors:
            logger.warning("generated_sql_rejected", sql=sql, errors=errors)
            return GenerationResult(sql=sql, error=READ_ONLY_ERROR, error_kind=ErrorKind.VALIDATION)

        logger.info("question_submitted", question=question, sql=sql)
        return GenerationResult(sql=sql)

    async def execute_query(
        self,
        sql: str,
        source: DataSource,
        session: SessionContext,
        on_event: EventCallback | None = None,
    ) -> QueryResult:
        """Run SQL the user has confirmed, with the bounded repair loop."""
        if session.schema_snapshot is None:
            return QueryResult(sql=sql, error=MISSING_SCHEMA_ERROR, error_kind=ErrorKind.CONFIGURATION)
        if self._executor is None:
            return QueryResult(sql=sql, error=MISSING_KEY_ERROR, error_kind=ErrorKind.CONFIGURATION)

        return await self._executor.run(
            sql,
            source.connection_string,
            source.type,
            session.schema_snapshot,
            on_event=on_event,
        )


def _dialect_tag(dialect: DatabaseType | str) -> str:
    return dialect.value if isinstance(dialect, DatabaseType) else dialect
