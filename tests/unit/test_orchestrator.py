from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from openinsight.config import DatabaseType
from openinsight.exceptions import ErrorKind
from openinsight.llm.sql_generator import SQLGenerator
from openinsight.models.domain import (
    DataSource,
    GenerationResult,
    QueryResult,
    SchemaSnapshot,
    SessionContext,
)
from openinsight.pipeline.executor import QueryExecutor
from openinsight.pipeline.orchestrator import PipelineOrchestrator
from tests.fakes import make_chat_model, make_connection, make_factory


@pytest.fixture
def session(schema: SchemaSnapshot) -> SessionContext:
    return SessionContext(schema_snapshot=schema)


@pytest.mark.asyncio
async def test_generate_requires_api_key(session: SessionContext) -> None:
    orchestrator = PipelineOrchestrator(generator=None)
    result = await orchestrator.generate_query("how many users?", session)

    assert result.error == "OPENROUTER_KEY environment variable is required"
    assert result.error_kind == ErrorKind.CONFIGURATION


@pytest.mark.asyncio
async def test_generate_requires_schema() -> None:
    orchestrator = PipelineOrchestrator(SQLGenerator(make_chat_model()))
    result = await orchestrator.generate_query("how many users?", SessionContext())

    assert result.error == "Database schema not loaded"


@pytest.mark.asyncio
async def test_generate_returns_validated_sql(session: SessionContext) -> None:
    model = make_chat_model('```sql\nSELECT count(*) FROM "User"\n```')
    orchestrator = PipelineOrchestrator(SQLGenerator(model))

    result = await orchestrator.generate_query("how many users?", session)

    assert result.ok
    assert result.sql == 'SELECT count(*) FROM "User"'


@pytest.mark.asyncio
async def test_generate_rejects_mutation(session: SessionContext) -> None:
    orchestrator = PipelineOrchestrator(SQLGenerator(make_chat_model('DELETE FROM "User"')))

    result = await orchestrator.generate_query("remove everyone", session)

    assert result.error == "Only SELECT queries are allowed"
    assert result.error_kind == ErrorKind.VALIDATION
    assert result.sql == 'DELETE FROM "User"'


@pytest.mark.asyncio
async def test_generate_passes_generation_error_through(session: SessionContext) -> None:
    orchestrator = PipelineOrchestrator(SQLGenerator(make_chat_model(RuntimeError("boom"))))

    result = await orchestrator.generate_query("q", session)

    assert result.error == "Failed to generate SQL: boom"
    assert result.error_kind == ErrorKind.GENERATION


@pytest.mark.asyncio
async def test_generate_uses_bounded_history(session: SessionContext) -> None:
    model = make_chat_model("SELECT 1")
    orchestrator = PipelineOrchestrator(SQLGenerator(model))
    for i in range(12):
        session = session.with_turn("user", f"q{i}").with_turn("assistant", f"a{i}")

    await orchestrator.generate_query("latest", session)

    sent = model.received[0]
    assert len(sent) == 1 + 10 + 1
    assert sent[1].content == "q7"
    assert sent[-2].content == "a11"


@pytest.mark.asyncio
async def test_fetch_schema_from_sqlite(sqlite_db: str) -> None:
    orchestrator = PipelineOrchestrator(generator=None)
    result = await orchestrator.fetch_schema(sqlite_db, "sqlite")

    assert result.error is None
    assert result.schema_snapshot is not None
    assert "User" in result.schema_snapshot.tables


@pytest.mark.asyncio
async def test_fetch_schema_connection_error() -> None:
    conn = make_connection(connect_error="password authentication failed")
    orchestrator = PipelineOrchestrator(generator=None, connection_factory=make_factory(conn))

    result = await orchestrator.fetch_schema("postgres://u:p@h/db", "postgres")

    assert result.schema_snapshot is None
    assert result.error == "Failed to connect: password authentication failed"
    assert result.error_kind == ErrorKind.CONNECTION


@pytest.mark.asyncio
async def test_fetch_schema_catalog_error_closes_connection() -> None:
    conn = make_connection(query_errors=["permission denied for schema public"])
    orchestrator = PipelineOrchestrator(generator=None, connection_factory=make_factory(conn))

    result = await orchestrator.fetch_schema("postgres://u:p@h/db", "postgres")

    assert result.schema_snapshot is None
    assert result.error == "Failed to fetch schema: permission denied for schema public"
    assert result.error_kind == ErrorKind.EXECUTION
    conn.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_load_source_starts_fresh_session(sqlite_db: str) -> None:
    orchestrator = PipelineOrchestrator(generator=None)
    source = DataSource(name="local", connection_string=sqlite_db, type=DatabaseType.SQLITE)

    session, result = await orchestrator.load_source(source)

    assert result.error is None
    assert session.schema_snapshot == result.schema_snapshot
    assert session.history == ()


@pytest.mark.asyncio
async def test_execute_delegates_to_executor(session: SessionContext) -> None:
    executor = AsyncMock(spec=QueryExecutor)
    executor.run.return_value = QueryResult(sql="SELECT 1", rows=[{"1": 1}])
    orchestrator = PipelineOrchestrator(SQLGenerator(make_chat_model()), executor=executor)
    source = DataSource(name="pg", connection_string="postgres://u:p@h/db", type="postgres")
    events: list[dict] = []

    result = await orchestrator.execute_query("SELECT 1", source, session, on_event=events.append)

    assert result.rows == [{"1": 1}]
    executor.run.assert_awaited_once_with(
        "SELECT 1",
        "postgres://u:p@h/db",
        DatabaseType.POSTGRES,
        session.schema_snapshot,
        on_event=events.append,
    )


@pytest.mark.asyncio
async def test_execute_requires_schema() -> None:
    orchestrator = PipelineOrchestrator(SQLGenerator(make_chat_model()))
    source = DataSource(name="pg", connection_string="postgres://u:p@h/db", type="postgres")

    result = await orchestrator.execute_query("SELECT 1", source, SessionContext())

    assert result.error == "Database schema not loaded"
    assert result.error_kind == ErrorKind.CONFIGURATION


@pytest.mark.asyncio
async def test_generate_then_execute_against_sqlite(sqlite_db: str) -> None:
    model = make_chat_model('SELECT "name" FROM "User" WHERE "email" IS NULL')
    orchestrator = PipelineOrchestrator(SQLGenerator(model))
    source = DataSource(name="local", connection_string=sqlite_db, type="sqlite")
    session, _ = await orchestrator.load_source(source)

    generated = await orchestrator.generate_query("who has no email?", session, dialect=source.type)
    assert isinstance(generated, GenerationResult) and generated.ok

    result = await orchestrator.execute_query(generated.sql or "", source, session)

    assert result.rows == [{"name": "Bob"}]


@pytest.mark.asyncio
async def test_fetch_schema_malformed_connection_string() -> None:
    orchestrator = PipelineOrchestrator(generator=None)

    result = await orchestrator.fetch_schema("mysql://u:p@localhost:notaport/db", "mysql")

    assert result.schema_snapshot is None
    assert result.error_kind == ErrorKind.CONNECTION
    assert (result.error or "").startswith("Failed to connect: ")


@pytest.mark.asyncio
async def test_test_connection_succeeds_against_sqlite(sqlite_db: str) -> None:
    orchestrator = PipelineOrchestrator(generator=None)

    result = await orchestrator.test_connection(sqlite_db)

    assert result.success
    assert result.error is None


@pytest.mark.asyncio
async def test_test_connection_runs_select_one_and_closes() -> None:
    conn = make_connection(rows=[{"1": 1}])
    orchestrator = PipelineOrchestrator(generator=None, connection_factory=make_factory(conn))

    result = await orchestrator.test_connection("postgres://u:p@h/db", "postgres")

    assert result.success
    conn.query.assert_awaited_once_with("SELECT 1")
    conn.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_test_connection_reports_connect_failure() -> None:
    conn = make_connection(connect_error="connection refused")
    orchestrator = PipelineOrchestrator(generator=None, connection_factory=make_factory(conn))

    result = await orchestrator.test_connection("postgres://u:p@h/db", "postgres")

    assert not result.success
    assert result.error == "connection refused"
    assert result.error_kind == ErrorKind.CONNECTION
    conn.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_test_connection_reports_query_failure() -> None:
    conn = make_connection(query_errors=["permission denied"])
    orchestrator = PipelineOrchestrator(generator=None, connection_factory=make_factory(conn))

    result = await orchestrator.test_connection("postgres://u:p@h/db", "postgres")

    assert not result.success
    assert result.error == "permission denied"
    assert result.error_kind == ErrorKind.EXECUTION
    conn.close.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "connection_string",
    ["", "oracle://u:p@h/db", "postgres://u:p@localhost:notaport/db"],
)
async def test_test_connection_rejects_bad_connection_strings(connection_string: str) -> None:
    orchestrator = PipelineOrchestrator(generator=None)

    result = await orchestrator.test_connection(connection_string)

    assert not result.success
    assert result.error_kind == ErrorKind.CONNECTION


@pytest.mark.asyncio
async def test_loaded_session_carries_source_dialect(sqlite_db: str) -> None:
    model = make_chat_model("SELECT 1")
    orchestrator = PipelineOrchestrator(SQLGenerator(model))
    source = DataSource(name="local", connection_string=sqlite_db, type="sqlite")

    session, _ = await orchestrator.load_source(source)
    await orchestrator.generate_query("anything", session)

    assert session.dialect == "sqlite"
    system_prompt = str(model.received[0][0].content)
    assert 'dialect="sqlite"' in system_prompt
