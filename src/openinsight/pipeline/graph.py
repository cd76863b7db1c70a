from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypedDict

import structlog
from langgraph.config import get_stream_writer
from langgraph.graph import END, START, StateGraph

from openinsight.db.base import DatabaseConnection
from openinsight.exceptions import ErrorKind, OpenInsightError
from openinsight.llm.sql_generator import NO_SQL_ERROR, SQLGenerator, strip_code_fences
from openinsight.models.domain import MAX_ATTEMPTS, QueryAttempt, SchemaSnapshot
from openinsight.pipeline.validators import READ_ONLY_ERROR, check_read_only

logger = structlog.get_logger()

ConnectionFactory = Callable[[str, str], DatabaseConnection]


class AttemptStatus:
    PENDING = "pending"
    SUCCESS = "success"
    CONNECTION_FAILED = "connection_failed"
    EXECUTION_FAILED = "execution_failed"
    REPAIRED = "repaired"
    REPAIR_FAILED = "repair_failed"
    REPAIR_REJECTED = "repair_rejected"
    EXHAUSTED = "exhausted"


class RepairState(TypedDict, total=False):
    """State of one execution request. Discarded when the request ends."""

    sql: str
    attempt: int
    last_error: str | None
    status: str
    rows: list[dict[str, Any]] | None
    error: str | None
    error_kind: ErrorKind | None

    connection_string: str
    protocol: str
    schema: SchemaSnapshot


def route_after_run(state: RepairState, max_attempts: int = MAX_ATTEMPTS) -> str:
    """ATTEMPT(n) -> SUCCESS | REPAIR(n+1) | FAILED. Connection failures always end."""
    if state.get("status") != AttemptStatus.EXECUTION_FAILED:
        return END
    if state.get("attempt", 1) < max_attempts:
        return "repair_query"
    return "exhaust_attempts"


def route_after_repair(state: RepairState) -> str:
    if state.get("status") == AttemptStatus.REPAIRED:
        return "run_query"
    return END


def build_repair_graph(
    generator: SQLGenerator,
    connection_factory: ConnectionFactory,
    max_attempts: int = MAX_ATTEMPTS,
) -> StateGraph:
    """Build the execute -> repair -> re-validate loop as a StateGraph."""
    if not 1 <= max_attempts <= MAX_ATTEMPTS:
        raise ValueError(f"max_attempts must be between 1 and {MAX_ATTEMPTS}")

    async def run_query(state: RepairState) -> dict:
        """Open a fresh connection, run the SQL once, always close."""
        writer = get_stream_writer()
        attempt = QueryAttempt(
            sql=state["sql"],
            attempt_number=state["attempt"],
            last_error=state.get("last_error"),
        )
        writer({
            "event": "query_execution_started",
            "attempt": attempt.attempt_number,
            "max_attempts": max_attempts,
            "sql": attempt.sql,
        })

        conn: DatabaseConnection | None = None
        try:
            conn = connection_factory(state["connection_string"], state["protocol"])
            await conn.connect()
        except OpenInsightError as e:
            if conn is not None:
                await conn.close()
            logger.warning("query_connect_failed", attempt=attempt.attempt_number, error=e.message)
            writer({
                "event": "connection_failed",
                "attempt": attempt.attempt_number,
                "error": e.message,
            })
            return {
                "status": AttemptStatus.CONNECTION_FAILED,
                "error": f"Failed to connect: {e.message}",
                "error_kind": ErrorKind.CONNECTION,
            }

        try:
            rows = await conn.query(attempt.sql)
        except Exception as e:
            message = e.message if isinstance(e, OpenInsightError) else str(e)
            logger.warning(
                "query_attempt_failed",
                attempt=attempt.attempt_number,
                sql=attempt.sql,
                error=message,
            )
            writer({
                "event": "query_execution_failed",
                "attempt": attempt.attempt_number,
                "sql": attempt.sql,
                "error": message,
            })
            return {"status": AttemptStatus.EXECUTION_FAILED, "last_error": message}
        finally:
            await conn.close()

        logger.info("query_attempt_succeeded", attempt=attempt.attempt_number, row_count=len(rows))
        writer({
            "event": "query_executed",
            "attempt": attempt.attempt_number,
            "sql": attempt.sql,
            "row_count": len(rows),
        })
        return {"status": AttemptStatus.SUCCESS, "rows": rows, "error": None, "error_kind": None}

    async def repair_query(state: RepairState) -> dict:
        """Ask the model to fix the failed SQL, then re-check it is read-only."""
        writer = get_stream_writer()
        next_attempt = state["attempt"] + 1
        writer({
            "event": "repair_started",
            "attempt": next_attempt,
            "max_attempts": max_attempts,
            "error": state.get("last_error"),
        })

        result = await generator.repair(
            state["sql"],
            state.get("last_error") or "",
            state["schema"],
            dialect=state["protocol"],
        )
        if not result.ok:
            error = result.error or NO_SQL_ERROR
            writer({"event": "repair_failed", "attempt": next_attempt, "error": error})
            return {
                "status": AttemptStatus.REPAIR_FAILED,
                "error": error,
                "error_kind": ErrorKind.GENERATION,
            }

        repaired = strip_code_fences(result.sql or "")
        errors = check_read_only(repaired)
        if errors:
            logger.warning("repaired_sql_rejected", sql=repaired, errors=errors)
            writer({
                "event": "validation_failed",
                "attempt": next_attempt,
                "sql": repaired,
                "errors": errors,
            })
            return {
                "status": AttemptStatus.REPAIR_REJECTED,
                "sql": repaired,
                "error": READ_ONLY_ERROR,
                "error_kind": ErrorKind.VALIDATION,
            }

        writer({"event": "sql_repaired", "attempt": next_attempt, "sql": repaired})
        return {"status": AttemptStatus.REPAIRED, "sql": repaired, "attempt": next_attempt}

    async def exhaust_attempts(state: RepairState) -> dict:
        error = f"Query failed after {max_attempts} attempts: {state.get('last_error')}"
        logger.error("query_attempts_exhausted", attempts=max_attempts, error=state.get("last_error"))
        return {
            "status": AttemptStatus.EXHAUSTED,
            "error": error,
            "error_kind": ErrorKind.EXECUTION,
        }

    def _route_after_run(state: RepairState) -> str:
        return route_after_run(state, max_attempts)

    builder = StateGraph(RepairState)

    builder.add_node("run_query", run_query)
    builder.add_node("repair_query", repair_query)
    builder.add_node("exhaust_attempts", exhaust_attempts)

    builder.add_edge(START, "run_query")
    builder.add_conditional_edges(
        "run_query", _route_after_run, ["repair_query", "exhaust_attempts", END]
    )
    builder.add_conditional_edges("repair_query", route_after_repair, ["run_query", END])
    builder.add_edge("exhaust_attempts", END)

    return builder


def compile_repair_graph(
    generator: SQLGenerator,
    connection_factory: ConnectionFactory,
    max_attempts: int = MAX_ATTEMPTS,
):
    """Build and compile the repair graph. No checkpointer: state lives for one request."""
    return build_repair_graph(generator, connection_factory, max_attempts).compile()
