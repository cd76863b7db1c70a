"""Runs a confirmed query with the bounded self-repair loop.

Each attempt gets its own connection, execution errors are fed back to the
model for a rewrite, and every rewrite is re-checked before it may run.
Connection failures end the request at once, on any attempt.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from openinsight.config import DatabaseType
from openinsight.db.factory import create_connection
from openinsight.exceptions import ErrorKind
from openinsight.llm.sql_generator import SQLGenerator
from openinsight.models.domain import MAX_ATTEMPTS, QueryResult, SchemaSnapshot
from openinsight.pipeline.graph import (
    AttemptStatus,
    ConnectionFactory,
    RepairState,
    compile_repair_graph,
)
from openinsight.pipeline.validators import READ_ONLY_ERROR, check_read_only

logger = structlog.get_logger()

EventCallback = Callable[[dict[str, Any]], None]


class QueryExecutor:
    def __init__(
        self,
        generator: SQLGenerator,
        connection_factory: ConnectionFactory = create_connection,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self._max_attempts = max_attempts
        self._graph = compile_repair_graph(generator, connection_factory, max_attempts)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def run(
        self,
        sql: str,
        connection_string: str,
        protocol: DatabaseType | str,
        schema: SchemaSnapshot,
        on_event: EventCallback | None = None,
    ) -> QueryResult:
        """Execute ``sql``, repairing it on execution errors.

        ``on_event`` receives one dict per step (attempt started, succeeded,
        failed, repair requested, ...). A callback that raises is logged and
        does not interrupt the run. The return value only describes the final
        outcome.
        """
        errors = check_read_only(sql)
        if errors:
            logger.warning("query_rejected", sql=sql, errors=errors)
            _notify(on_event, {"event": "validation_failed", "attempt": 1, "sql": sql, "errors": errors})
            return QueryResult(sql=sql, error=READ_ONLY_ERROR, error_kind=ErrorKind.VALIDATION)

        protocol_tag = protocol.value if isinstance(protocol, DatabaseType) else protocol
        initial: RepairState = {
            "sql": sql,
            "attempt": 1,
            "last_error": None,
            "status": AttemptStatus.PENDING,
            "rows": None,
            "error": None,
            "error_kind": None,
            "connection_string": connection_string,
            "protocol": protocol_tag,
            "schema": schema,
        }

        final: dict[str, Any] = dict(initial)
        async for mode, chunk in self._graph.astream(initial, stream_mode=["custom", "values"]):
            if mode == "custom":
                _notify(on_event, chunk)
            else:
                final = chunk

        result = QueryResult(
            sql=final["sql"],
            rows=final.get("rows") if final.get("status") == AttemptStatus.SUCCESS else None,
            error=final.get("error"),
            error_kind=final.get("error_kind"),
        )
        logger.info(
            "query_request_finished",
            status=final.get("status"),
            attempts=final.get("attempt"),
            error_kind=result.error_kind.value if result.error_kind else None,
        )
        return result


def _notify(on_event: EventCallback | None, event: dict[str, Any]) -> None:
    if on_event is None:
        return
    try:
        on_event(event)
    except Exception:
        logger.exception("event_callback_failed", event=event.get("event"))
