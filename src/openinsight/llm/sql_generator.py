from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from openinsight.exceptions import ErrorKind
from openinsight.llm.prompts import (
    build_generation_system_prompt,
    build_repair_system_prompt,
    build_repair_user_prompt,
)
from openinsight.models.domain import (
    HISTORY_WINDOW,
    ConversationTurn,
    GenerationResult,
    SchemaSnapshot,
)
from openinsight.schema.introspection import render_schema_context

logger = structlog.get_logger()

NO_SQL_ERROR = "No SQL generated"


class SQLResponse(BaseModel):
    """Structured completion: a single SQL statement."""

    sql: str = Field(description="A single read-only SQL query, without markdown fences")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```sql / ``` and a trailing ``` fence, then trim.

    Applying it to already-clean text returns the text unchanged.
    """
    cleaned = text.strip()
    if cleaned[:6].lower() == "```sql":
        cleaned = cleaned[6:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def history_to_messages(history: Sequence[ConversationTurn]) -> list[BaseMessage]:
    return [
        HumanMessage(content=turn.content)
        if turn.role == "user"
        else AIMessage(content=turn.content)
        for turn in history
    ]


class SQLGenerator:
    """Generates and repairs SQL through a chat model with structured output.

    Failures are reported in the returned GenerationResult and never raised.
    No retries happen here; the executor's repair loop owns retry policy.
    """

    def __init__(
        self,
        chat_model: BaseChatModel,
        repair_model: BaseChatModel | None = None,
        timeout_seconds: float | None = None,
        history_window: int = HISTORY_WINDOW,
    ) -> None:
        self._chat_model = chat_model
        self._repair_model = repair_model or chat_model
        self._timeout = timeout_seconds
        self._history_window = history_window

    async def generate(
        self,
        question: str,
        schema: SchemaSnapshot,
        history: Sequence[ConversationTurn] = (),
        dialect: str = "SQL",
    ) -> GenerationResult:
        recent = list(history)[-self._history_window:] if self._history_window > 0 else []
        messages: list[BaseMessage] = [
            SystemMessage(
                content=build_generation_system_prompt(render_schema_context(schema), dialect)
            ),
            *history_to_messages(recent),
            HumanMessage(content=question),
        ]
        logger.info(
            "sql_generation_requested",
            question=question,
            tables=schema.table_names,
            history_turns=len(recent),
        )
        return await self._complete(self._chat_model, messages, failure_prefix="Failed to generate SQL")

    async def repair(
        self,
        failed_sql: str,
        error_message: str,
        schema: SchemaSnapshot,
        dialect: str = "SQL",
    ) -> GenerationResult:
        messages: list[BaseMessage] = [
            SystemMessage(
                content=build_repair_system_prompt(render_schema_context(schema), dialect)
            ),
            HumanMessage(content=build_repair_user_prompt(failed_sql, error_message)),
        ]
        logger.info("sql_repair_requested", failed_sql=failed_sql, error=error_message)
        return await self._complete(self._repair_model, messages, failure_prefix="Failed to fix SQL")

    async def _complete(
        self,
        model: BaseChatModel,
        messages: list[BaseMessage],
        failure_prefix: str,
    ) -> GenerationResult:
        try:
            structured = model.with_structured_output(SQLResponse, method="function_calling")
            response = await asyncio.wait_for(structured.ainvoke(messages), self._timeout)
        except asyncio.TimeoutError:
            error = f"{failure_prefix}: request timed out after {self._timeout}s"
            logger.warning("sql_completion_failed", error=error)
            return GenerationResult(error=error, error_kind=ErrorKind.GENERATION)
        except Exception as e:
            error = f"{failure_prefix}: {e}"
            logger.warning("sql_completion_failed", error=error)
            return GenerationResult(error=error, error_kind=ErrorKind.GENERATION)

        raw = response.sql if isinstance(response, SQLResponse) else None
        sql = strip_code_fences(raw) if raw else ""
        if not sql:
            logger.warning("sql_completion_empty")
            return GenerationResult(error=NO_SQL_ERROR, error_kind=ErrorKind.GENERATION)

        logger.info("sql_generated", sql=sql)
        return GenerationResult(sql=sql)
