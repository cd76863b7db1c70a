from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from openinsight.config import DatabaseType
from openinsight.exceptions import ErrorKind

MAX_ATTEMPTS = 3
HISTORY_WINDOW = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DataSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    connection_string: str = Field(alias="connectionString")
    type: DatabaseType

    @field_validator("type", mode="before")
    @classmethod
    def parse_type(cls, v: str | DatabaseType) -> DatabaseType:
        return DatabaseType.parse(v)


class Preset(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    sql: str
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")


class ColumnInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str


class SchemaSnapshot(BaseModel):
    """Table name -> columns, in catalog order. Replaced wholesale, never edited."""

    model_config = ConfigDict(frozen=True)

    tables: dict[str, tuple[ColumnInfo, ...]] = Field(default_factory=dict)
    discovered_at: datetime = Field(default_factory=_utcnow)

    @property
    def table_names(self) -> list[str]:
        return list(self.tables)

    @property
    def table_count(self) -> int:
        return len(self.tables)

    def as_dict(self) -> dict[str, list[dict[str, str]]]:
        return {
            table: [{"column": c.name, "type": c.data_type} for c in columns]
            for table, columns in self.tables.items()
        }


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class SessionContext(BaseModel):
    """Per-call session state: the schema snapshot plus the conversation so far.

    Immutable; ``with_turn`` returns a new context.
    ``dialect`` names the SQL variant the generation prompt asks for.
    """

    model_config = ConfigDict(frozen=True)

    schema_snapshot: SchemaSnapshot | None = None
    history: tuple[ConversationTurn, ...] = ()
    dialect: str = "SQL"

    def with_turn(self, role: Literal["user", "assistant"], content: str) -> SessionContext:
        turn = ConversationTurn(role=role, content=content)
        return self.model_copy(update={"history": (*self.history, turn)})

    def with_schema(self, schema: SchemaSnapshot | None) -> SessionContext:
        return self.model_copy(update={"schema_snapshot": schema})

    def recent_history(self, limit: int = HISTORY_WINDOW) -> list[ConversationTurn]:
        if limit <= 0:
            return []
        return list(self.history[-limit:])


class QueryAttempt(BaseModel):
    sql: str
    attempt_number: int = Field(ge=1, le=MAX_ATTEMPTS)
    last_error: str | None = None


class QueryResult(BaseModel):
    sql: str
    rows: list[dict[str, Any]] | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class GenerationResult(BaseModel):
    sql: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.sql)


class SchemaFetchResult(BaseModel):
    schema_snapshot: SchemaSnapshot | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


class ConnectionTestResult(BaseModel):
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
