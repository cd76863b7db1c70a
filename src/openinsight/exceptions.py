"""Error taxonomy for the query pipeline.

Exceptions are raised by the connection and configuration layers. The pipeline
turns them into results carrying ``error`` and ``error_kind``. Validation and
generation failures only ever appear as results.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    CONNECTION = "connection"
    EXECUTION = "execution"
    GENERATION = "generation"


class OpenInsightError(Exception):
    """Base exception for all OpenInsight errors."""

    kind: ErrorKind = ErrorKind.EXECUTION

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "context": self.context,
        }


class ConfigurationError(OpenInsightError):
    """A required setting or credential is missing, or stored config is inconsistent."""

    kind = ErrorKind.CONFIGURATION


class ConnectionError(OpenInsightError):
    """The driver could not establish a connection.

    The message is the driver's own text, unmodified.
    """

    kind = ErrorKind.CONNECTION


class ExecutionError(OpenInsightError):
    """The connection is up but the statement failed."""

    kind = ErrorKind.EXECUTION
