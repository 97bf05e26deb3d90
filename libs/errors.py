# libs/errors.py
"""Error taxonomy shared by the parser, the queues and the pipeline.

Every error knows its :class:`ErrorKind` and the pipeline stage it belongs
to, so the dead-letter router always receives structured diagnostics instead
of a bare stack trace.
"""
from __future__ import annotations

from typing import Optional

from libs.models import ErrorKind, ProcessingStage

__all__ = [
    "PipelineError",
    "ParsingError",
    "ValidationError",
    "PersistenceError",
    "RoutingError",
    "UnclassifiedError",
]


class PipelineError(Exception):
    """Base class. ``field`` names the offending SWIFT tag when known."""

    kind: ErrorKind = ErrorKind.SYSTEM
    stage: ProcessingStage = ProcessingStage.RECEIVED

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def describe(self) -> str:
        """``"<stage> failed [field X]: <message>"`` – used as diagnostic text."""
        where = f" [field {self.field}]" if self.field else ""
        return f"{self.stage.value} failed{where}: {self.message}"


class ParsingError(PipelineError):
    """Missing or malformed block/field."""

    kind = ErrorKind.PARSING
    stage = ProcessingStage.PARSING


class ValidationError(PipelineError):
    """Business-rule violation on an already parsed message."""

    kind = ErrorKind.VALIDATION
    stage = ProcessingStage.VALIDATING


class PersistenceError(PipelineError):
    kind = ErrorKind.PERSISTENCE
    stage = ProcessingStage.PERSISTING


class RoutingError(PipelineError):
    """Queue send failure (completed or dead-letter queue)."""

    kind = ErrorKind.ROUTING
    stage = ProcessingStage.ROUTING

    def __init__(
        self, message: str, *, queue_name: Optional[str] = None, field: Optional[str] = None
    ) -> None:
        super().__init__(message, field=field)
        self.queue_name = queue_name


class UnclassifiedError(PipelineError):
    """Anything unexpected – wraps the original exception."""

    kind = ErrorKind.SYSTEM

    def __init__(self, message: str, *, stage: ProcessingStage) -> None:
        super().__init__(message)
        self.stage = stage
