"""
Diagnostic plumbing for the extraction pipeline.

Warnings and corrections produced while normalizing a model response are
emitted through a DiagnosticSink instead of being printed, so tests and
production telemetry can both capture them.

Usage:
    trace = ExtractionTrace(parent=LoggingSink())
    trace.emit(DiagnosticLevel.WARNING, "Taxable amount differs", field="taxable_amount")
    print(trace.warnings)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class DiagnosticLevel(str, Enum):
    """Severity of a diagnostic event."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    CORRECTION = "correction"   # a value in the record was changed


_LOG_LEVELS = {
    DiagnosticLevel.DEBUG: logging.DEBUG,
    DiagnosticLevel.INFO: logging.INFO,
    DiagnosticLevel.WARNING: logging.WARNING,
    DiagnosticLevel.CORRECTION: logging.INFO,
}


class DiagnosticSink(Protocol):
    """Anything that accepts diagnostic events."""

    def emit(self, level: DiagnosticLevel, message: str, **fields: Any) -> None:
        ...


@dataclass
class DiagnosticEvent:
    """Single diagnostic emitted by a pipeline stage."""
    level: DiagnosticLevel
    message: str
    fields: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "message": self.message,
            "fields": {k: _serialize_value(v) for k, v in self.fields.items()},
            "timestamp": self.timestamp.isoformat(),
        }


class LoggingSink:
    """Forwards diagnostics to the standard logging module."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def emit(self, level: DiagnosticLevel, message: str, **fields: Any) -> None:
        if fields:
            details = ", ".join(f"{k}={v!r}" for k, v in fields.items())
            self._log.log(_LOG_LEVELS[level], f"{message} ({details})")
        else:
            self._log.log(_LOG_LEVELS[level], message)


class NullSink:
    """Discards everything."""

    def emit(self, level: DiagnosticLevel, message: str, **fields: Any) -> None:
        return None


class ExtractionTrace:
    """
    Collects the diagnostics of one extraction.

    Each extraction gets its own trace so concurrent requests never see each
    other's events. Events are forwarded to the parent sink when one is set.
    """

    def __init__(self, parent: Optional[DiagnosticSink] = None):
        self.parent = parent
        self.events: list[DiagnosticEvent] = []

    def emit(self, level: DiagnosticLevel, message: str, **fields: Any) -> None:
        self.events.append(DiagnosticEvent(level=level, message=message, fields=dict(fields)))
        if self.parent is not None:
            self.parent.emit(level, message, **fields)

    def warn(self, message: str, **fields: Any) -> None:
        self.emit(DiagnosticLevel.WARNING, message, **fields)

    def correct(self, message: str, **fields: Any) -> None:
        self.emit(DiagnosticLevel.CORRECTION, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.emit(DiagnosticLevel.INFO, message, **fields)

    def debug(self, message: str, **fields: Any) -> None:
        self.emit(DiagnosticLevel.DEBUG, message, **fields)

    @property
    def warnings(self) -> list[str]:
        return [e.message for e in self.events if e.level == DiagnosticLevel.WARNING]

    @property
    def corrections(self) -> list[str]:
        return [e.message for e in self.events if e.level == DiagnosticLevel.CORRECTION]

    def to_dict(self) -> dict:
        return {
            "warning_count": len(self.warnings),
            "correction_count": len(self.corrections),
            "events": [e.to_dict() for e in self.events],
        }


def _serialize_value(value: Any) -> Any:
    """Convert a value for JSON serialization."""
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_serialize_value(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _serialize_value(v) for k, v in value.items()}
    return str(value)
