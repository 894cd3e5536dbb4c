"""Structured logging utilities for generation sessions."""
import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from .models import Diagnostic

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class StructuredLogger:
    """Structured logger with correlation ID and bound context support."""

    def __init__(self, logger_name: str, **context: Any):
        self.logger = logging.getLogger(logger_name)
        self._correlation_id: str | None = None
        self._context: dict[str, Any] = dict(context)

    @property
    def correlation_id(self) -> str | None:
        return self._correlation_id

    def set_correlation_id(self, correlation_id: str):
        """Set correlation ID for current context."""
        self._correlation_id = correlation_id

    def clear_correlation_id(self):
        """Clear correlation ID."""
        self._correlation_id = None

    def generate_correlation_id(self) -> str:
        """Generate new correlation ID for a generation run."""
        return f"GEN_{uuid.uuid4().hex[:12]}"

    def bind(self, **context: Any) -> "StructuredLogger":
        """
        Return a child logger that adds `context` to every entry.

        The child shares this logger's name and correlation ID; per-call
        keyword context still overrides bound keys.
        """
        child = StructuredLogger(self.logger.name, **{**self._context, **context})
        child._correlation_id = self._correlation_id
        return child

    def _format_message(self, level: str, message: str, **kwargs) -> dict:
        """Format log message with structured data."""
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level,
            "message": message,
            "correlation_id": self._correlation_id or "none",
        }

        context = {**self._context, **kwargs}
        if context:
            log_entry["context"] = context

        return log_entry

    def _emit(self, level: str, message: str, **kwargs):
        if not self.logger.isEnabledFor(_LEVELS[level]):
            return
        entry = self._format_message(level, message, **kwargs)
        self.logger.log(_LEVELS[level], json.dumps(entry, default=str))

    def info(self, message: str, **kwargs):
        """Log info with structured data."""
        self._emit("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning with structured data."""
        self._emit("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error with structured data."""
        self._emit("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug with structured data."""
        self._emit("DEBUG", message, **kwargs)

    def diagnostic(self, diagnostic: Diagnostic):
        """Log a best-effort fallback as a warning carrying its kind and details."""
        self.warning(
            diagnostic.message,
            diagnostic=diagnostic.kind.value,
            rule_id=diagnostic.rule_id,
            field=diagnostic.field,
            details=diagnostic.details,
        )


def get_structured_logger(name: str, **context: Any) -> StructuredLogger:
    """Get or create structured logger."""
    return StructuredLogger(name, **context)
