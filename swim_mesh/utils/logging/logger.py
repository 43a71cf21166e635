"""Structured JSON logging for the SWIM agent mesh.

Every entry is a single JSON object with a snake_case event name in
``message`` plus arbitrary keyword fields. Correlation IDs are carried in a
context variable so that concurrent asyncio tasks (one per request, event or
plan step) each log under their own ID.
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("swim_mesh_correlation_id", default=None)


def get_correlation_id() -> Optional[str]:
    """Return the correlation ID bound to the current task, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation ID to the current task, generating one if needed."""
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id():
    _correlation_id.set(None)


class StructuredLogger:
    """Base logger emitting JSON lines through a stdlib logger."""

    def __init__(self, name: str = "swim_mesh", level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

    def build_entry(self, level: int, message: str, **kwargs) -> Dict[str, Any]:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": logging.getLevelName(level),
            "message": message,
            **kwargs
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            entry.setdefault("correlation_id", correlation_id)
        return entry

    def _log(self, level: int, message: str, **kwargs):
        entry = self.build_entry(level, message, **kwargs)
        self.logger.log(level, json.dumps(entry, default=str))

    def isEnabledFor(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(logging.CRITICAL, message, **kwargs)


class ComponentLogger:
    """Thin wrapper binding a component name to every entry.

    The component decides which log file an entry is routed to.
    """

    def __init__(self, backend: StructuredLogger, component: str):
        self._backend = backend
        self.component = component

    def _log(self, method: str, message: str, /, **kwargs):
        kwargs.setdefault("component", self.component)
        getattr(self._backend, method)(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log("debug", message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log("info", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log("warning", message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log("error", message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log("critical", message, **kwargs)

    def isEnabledFor(self, level: int) -> bool:
        return self._backend.isEnabledFor(level)

    @contextmanager
    def track_performance(self, operation: str, **context):
        """Log start/completion of an operation with its duration.

        Usage:
            with logger.track_performance("plan_execution", plan_id=plan.id):
                ...
        """
        start_time = time.monotonic()
        self.info(f"{operation}_started", operation=operation, **context)
        try:
            yield
        except Exception as e:
            self.error(
                f"{operation}_failed",
                operation=operation,
                duration_seconds=round(time.monotonic() - start_time, 3),
                error=str(e),
                error_type=type(e).__name__,
                **context
            )
            raise
        else:
            self.info(
                f"{operation}_completed",
                operation=operation,
                duration_seconds=round(time.monotonic() - start_time, 3),
                **context
            )
