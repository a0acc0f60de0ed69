"""Progress sinks notified while a document is generated.

The real transport (a WebSocket relay in production) lives outside this
package; anything with the three methods below can be plugged in.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .logger import get_logger


class ProgressSink(Protocol):
    def progress(self, task_id: str, progress: int, message: str) -> None: ...

    def result(self, task_id: str, result: Any) -> None: ...

    def error(self, task_id: str, error: str) -> None: ...


class NullProgressSink:
    """Discards every notification."""

    def progress(self, task_id: str, progress: int, message: str) -> None:
        return None

    def result(self, task_id: str, result: Any) -> None:
        return None

    def error(self, task_id: str, error: str) -> None:
        return None


class LoggingProgressSink:
    """Writes notifications to the application log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger()

    def progress(self, task_id: str, progress: int, message: str) -> None:
        self.logger.info("progress task=%s pct=%d %s", task_id, progress, message)

    def result(self, task_id: str, result: Any) -> None:
        self.logger.info("progress.completed task=%s result=%s", task_id, result)

    def error(self, task_id: str, error: str) -> None:
        self.logger.error("progress.failed task=%s error=%s", task_id, error)


__all__ = ["ProgressSink", "NullProgressSink", "LoggingProgressSink"]
