"""
Application logger interface used by every pipemsg component.

Components never talk to the logging module directly; they hold an AppLogger
and a LogContext naming the component, and attach the endpoint and role of
the pipe they serve. The concrete logger is chosen once per process (see
logging_config) and can be swapped for tests.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class LogContext:
    """Structured context attached to each log line."""

    component: str
    operation: Optional[str] = None
    endpoint: Optional[str] = None
    role: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def for_operation(self, operation: str) -> "LogContext":
        """Return a copy of this context for a specific operation."""
        return replace(self, operation=operation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging, dropping empty fields."""
        return {k: v for k, v in asdict(self).items() if v}


class AppLogger(Protocol):
    """Protocol for application logging."""

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        ...

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        ...

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        ...

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ) -> None:
        ...


def format_log_message(
    message: str,
    context: Optional[LogContext] = None,
    structured: bool = False,
    **kwargs,
) -> str:
    """
    Render a message with its context.

    Args:
        message: Human-readable message
        context: Optional component context
        structured: Emit a JSON document instead of a text line
        **kwargs: Extra key/value pairs to include

    Returns:
        The formatted log line
    """
    if structured:
        log_data: Dict[str, Any] = {"message": message, "timestamp": time.time()}
        if context:
            log_data.update(context.to_dict())
        if kwargs:
            log_data["additional"] = kwargs
        return json.dumps(log_data, default=str)

    parts = []
    if context:
        parts.append(f"[{context.component}]")
        if context.endpoint:
            parts.append(f"{context.endpoint} >")
    parts.append(message)
    if context and context.operation:
        parts.append(f"({context.operation})")
    if kwargs:
        parts.append("[" + ", ".join(f"{k}={v}" for k, v in kwargs.items()) + "]")
    return " ".join(parts)


class StandardAppLogger:
    """AppLogger backed by a named Python logger."""

    def __init__(self, logger_name: str = "pipemsg", structured: bool = False):
        self._logger = logging.getLogger(logger_name)
        self._structured = structured

    def _format(self, message: str, context: Optional[LogContext], **kwargs) -> str:
        return format_log_message(message, context, self._structured, **kwargs)

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(self._format(message, context, **kwargs))

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        self._logger.info(self._format(message, context, **kwargs))

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        self._logger.warning(self._format(message, context, **kwargs))

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ) -> None:
        self._logger.error(self._format(message, context, **kwargs), exc_info=exc_info)


class NullAppLogger:
    """Null object implementation for tests or disabled logging."""

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        pass

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        pass

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs) -> None:
        pass

    def error(
        self,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ) -> None:
        pass


_default_logger: Optional[AppLogger] = None


def get_default_logger() -> AppLogger:
    """Get the process-wide logger, creating it from the environment on first use."""
    global _default_logger
    if _default_logger is None:
        from pipemsg.logging_config import create_logger_from_env

        _default_logger = create_logger_from_env()
    return _default_logger


def set_default_logger(logger: Optional[AppLogger]) -> None:
    """Replace the process-wide logger. Passing None resets it."""
    global _default_logger
    _default_logger = logger
