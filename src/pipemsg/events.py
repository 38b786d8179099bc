"""
State events published by clients and servers.

State events are the diagnostic channel of a pipe endpoint: connects,
disconnects, timeouts and errors are reported here as free-form text with a
type and a level, never as exceptions crossing the public API.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional


class EventLevel(Enum):
    """Standard event levels, named after the logger methods."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class StateEventType(Enum):
    """Lifecycle and diagnostic event types."""

    STARTED = "started"
    STOPPED = "stopped"
    CONNECT_ATTEMPT = "connect_attempt"
    CONNECT_SUCCESS = "connect_success"
    CONNECT_TIMEOUT = "connect_timeout"
    CONNECT_FAILURE = "connect_failure"
    DISCONNECTED = "disconnected"
    READ_ERROR = "read_error"
    SEND_TIMEOUT = "send_timeout"
    SEND_FAILURE = "send_failure"
    DISPOSE_ERROR = "dispose_error"


_LEVELS = {
    StateEventType.CONNECT_ATTEMPT: EventLevel.DEBUG,
    StateEventType.CONNECT_TIMEOUT: EventLevel.WARNING,
    StateEventType.CONNECT_FAILURE: EventLevel.WARNING,
    StateEventType.DISCONNECTED: EventLevel.WARNING,
    StateEventType.READ_ERROR: EventLevel.ERROR,
    StateEventType.SEND_TIMEOUT: EventLevel.WARNING,
    StateEventType.SEND_FAILURE: EventLevel.ERROR,
    StateEventType.DISPOSE_ERROR: EventLevel.WARNING,
}


def level_for(event_type: StateEventType) -> EventLevel:
    """Default level of an event type."""
    return _LEVELS.get(event_type, EventLevel.INFO)


class StateEvent:
    """Immutable diagnostic event for one endpoint."""

    def __init__(
        self,
        event_type: StateEventType,
        endpoint: str,
        message: str,
        timestamp: Optional[float] = None,
        level: Optional[EventLevel] = None,
        error: Optional[BaseException] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        object.__setattr__(self, "event_type", event_type)
        object.__setattr__(self, "endpoint", endpoint)
        object.__setattr__(self, "message", message)
        object.__setattr__(self, "timestamp", time.time() if timestamp is None else timestamp)
        object.__setattr__(self, "level", level or level_for(event_type))
        object.__setattr__(self, "error", error)
        object.__setattr__(self, "metadata", metadata or {})

    def __setattr__(self, name, value):
        """Prevent modification after initialisation (frozen behaviour)."""
        raise AttributeError(f"can't set attribute '{name}'")

    @property
    def text(self) -> str:
        """Display text in the form 'endpoint > message'."""
        return f"{self.endpoint} > {self.message}"

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return (
            f"StateEvent({self.event_type.value!r}, endpoint={self.endpoint!r}, "
            f"message={self.message!r})"
        )
