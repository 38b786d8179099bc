"""
Pipemsg - framed text and binary messages over named pipes.

A PipeServer pushes length-prefixed frames to a single PipeClient over a
local stream socket. Both ends connect and reconnect on their own and report
what happens to them as state events rather than exceptions.
"""

__version__ = "1.0.0"

from .client import PipeClient
from .config import PipeDirection, PipeEndpointConfig, Role
from .errors import (
    ConnectFailure,
    ConnectTimeout,
    DisposeError,
    PipeMsgError,
    ProtocolError,
    ProtocolErrorKind,
    SendFailure,
    SendTimeout,
)
from .events import EventLevel, StateEvent, StateEventType
from .message import Message
from .notifier import Notifier, Subscription
from .server import PipeServer

__all__ = [
    "__version__",
    "ConnectFailure",
    "ConnectTimeout",
    "DisposeError",
    "EventLevel",
    "Message",
    "Notifier",
    "PipeClient",
    "PipeDirection",
    "PipeEndpointConfig",
    "PipeMsgError",
    "PipeServer",
    "ProtocolError",
    "ProtocolErrorKind",
    "Role",
    "SendFailure",
    "SendTimeout",
    "StateEvent",
    "StateEventType",
    "Subscription",
]
