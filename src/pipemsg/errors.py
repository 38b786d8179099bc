"""
Error taxonomy for pipe connections and framing.

Every failure the library detects is expressed as one of these exceptions.
Inside the connection managers and the message pump they are caught where
they occur, drive the connection to the faulted state and are reported as
diagnostics; only the codec functions and configuration validation let them
reach the caller.
"""

from enum import Enum
from typing import Optional


class ProtocolErrorKind(Enum):
    """Reasons a frame can be rejected."""

    INVALID_TOKEN = "invalid_token"
    UNEXPECTED_END_OF_STREAM = "unexpected_end_of_stream"
    OVERSIZE_MESSAGE = "oversize_message"


class PipeMsgError(Exception):
    """Base class for all pipemsg errors."""

    def __init__(self, message: str = "", endpoint: Optional[str] = None):
        self.message = message
        self.endpoint = endpoint
        prefix = f"{endpoint} > " if endpoint else ""
        super().__init__(f"{prefix}{message}")


class ConnectTimeout(PipeMsgError):
    """Connect or accept did not complete within the configured timeout."""


class ConnectFailure(PipeMsgError):
    """Connect or accept failed in the underlying transport."""


class ProtocolError(PipeMsgError):
    """A frame on the wire could not be decoded, or a payload cannot be framed."""

    def __init__(
        self,
        kind: ProtocolErrorKind,
        message: str = "",
        endpoint: Optional[str] = None,
    ):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}" if message else kind.value, endpoint)


class SendTimeout(PipeMsgError):
    """The send guard stayed busy for longer than the send timeout."""


class SendFailure(PipeMsgError):
    """Writing a frame to the transport failed."""


class DisposeError(PipeMsgError):
    """Tearing a transport down failed part way. Never fatal."""


__all__ = [
    "ConnectFailure",
    "ConnectTimeout",
    "DisposeError",
    "PipeMsgError",
    "ProtocolError",
    "ProtocolErrorKind",
    "SendFailure",
    "SendTimeout",
]
