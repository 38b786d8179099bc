"""Decoded message delivered to subscribers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    """
    One decoded frame.

    Attributes:
        data: Raw payload bytes exactly as received
        text: UTF-8 decoding of data, invalid sequences replaced
        received_at: UTC time the frame was decoded
        source_name: Name of the endpoint the frame arrived on
    """

    data: bytes
    text: str
    received_at: datetime = field(default_factory=_utc_now)
    source_name: str = ""

    @classmethod
    def from_bytes(cls, data: bytes, source_name: str = "") -> "Message":
        """Build a message from raw payload bytes, stamping the current UTC time."""
        return cls(
            data=data,
            text=data.decode("utf-8", errors="replace"),
            received_at=_utc_now(),
            source_name=source_name,
        )

    @property
    def is_valid(self) -> bool:
        """A message is valid when it has a non-empty body."""
        return self.data is not None and bool(self.text)

    @property
    def size(self) -> int:
        return len(self.data) if self.data is not None else 0

    def __str__(self) -> str:
        return (
            f"Message: Pipe: {self.source_name}, Sent: {self.received_at.isoformat()}, "
            f"Size: {self.size} bytes, Body:\n{self.text}"
        )
