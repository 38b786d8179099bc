"""
Wire framing for pipe messages.

Every message travels as one frame:

    offset 0..1   token    u16 little-endian, always 0x544C (bytes b"LT")
    offset 2..5   length   u32 little-endian, payload byte count
    offset 6..    payload  raw bytes; text payloads are UTF-8

The explicit length lets the reader allocate the payload buffer once and
avoids escaping delimiters. The token catches a reader that has lost frame
alignment, e.g. after a torn reconnect.
"""

import struct
from typing import TYPE_CHECKING

from pipemsg.config import MAX_PAYLOAD_SIZE
from pipemsg.errors import ProtocolError, ProtocolErrorKind
from pipemsg.message import Message

if TYPE_CHECKING:
    from pipemsg.transport import Transport

MESSAGE_TOKEN = 0x544C
HEADER = struct.Struct("<HI")
TOKEN = struct.Struct("<H")
LENGTH = struct.Struct("<I")
HEADER_SIZE = HEADER.size

READ_CHUNK_SIZE = 64 * 1024
DRAIN_CHUNK_SIZE = 1024


def encode(payload: bytes) -> bytes:
    """
    Frame a payload.

    Args:
        payload: Bytes to send

    Returns:
        token || length || payload

    Raises:
        ProtocolError: OVERSIZE_MESSAGE if the payload does not fit a u32 length
    """
    size = len(payload)
    if size > MAX_PAYLOAD_SIZE:
        raise ProtocolError(
            ProtocolErrorKind.OVERSIZE_MESSAGE,
            f"payload of {size} bytes exceeds {MAX_PAYLOAD_SIZE}",
        )
    return HEADER.pack(MESSAGE_TOKEN, size) + bytes(payload)


def encode_text(text: str) -> bytes:
    """Frame a string as UTF-8."""
    return encode(text.encode("utf-8"))


def read_exactly(transport: "Transport", count: int) -> bytes:
    """
    Read exactly count bytes, accumulating partial reads into one buffer.

    The buffer grows with the bytes actually received, so a header that
    declares a huge length costs nothing until the payload arrives.

    Raises:
        ProtocolError: UNEXPECTED_END_OF_STREAM if the stream ends first
    """
    buffer = bytearray()
    while len(buffer) < count:
        chunk = transport.read(min(count - len(buffer), READ_CHUNK_SIZE))
        if not chunk:
            raise ProtocolError(
                ProtocolErrorKind.UNEXPECTED_END_OF_STREAM,
                f"stream ended after {len(buffer)} of {count} bytes",
            )
        buffer.extend(chunk)
    return bytes(buffer)


def drain(transport: "Transport") -> int:
    """
    Discard whatever the transport has buffered, without blocking.

    Used to help the stream resynchronise after a corrupt header. Failures
    are ignored; the caller is already reporting a protocol error.

    Returns:
        Number of bytes discarded
    """
    discarded = 0
    try:
        while True:
            chunk = transport.read_nowait(DRAIN_CHUNK_SIZE)
            if not chunk:
                break
            discarded += len(chunk)
    except (OSError, ValueError):
        pass
    return discarded


def read_frame(transport: "Transport", max_size: int = MAX_PAYLOAD_SIZE) -> bytes:
    """
    Read one frame and return its payload.

    Raises:
        ProtocolError: INVALID_TOKEN, OVERSIZE_MESSAGE or UNEXPECTED_END_OF_STREAM
    """
    (token,) = TOKEN.unpack(read_exactly(transport, TOKEN.size))
    if token != MESSAGE_TOKEN:
        discarded = drain(transport)
        raise ProtocolError(
            ProtocolErrorKind.INVALID_TOKEN,
            f"received 0x{token:04X}, expected 0x{MESSAGE_TOKEN:04X}; "
            f"discarded {discarded} buffered bytes",
        )

    (length,) = LENGTH.unpack(read_exactly(transport, LENGTH.size))
    if length > max_size:
        drain(transport)
        raise ProtocolError(
            ProtocolErrorKind.OVERSIZE_MESSAGE,
            f"frame of {length} bytes exceeds limit of {max_size}",
        )

    try:
        return read_exactly(transport, length)
    except MemoryError as e:
        drain(transport)
        raise ProtocolError(
            ProtocolErrorKind.OVERSIZE_MESSAGE,
            f"cannot allocate {length} bytes for frame",
        ) from e


def decode(
    transport: "Transport",
    source_name: str = "",
    max_size: int = MAX_PAYLOAD_SIZE,
) -> Message:
    """
    Read one frame from the transport and wrap it in a Message.

    Args:
        transport: Stream to read from; blocks until the frame is complete
        source_name: Endpoint name recorded on the message
        max_size: Largest payload accepted

    Returns:
        Message stamped with the current UTC time; invalid UTF-8 in the
        payload is replaced rather than rejected
    """
    return Message.from_bytes(read_frame(transport, max_size), source_name=source_name)


def write_frame(transport: "Transport", payload: bytes) -> int:
    """
    Write one framed payload and flush.

    Returns:
        Total bytes written including the 6-byte header
    """
    frame = encode(payload)
    transport.write(frame)
    transport.flush()
    return len(frame)
