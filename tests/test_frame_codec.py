"""
Tests for the wire framing codec.

This module tests the frame layout, decoding across partial reads, and
rejection of corrupt, truncated and oversize frames.
"""

import tracemalloc

import pytest

from pipemsg.config import MAX_PAYLOAD_SIZE
from pipemsg.errors import ProtocolError, ProtocolErrorKind
from pipemsg.frame_codec import (
    HEADER_SIZE,
    MESSAGE_TOKEN,
    decode,
    drain,
    encode,
    encode_text,
    read_exactly,
    read_frame,
    write_frame,
)

from conftest import ChunkedTransport


class TestEncode:
    """Test frame encoding."""

    def test_header_layout(self):
        """Test that the token and length are little-endian."""
        # Act
        frame = encode(b"hello")

        # Assert
        assert frame[:2] == b"LT"
        assert frame[2:6] == (5).to_bytes(4, "little")
        assert frame[6:] == b"hello"
        assert HEADER_SIZE == 6
        assert MESSAGE_TOKEN == 0x544C

    def test_empty_payload_is_header_only(self):
        assert encode(b"") == b"LT\x00\x00\x00\x00"

    def test_encode_text_uses_utf8(self):
        # Act
        frame = encode_text("héllo")

        # Assert
        assert frame[2:6] == (6).to_bytes(4, "little")
        assert frame[6:] == "héllo".encode("utf-8")

    def test_oversize_payload_rejected(self):
        """Test that a payload whose length does not fit in u32 is refused."""

        class HugePayload:
            def __len__(self):
                return MAX_PAYLOAD_SIZE + 1

        # Act & Assert
        with pytest.raises(ProtocolError) as exc_info:
            encode(HugePayload())
        assert exc_info.value.kind is ProtocolErrorKind.OVERSIZE_MESSAGE


class TestDecode:
    """Test frame decoding from a transport."""

    @pytest.mark.parametrize("size", [0, 1, 1000, 65536, 2**20])
    def test_round_trip(self, size):
        """Test that decode returns exactly what encode framed."""
        # Arrange
        payload = bytes(i % 251 for i in range(size))
        transport = ChunkedTransport(encode(payload))

        # Act
        result = read_frame(transport)

        # Assert
        assert result == payload

    def test_one_byte_chunks(self):
        """Test that partial reads are accumulated into a whole frame."""
        # Arrange
        transport = ChunkedTransport(encode_text("partial reads"), chunk_size=1)

        # Act
        message = decode(transport, source_name="t1")

        # Assert
        assert message.text == "partial reads"
        assert message.source_name == "t1"

    def test_consecutive_frames(self):
        # Arrange
        transport = ChunkedTransport(encode_text("one") + encode_text("two"), chunk_size=3)

        # Act
        first = decode(transport)
        second = decode(transport)

        # Assert
        assert (first.text, second.text) == ("one", "two")

    def test_invalid_token_rejected_without_hanging(self):
        """Test that a bad token fails fast and drains buffered bytes."""
        # Arrange
        transport = ChunkedTransport(b"XX" + (3).to_bytes(4, "little") + b"abc" + b"junk")

        # Act
        with pytest.raises(ProtocolError) as exc_info:
            read_frame(transport)

        # Assert
        assert exc_info.value.kind is ProtocolErrorKind.INVALID_TOKEN
        assert transport.read_nowait(100) == b""

    def test_byte_swapped_token_rejected(self):
        transport = ChunkedTransport(b"TL\x00\x00\x00\x00")

        with pytest.raises(ProtocolError) as exc_info:
            read_frame(transport)
        assert exc_info.value.kind is ProtocolErrorKind.INVALID_TOKEN

    def test_truncated_header(self):
        transport = ChunkedTransport(b"LT\x05")

        with pytest.raises(ProtocolError) as exc_info:
            read_frame(transport)
        assert exc_info.value.kind is ProtocolErrorKind.UNEXPECTED_END_OF_STREAM

    def test_truncated_payload(self):
        """Test that a stream ending mid-payload is reported as end of stream."""
        # Arrange
        transport = ChunkedTransport(encode(b"0123456789")[:-4])

        # Act & Assert
        with pytest.raises(ProtocolError) as exc_info:
            read_frame(transport)
        assert exc_info.value.kind is ProtocolErrorKind.UNEXPECTED_END_OF_STREAM

    def test_empty_stream(self):
        with pytest.raises(ProtocolError) as exc_info:
            read_frame(ChunkedTransport(b""))
        assert exc_info.value.kind is ProtocolErrorKind.UNEXPECTED_END_OF_STREAM

    def test_length_above_limit_rejected(self):
        # Arrange
        transport = ChunkedTransport(encode(b"x" * 11))

        # Act & Assert
        with pytest.raises(ProtocolError) as exc_info:
            read_frame(transport, max_size=10)
        assert exc_info.value.kind is ProtocolErrorKind.OVERSIZE_MESSAGE

    def test_huge_declared_length_with_short_body(self):
        """Test that memory follows the bytes received, not the declared length."""
        # Arrange
        header = MESSAGE_TOKEN.to_bytes(2, "little") + (1 << 30).to_bytes(4, "little")
        transport = ChunkedTransport(header + b"x")
        tracemalloc.start()

        # Act
        try:
            with pytest.raises(ProtocolError) as exc_info:
                read_frame(transport)
            _, peak = tracemalloc.get_traced_memory()
        finally:
            tracemalloc.stop()

        # Assert
        assert exc_info.value.kind is ProtocolErrorKind.UNEXPECTED_END_OF_STREAM
        assert "after 1 of 1073741824 bytes" in str(exc_info.value)
        assert peak < 1024 * 1024

    def test_invalid_utf8_is_replaced(self):
        """Test that undecodable bytes become replacement characters."""
        # Arrange
        transport = ChunkedTransport(encode(b"ok\xff\xfe"))

        # Act
        message = decode(transport)

        # Assert
        assert message.data == b"ok\xff\xfe"
        assert message.text.startswith("ok")
        assert "�" in message.text
        assert message.is_valid

    def test_empty_payload_is_not_a_valid_message(self):
        message = decode(ChunkedTransport(encode(b"")))

        assert message.data == b""
        assert not message.is_valid

    def test_received_at_is_utc(self):
        message = decode(ChunkedTransport(encode_text("when")))

        assert message.received_at.utcoffset().total_seconds() == 0


class TestHelpers:
    """Test the lower-level read, drain and write helpers."""

    def test_read_exactly_bounds_each_read(self):
        # Arrange
        transport = ChunkedTransport(b"abcdef", chunk_size=4)

        # Act
        data = read_exactly(transport, 6)

        # Assert
        assert data == b"abcdef"
        assert transport.read_sizes == [6, 2]

    def test_drain_counts_discarded_bytes(self):
        transport = ChunkedTransport(b"z" * 3000)

        assert drain(transport) == 3000
        assert drain(transport) == 0

    def test_drain_ignores_transport_errors(self):
        class BrokenTransport(ChunkedTransport):
            def read_nowait(self, size):
                raise OSError("gone")

        assert drain(BrokenTransport()) == 0

    def test_write_frame_writes_and_flushes(self):
        # Arrange
        transport = ChunkedTransport()

        # Act
        written = write_frame(transport, b"payload")

        # Assert
        assert written == HEADER_SIZE + 7
        assert bytes(transport.written) == encode(b"payload")
        assert transport.flush_calls == 1
