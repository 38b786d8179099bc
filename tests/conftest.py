"""
Shared test fixtures and configuration for pipemsg tests.

This module provides in-memory transports, event recorders and socket
directories used across the pipemsg test suite.
"""

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Generator, List, Optional

import pytest

from pipemsg.app_logger import NullAppLogger, set_default_logger
from pipemsg.events import StateEvent, StateEventType
from pipemsg.notifier import Notifier


def pytest_addoption(parser):
    """Add command line options to enable specific test categories."""
    parser.addoption(
        "--enable-slow",
        action="store_true",
        default=False,
        help="Enable tests marked with @pytest.mark.slow (skipped by default)",
    )
    parser.addoption(
        "--enable-hanging",
        action="store_true",
        default=False,
        help="Enable tests marked with @pytest.mark.hanging (skipped by default)",
    )


def pytest_configure(config):
    """Register the custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (>5 seconds) - skipped by default, use --enable-slow",
    )
    config.addinivalue_line(
        "markers",
        "hanging: mark test as hanging/problematic - skipped by default, use --enable-hanging",
    )
    config.addinivalue_line("markers", "integration: uses real Unix domain sockets")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to conditionally skip marked tests."""
    enable_slow = config.getoption("--enable-slow") or os.getenv(
        "ENABLE_SLOW_TESTS", ""
    ).lower() in ("true", "1", "yes")
    enable_hanging = config.getoption("--enable-hanging") or os.getenv(
        "ENABLE_HANGING_TESTS", ""
    ).lower() in ("true", "1", "yes")

    if not enable_slow:
        skip_slow = pytest.mark.skip(
            reason="Use --enable-slow or set ENABLE_SLOW_TESTS=true to run slow tests"
        )
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)

    if not enable_hanging:
        skip_hanging = pytest.mark.skip(
            reason="Use --enable-hanging or set ENABLE_HANGING_TESTS=true to run hanging tests"
        )
        for item in items:
            if "hanging" in item.keywords:
                item.add_marker(skip_hanging)


@pytest.fixture(autouse=True)
def quiet_default_logger() -> Generator[logging.Logger, None, None]:
    """
    Keep components created without a logger from writing to the console.

    The pipemsg Python logger is put back the way it was afterwards, since
    configuring logging replaces its handlers and stops propagation.
    """
    python_logger = logging.getLogger("pipemsg")
    handlers = list(python_logger.handlers)
    level = python_logger.level
    propagate = python_logger.propagate
    set_default_logger(NullAppLogger())

    yield python_logger

    set_default_logger(None)
    for handler in list(python_logger.handlers):
        python_logger.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        python_logger.addHandler(handler)
    python_logger.setLevel(level)
    python_logger.propagate = propagate


@pytest.fixture
def null_logger() -> NullAppLogger:
    return NullAppLogger()


@pytest.fixture
def socket_dir() -> Generator[str, None, None]:
    """
    Short temporary directory for socket files.

    Unix socket paths are limited to around 100 bytes, so the directory is
    kept directly under /tmp rather than under pytest's tmp_path.
    """
    with tempfile.TemporaryDirectory(prefix="pm-", dir="/tmp") as directory:
        yield directory


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as directory:
        yield Path(directory)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll predicate until it returns True or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class EventRecorder:
    """Collects messages and state events published by a notifier."""

    def __init__(self):
        self.messages = []
        self.events: List[StateEvent] = []
        self._lock = threading.Lock()

    def on_message(self, message) -> None:
        with self._lock:
            self.messages.append(message)

    def on_state_event(self, event: StateEvent) -> None:
        with self._lock:
            self.events.append(event)

    def attach(self, notifier: Notifier) -> "EventRecorder":
        notifier.subscribe_messages(self.on_message)
        notifier.subscribe_state(self.on_state_event)
        return self

    def types(self) -> List[StateEventType]:
        with self._lock:
            return [event.event_type for event in self.events]

    def of_type(self, event_type: StateEventType) -> List[StateEvent]:
        with self._lock:
            return [event for event in self.events if event.event_type is event_type]

    def texts(self) -> List[str]:
        with self._lock:
            return [message.text for message in self.messages]


@pytest.fixture
def notifier(null_logger) -> Notifier:
    return Notifier(null_logger)


@pytest.fixture
def recorder(notifier) -> EventRecorder:
    return EventRecorder().attach(notifier)


class ChunkedTransport:
    """
    In-memory transport.

    Reads hand out at most chunk_size bytes at a time. A blocking transport
    waits in read() until data is fed, the stream is ended or it is closed;
    a non-blocking one returns b'' (end of stream) when its buffer is empty.
    """

    def __init__(
        self,
        data: bytes = b"",
        chunk_size: Optional[int] = None,
        blocking: bool = False,
        connected: bool = True,
    ):
        self._buffer = bytearray(data)
        self._cond = threading.Condition()
        self._eof = False
        self.chunk_size = chunk_size
        self.blocking = blocking
        self.connected = connected
        self.closed = False
        self.written = bytearray()
        self.read_sizes: List[int] = []
        self.flush_calls = 0
        self.close_calls = 0
        self.fail_writes = False
        self.fail_flush = False
        self.drain_gate: Optional[threading.Event] = None
        self.drain_waiting = threading.Event()

    def feed(self, data: bytes) -> None:
        with self._cond:
            self._buffer.extend(data)
            self._cond.notify_all()

    def end(self) -> None:
        """Simulate the peer closing its end."""
        with self._cond:
            self._eof = True
            self._cond.notify_all()

    def _take(self, size: int) -> bytes:
        count = min(size, len(self._buffer))
        if self.chunk_size:
            count = min(count, self.chunk_size)
        data = bytes(self._buffer[:count])
        del self._buffer[:count]
        if not data and (self._eof or self.closed):
            self.connected = False
        return data

    def read(self, size: int) -> bytes:
        with self._cond:
            self.read_sizes.append(size)
            if self.blocking:
                self._cond.wait_for(lambda: self._buffer or self._eof or self.closed)
            return self._take(size)

    def read_nowait(self, size: int) -> bytes:
        with self._cond:
            return self._take(size)

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise BrokenPipeError("pipe is broken")
        self.written.extend(data)

    def flush(self) -> None:
        self.flush_calls += 1
        if self.fail_flush:
            raise OSError("flush failed")

    def wait_for_drain(self, timeout: Optional[float] = None) -> None:
        gate = self.drain_gate
        if gate is not None:
            self.drain_waiting.set()
            gate.wait()

    def is_connected(self) -> bool:
        return self.connected and not self.closed and not (self._eof and not self._buffer)

    def close(self) -> None:
        with self._cond:
            self.close_calls += 1
            self.closed = True
            self.connected = False
            self._cond.notify_all()


class FakeClientTransport(ChunkedTransport):
    """Client transport whose connect() runs an optional hook first."""

    def __init__(self, on_connect: Optional[Callable] = None, **kwargs):
        kwargs.setdefault("connected", False)
        super().__init__(**kwargs)
        self.on_connect = on_connect
        self.connect_timeout: Optional[float] = None

    def connect(self, timeout: float) -> None:
        self.connect_timeout = timeout
        if self.on_connect is not None:
            self.on_connect(self, timeout)
        self.connected = True


class FakeServerTransport(ChunkedTransport):
    """Server transport whose accept() succeeds at once unless told to wait."""

    def __init__(self, auto_accept: bool = True, **kwargs):
        kwargs.setdefault("connected", False)
        super().__init__(**kwargs)
        self.listening = False
        self.client_arrived = threading.Event()
        self.accept_cancelled = threading.Event()
        if auto_accept:
            self.client_arrived.set()

    def listen(self) -> None:
        self.listening = True

    def accept(self) -> None:
        while not self.client_arrived.wait(0.01):
            if self.accept_cancelled.is_set():
                raise ConnectionAbortedError("accept cancelled")
        self.connected = True

    def cancel_accept(self) -> None:
        self.accept_cancelled.set()


class FakeTransportFactory:
    """Callable transport factory that remembers every transport it made."""

    def __init__(self, transport_class=FakeClientTransport, **kwargs):
        self.transport_class = transport_class
        self.kwargs = kwargs
        self.created: List[ChunkedTransport] = []
        self._lock = threading.Lock()

    def __call__(self, config) -> ChunkedTransport:
        transport = self.transport_class(**self.kwargs)
        with self._lock:
            self.created.append(transport)
        return transport

    @property
    def last(self) -> Optional[ChunkedTransport]:
        with self._lock:
            return self.created[-1] if self.created else None
