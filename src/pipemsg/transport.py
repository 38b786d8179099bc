"""
Named pipe transports.

A pipe endpoint is a Unix domain stream socket bound to a path derived from
the endpoint name (see PipeEndpointConfig.endpoint_path). The server side
binds, listens and accepts exactly one connection per transport instance; the
client side connects, retrying until the server is listening or the timeout
expires. A transport instance is used for one connection only and is closed
before being replaced.

Readiness and end-of-stream checks use select() so that they never block.
"""

import io
import os
import select
import socket
import struct
import sys
import threading
import time
from typing import Callable, Optional, Protocol, runtime_checkable

from pipemsg.config import PipeEndpointConfig


@runtime_checkable
class Transport(Protocol):
    """Byte stream operations the frame codec and managers rely on."""

    def read(self, size: int) -> bytes:
        """Read up to size bytes, blocking until at least one is available. b'' means end of stream."""
        ...

    def read_nowait(self, size: int) -> bytes:
        """Return up to size already-buffered bytes without blocking."""
        ...

    def write(self, data: bytes) -> None:
        ...

    def flush(self) -> None:
        ...

    def wait_for_drain(self, timeout: Optional[float] = None) -> None:
        """Block until the peer has read everything written so far."""
        ...

    def is_connected(self) -> bool:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class ClientTransport(Transport, Protocol):
    def connect(self, timeout: float) -> None:
        """Connect to the endpoint, raising TimeoutError after timeout seconds."""
        ...


@runtime_checkable
class ServerTransport(Transport, Protocol):
    def listen(self) -> None:
        ...

    def accept(self) -> None:
        """Block until a client connects or the accept is cancelled."""
        ...

    def cancel_accept(self) -> None:
        ...


TransportFactory = Callable[[PipeEndpointConfig], Transport]

_PEEK_FLAGS = socket.MSG_PEEK | getattr(socket, "MSG_DONTWAIT", 0)

if sys.platform.startswith("linux"):
    import fcntl
    import termios

    # TIOCOUTQ and SIOCOUTQ share a request number on Linux
    _SIOCOUTQ: Optional[int] = termios.TIOCOUTQ
else:
    _SIOCOUTQ = None

_DRAIN_POLL_INTERVAL = 0.005


class UnixStreamTransport:
    """Shared socket handling for both ends of a pipe."""

    def __init__(self, config: PipeEndpointConfig):
        """
        Initialise the transport for an endpoint.

        Args:
            config: Endpoint configuration (path, direction, buffer sizes)
        """
        self._config = config
        self._path = config.endpoint_path()
        self._sock: Optional[socket.socket] = None
        self._connected = False
        self._closed = False
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    def _require_socket(self) -> socket.socket:
        sock = self._sock
        if sock is None or self._closed:
            raise ConnectionError(f"Pipe {self._path} is not connected")
        return sock

    def read(self, size: int) -> bytes:
        if not self._config.direction.readable:
            raise io.UnsupportedOperation(f"Pipe {self._path} is not open for reading")
        data = self._require_socket().recv(size)
        if not data:
            self._connected = False
        return data

    def read_nowait(self, size: int) -> bytes:
        sock = self._require_socket()
        readable, _, _ = select.select([sock], [], [], 0)
        if not readable:
            return b""
        data = sock.recv(size)
        if not data:
            self._connected = False
        return data

    def write(self, data: bytes) -> None:
        if not self._config.direction.writable:
            raise io.UnsupportedOperation(f"Pipe {self._path} is not open for writing")
        self._require_socket().sendall(data)

    def flush(self) -> None:
        # sendall() hands every byte to the kernel; nothing is held back here
        self._require_socket()

    def wait_for_drain(self, timeout: Optional[float] = None) -> None:
        """
        Block until the peer has consumed everything written so far.

        On Linux the unread byte count comes from SIOCOUTQ. Elsewhere only
        the wait for send-buffer space is available.

        Raises:
            TimeoutError: If output is still queued when the timeout expires
        """
        sock = self._require_socket()
        wait = self._config.send_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        _, writable, _ = select.select([], [sock], [], wait)
        if not writable:
            raise TimeoutError(f"Pipe {self._path} did not drain within {wait}s")
        if _SIOCOUTQ is None:
            return

        while self.pending_output() > 0:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"Pipe {self._path} did not drain within {wait}s")
            time.sleep(min(_DRAIN_POLL_INTERVAL, remaining))

    def pending_output(self) -> int:
        """Bytes written but not yet read by the peer, or 0 where unknown."""
        if _SIOCOUTQ is None:
            return 0
        sock = self._require_socket()
        queued = fcntl.ioctl(sock.fileno(), _SIOCOUTQ, struct.pack("i", 0))
        return struct.unpack("i", queued)[0]

    def is_connected(self) -> bool:
        """
        Check whether the peer is still attached.

        An orderly shutdown by the peer shows up as a readable socket with
        nothing to peek; that marks the transport disconnected.
        """
        sock = self._sock
        if sock is None or self._closed or not self._connected:
            return False
        try:
            readable, _, _ = select.select([sock], [], [], 0)
            if readable and sock.recv(1, _PEEK_FLAGS) == b"":
                self._connected = False
        except BlockingIOError:
            pass
        except (OSError, ValueError):
            self._connected = False
        return self._connected

    def close(self) -> None:
        """Shut the socket down and close it. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._connected = False
            sock, self._sock = self._sock, None

        if sock is not None:
            try:
                # shutdown wakes any thread blocked in recv() on this socket
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            sock.close()

    def _attach(self, sock: socket.socket) -> None:
        with self._lock:
            if self._closed:
                sock.close()
                raise ConnectionAbortedError(f"Pipe {self._path} closed while connecting")
            self._sock = sock
            self._connected = True


class UnixClientTransport(UnixStreamTransport):
    """Client end: connects to a listening server."""

    def connect(self, timeout: float) -> None:
        """
        Connect to the server socket, retrying while it is not yet listening.

        Args:
            timeout: Total time to keep trying, in seconds

        Raises:
            TimeoutError: If no server accepted the connection in time
            ConnectionAbortedError: If the transport was closed while waiting
            OSError: For any other socket failure
        """
        deadline = time.monotonic() + timeout
        poll_interval = self._config.connect_poll_interval

        while True:
            if self._closed:
                raise ConnectionAbortedError(f"Pipe {self._path} closed while connecting")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"Timed out after {timeout}s waiting for {self._path}")

            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.settimeout(remaining)
                sock.connect(self._path)
            except (FileNotFoundError, ConnectionRefusedError):
                # No server listening yet
                sock.close()
                time.sleep(min(poll_interval, max(0.0, deadline - time.monotonic())))
                continue
            except BaseException:
                sock.close()
                raise

            sock.settimeout(None)
            self._attach(sock)
            return


class UnixServerTransport(UnixStreamTransport):
    """Server end: listens on the endpoint path and accepts one client."""

    def __init__(self, config: PipeEndpointConfig):
        super().__init__(config)
        self._listener: Optional[socket.socket] = None
        self._accept_cancelled = threading.Event()

    @property
    def listening(self) -> bool:
        return self._listener is not None

    def listen(self) -> None:
        """
        Bind and listen on the endpoint path.

        A stale socket file left by a previous run is removed first. The
        listen backlog is the configured maximum number of instances.
        """
        with self._lock:
            if self._listener is not None:
                return
            if self._closed:
                raise ConnectionAbortedError(f"Pipe {self._path} is closed")

            directory = os.path.dirname(self._path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            if os.path.exists(self._path):
                os.unlink(self._path)

            listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                listener.bind(self._path)
                listener.listen(self._config.max_instances)
            except OSError:
                listener.close()
                raise
            self._listener = listener

    def accept(self) -> None:
        """
        Wait for one client connection.

        Raises:
            ConnectionAbortedError: If cancel_accept() or close() was called
        """
        self.listen()
        listener = self._listener
        poll_interval = self._config.connect_poll_interval

        while not self._accept_cancelled.is_set():
            try:
                readable, _, _ = select.select([listener], [], [], poll_interval)
                if not readable:
                    continue
                conn, _ = listener.accept()
            except (OSError, ValueError):
                if self._accept_cancelled.is_set():
                    break
                raise

            self._configure_connection(conn)
            self._attach(conn)
            # The single connection slot is filled; stop queueing further clients
            self._close_listener()
            return

        raise ConnectionAbortedError(f"Accept on {self._path} was cancelled")

    def cancel_accept(self) -> None:
        self._accept_cancelled.set()

    def _configure_connection(self, conn: socket.socket) -> None:
        try:
            conn.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, self._config.out_buffer_size)
            conn.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, self._config.in_buffer_size)
        except OSError:
            # Buffer sizes are hints; the kernel may refuse them
            pass

    def _close_listener(self) -> None:
        with self._lock:
            listener, self._listener = self._listener, None
        if listener is None:
            return
        listener.close()
        try:
            os.unlink(self._path)
        except OSError:
            # Already removed, or taken over by another server
            pass

    def close(self) -> None:
        self.cancel_accept()
        super().close()
        self._close_listener()


def create_client_transport(config: PipeEndpointConfig) -> UnixClientTransport:
    """Default factory for client transports."""
    return UnixClientTransport(config)


def create_server_transport(config: PipeEndpointConfig) -> UnixServerTransport:
    """Default factory for server transports."""
    return UnixServerTransport(config)
