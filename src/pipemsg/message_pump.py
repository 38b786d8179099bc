"""
Steady-state message flow on top of a connection manager.

ReadLoop is the client side: one background thread that alternates between
connecting and reading frames until it is stopped. SendPath is the server
side: a guarded write of the most recently requested payload, called from
whatever thread wants to send.

Neither lets a transport or protocol failure escape. Failures fault the
connection, are reported as state events, and show up to callers only as a
False return.
"""

import threading
import time
from typing import Optional, TYPE_CHECKING

from pipemsg.app_logger import LogContext
from pipemsg.connection_manager import ClientConnectionManager, ServerConnectionManager
from pipemsg.errors import (
    ProtocolError,
    ProtocolErrorKind,
    SendFailure,
    SendTimeout,
)
from pipemsg.events import StateEvent, StateEventType
from pipemsg.frame_codec import decode, write_frame
from pipemsg.guards import SingleFlightGuard
from pipemsg.notifier import Notifier

if TYPE_CHECKING:
    from pipemsg.app_logger import AppLogger


class ReadLoop:
    """Connect-and-read loop for the client role."""

    def __init__(
        self,
        manager: ClientConnectionManager,
        notifier: Notifier,
        logger: Optional["AppLogger"] = None,
    ):
        from pipemsg.app_logger import get_default_logger

        self._manager = manager
        self._config = manager.config
        self._notifier = notifier
        self._logger = logger or get_default_logger()
        self._context = LogContext(
            component="ReadLoop", endpoint=self._config.name, role="client"
        )

        self._started = threading.Event()
        self._read_guard = SingleFlightGuard("read")
        self._thread: Optional[threading.Thread] = None
        self._messages_received = 0

    @property
    def started(self) -> bool:
        return self._started.is_set()

    @property
    def read_guard(self) -> SingleFlightGuard:
        return self._read_guard

    @property
    def messages_received(self) -> int:
        return self._messages_received

    def start(self) -> None:
        """Start the background reader thread if it is not already running."""
        if self._started.is_set():
            return
        self._started.set()
        self._thread = threading.Thread(
            target=self.run, name=f"pipemsg-reader-{self._config.name}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Clear the started flag. The loop exits at its next check."""
        self._started.clear()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the reader thread to finish.

        Returns:
            True if the thread is gone (or was never started)
        """
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return thread is None
        thread.join(timeout)
        if thread.is_alive():
            self._logger.warning(
                "Reader thread did not exit in time",
                context=self._context.for_operation("join"),
                timeout=timeout,
            )
            return False
        self._thread = None
        return True

    def run(self) -> None:
        """Loop until stopped: connect while not ready, read while ready."""
        self._logger.debug("Reader loop started", context=self._context.for_operation("run"))
        while self._started.is_set():
            while self._started.is_set() and not self._manager.is_ready():
                if self._manager.try_connect():
                    break
                # Either the attempt failed or another thread is connecting
                time.sleep(self._config.connect_poll_interval)

            while self._started.is_set() and self._manager.is_ready():
                if not self.try_read_message() and self._read_guard.busy:
                    # Another caller is reading; wait for it instead of spinning
                    time.sleep(self._config.connect_poll_interval)

        self._logger.debug("Reader loop finished", context=self._context.for_operation("run"))

    def try_read_message(self) -> bool:
        """
        Read and publish one frame.

        Returns:
            True if a valid message was published. False if not ready, a read
            is already in flight, the message was empty, or the read failed.
        """
        if not self._started.is_set() or not self._manager.is_ready():
            return False
        if not self._read_guard.try_acquire():
            return False

        transport = self._manager.transport
        try:
            if transport is None:
                return False
            message = decode(
                transport,
                source_name=self._config.name,
                max_size=self._config.max_message_size,
            )
            if message.is_valid:
                self._messages_received += 1
                self._notifier.publish_message(message)
            return message.is_valid
        except Exception as e:
            self._on_read_error(e, transport)
            return False
        finally:
            self._read_guard.release()

    def _on_read_error(self, error: Exception, transport) -> None:
        if not self._started.is_set():
            self._logger.debug(
                f"Read interrupted by stop: {error}",
                context=self._context.for_operation("try_read_message"),
            )
            return

        if (
            isinstance(error, ProtocolError)
            and error.kind is ProtocolErrorKind.UNEXPECTED_END_OF_STREAM
        ):
            event_type = StateEventType.DISCONNECTED
        else:
            event_type = StateEventType.READ_ERROR
        self._manager.mark_faulted(error, event_type, transport)


class SendPath:
    """
    Guarded send for the server role.

    Each caller writes its own payload under the send guard, so a True
    return means exactly that payload was framed and flushed once. The most
    recently requested payload is kept in last_payload for inspection; there
    is no queue. A False return means "not sent" and is never retried
    automatically.
    """

    def __init__(
        self,
        manager: ServerConnectionManager,
        notifier: Notifier,
        logger: Optional["AppLogger"] = None,
    ):
        from pipemsg.app_logger import get_default_logger

        self._manager = manager
        self._config = manager.config
        self._notifier = notifier
        self._logger = logger or get_default_logger()
        self._context = LogContext(
            component="SendPath", endpoint=self._config.name, role="server"
        )

        self._started = threading.Event()
        self._send_guard = SingleFlightGuard("send")
        self._last_payload: Optional[bytes] = None
        self._messages_sent = 0
        self._bytes_sent = 0

    @property
    def started(self) -> bool:
        return self._started.is_set()

    @property
    def send_guard(self) -> SingleFlightGuard:
        return self._send_guard

    @property
    def last_payload(self) -> Optional[bytes]:
        return self._last_payload

    @property
    def messages_sent(self) -> int:
        return self._messages_sent

    @property
    def bytes_sent(self) -> int:
        return self._bytes_sent

    def start(self) -> None:
        self._started.set()

    def stop(self) -> None:
        self._started.clear()

    def try_send(self, payload: bytes) -> bool:
        """
        Send a payload, connecting first if needed.

        Args:
            payload: Bytes to frame and write

        Returns:
            True if the frame was written and flushed
        """
        if not self._started.is_set():
            return False

        self._last_payload = payload

        if not self._manager.is_ready() and not self._manager.try_connect():
            return False
        return self._send_payload(payload)

    def _send_payload(self, payload: bytes) -> bool:
        if not self._started.is_set() or not self._manager.is_ready():
            return False

        if not self._send_guard.acquire(
            self._config.send_timeout, self._config.send_poll_interval
        ):
            error = SendTimeout(
                f"Timed out after {self._config.send_timeout}s waiting for previous send",
                self._config.name,
            )
            self._publish(StateEventType.SEND_TIMEOUT, error)
            return False

        transport = self._manager.transport
        try:
            if not self._started.is_set() or transport is None:
                return False

            transport.wait_for_drain()
            written = write_frame(transport, payload)
            self._messages_sent += 1
            self._bytes_sent += written
            self._logger.debug(
                "Frame sent",
                context=self._context.for_operation("send"),
                bytes=written,
            )
            return True
        except ProtocolError as e:
            # Payload cannot be framed; the connection itself is fine
            self._publish(StateEventType.SEND_FAILURE, e)
            return False
        except Exception as e:
            error = SendFailure(f"{type(e).__name__}: {e}", self._config.name)
            error.__cause__ = e
            self._manager.mark_faulted(error, StateEventType.SEND_FAILURE, transport)
            return False
        finally:
            self._send_guard.release()

    def _publish(self, event_type: StateEventType, error: Exception) -> None:
        self._notifier.publish_state(
            StateEvent(
                event_type=event_type,
                endpoint=self._config.name,
                message=getattr(error, "message", None) or str(error),
                error=error,
            )
        )
