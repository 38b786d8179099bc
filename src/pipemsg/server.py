"""
Producer end of a pipe.

PipeServer listens on a named endpoint, waits for a client and writes framed
payloads to it. A lost client is replaced on the next send: the server
listens again and waits for a new connection before writing.
"""

import signal
import threading
from typing import Optional, Union, TYPE_CHECKING

from pipemsg.app_logger import LogContext
from pipemsg.config import PipeEndpointConfig
from pipemsg.connection_manager import ConnectionState, ServerConnectionManager
from pipemsg.events import StateEvent, StateEventType
from pipemsg.message_pump import SendPath
from pipemsg.notifier import Notifier, StateCallback, Subscription
from pipemsg.transport import TransportFactory

if TYPE_CHECKING:
    from pipemsg.app_logger import AppLogger


class PipeServer:
    """
    Writes messages to the client of a named pipe.

    send() and send_bytes() never raise on transport problems; they return
    False and the reason is published as a state event.
    """

    def __init__(
        self,
        endpoint: Union[str, PipeEndpointConfig],
        notifier: Optional[Notifier] = None,
        logger: Optional["AppLogger"] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """
        Initialise the server.

        Args:
            endpoint: Endpoint name, or a full configuration
            notifier: Shared notifier (a private one is created if None)
            logger: Application logger (uses the default logger if None)
            transport_factory: Overrides the Unix socket transport
        """
        from pipemsg.app_logger import get_default_logger

        if isinstance(endpoint, str):
            endpoint = PipeEndpointConfig.for_server(endpoint)
        self._config = endpoint
        self._logger = logger or get_default_logger()
        self._notifier = notifier or Notifier(self._logger)
        self._context = LogContext(
            component="PipeServer", endpoint=self._config.name, role="server"
        )

        self._manager = ServerConnectionManager(
            self._config, transport_factory, self._notifier, self._logger
        )
        self._pump = SendPath(self._manager, self._notifier, self._logger)
        self._connect_thread: Optional[threading.Thread] = None
        self._stop_requested = threading.Event()
        self._lifecycle_lock = threading.Lock()

    @property
    def config(self) -> PipeEndpointConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def manager(self) -> ServerConnectionManager:
        return self._manager

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def state(self) -> ConnectionState:
        return self._manager.state

    @property
    def is_started(self) -> bool:
        return self._pump.started

    @property
    def stop_requested(self) -> bool:
        """True once a shutdown signal has been received."""
        return self._stop_requested.is_set()

    @property
    def last_payload(self) -> Optional[bytes]:
        """Most recent payload handed to send(), whether or not it was written."""
        return self._pump.last_payload

    @property
    def messages_sent(self) -> int:
        return self._pump.messages_sent

    @property
    def bytes_sent(self) -> int:
        return self._pump.bytes_sent

    def start(self, wait_for_connection: bool = True) -> bool:
        """
        Start the server and make the first connection attempt.

        Args:
            wait_for_connection: Block until a client connects or the timeout
                expires. If False the attempt runs on a background thread.

        Returns:
            True if a client is connected when this returns
        """
        with self._lifecycle_lock:
            if not self._pump.started:
                self._stop_requested.clear()
                self._manager.reopen()
                self._pump.start()
                self._publish(StateEventType.STARTED, "Start")

        if wait_for_connection:
            return self._manager.try_connect()

        self._connect_thread = threading.Thread(
            target=self._manager.try_connect,
            name=f"pipemsg-connect-{self._config.name}",
            daemon=True,
        )
        self._connect_thread.start()
        return False

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Stop sending and release the pipe. Safe to call more than once."""
        with self._lifecycle_lock:
            if not self._pump.started:
                return
            self._pump.stop()
            self._manager.shutdown()

            thread, self._connect_thread = self._connect_thread, None
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout)
            self._publish(StateEventType.STOPPED, "Stop")

    def is_ready(self) -> bool:
        return self._pump.started and self._manager.is_ready()

    def try_connect(self) -> bool:
        if not self._pump.started:
            return False
        return self._manager.try_connect()

    def send(self, text: str) -> bool:
        """
        Send a text message as UTF-8.

        Returns:
            True if the message was written; False if it was not sent
        """
        return self._pump.try_send(text.encode("utf-8"))

    def send_bytes(self, data: bytes) -> bool:
        """Send a binary payload."""
        return self._pump.try_send(bytes(data))

    def subscribe_state(self, callback: StateCallback) -> Subscription:
        return self._notifier.subscribe_state(callback)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self._notifier.unsubscribe(subscription)

    def setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown."""

        def signal_handler(signum, frame):
            self._logger.info(
                f"Received signal {signum}, shutting down",
                context=self._context.for_operation("signal"),
            )
            self._stop_requested.set()
            self._manager.shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _publish(self, event_type: StateEventType, message: str) -> None:
        self._notifier.publish_state(
            StateEvent(event_type=event_type, endpoint=self._config.name, message=message)
        )

    def __enter__(self) -> "PipeServer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"PipeServer({self._config.name!r}, {self._manager.state.value})"
