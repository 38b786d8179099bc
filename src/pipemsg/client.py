"""
Consumer end of a pipe.

PipeClient connects to a server, reads frames on a background thread and
publishes each decoded message to its subscribers. Connection loss is
recovered automatically for as long as the client is started.
"""

import threading
from typing import Optional, Union, TYPE_CHECKING

from pipemsg.app_logger import LogContext
from pipemsg.config import PipeEndpointConfig
from pipemsg.connection_manager import ClientConnectionManager, ConnectionState
from pipemsg.events import StateEvent, StateEventType
from pipemsg.message_pump import ReadLoop
from pipemsg.notifier import MessageCallback, Notifier, StateCallback, Subscription
from pipemsg.transport import TransportFactory

if TYPE_CHECKING:
    from pipemsg.app_logger import AppLogger


class PipeClient:
    """
    Reads messages from a named pipe server.

    Example:
        client = PipeClient("t1")
        client.subscribe_messages(lambda message: print(message.text))
        client.start()
    """

    def __init__(
        self,
        endpoint: Union[str, PipeEndpointConfig],
        notifier: Optional[Notifier] = None,
        logger: Optional["AppLogger"] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        """
        Initialise the client.

        Args:
            endpoint: Endpoint name, or a full configuration
            notifier: Shared notifier (a private one is created if None)
            logger: Application logger (uses the default logger if None)
            transport_factory: Overrides the Unix socket transport
        """
        from pipemsg.app_logger import get_default_logger

        if isinstance(endpoint, str):
            endpoint = PipeEndpointConfig.for_client(endpoint)
        self._config = endpoint
        self._logger = logger or get_default_logger()
        self._notifier = notifier or Notifier(self._logger)
        self._context = LogContext(
            component="PipeClient", endpoint=self._config.name, role="client"
        )

        self._manager = ClientConnectionManager(
            self._config, transport_factory, self._notifier, self._logger
        )
        self._pump = ReadLoop(self._manager, self._notifier, self._logger)
        self._lifecycle_lock = threading.Lock()

    @property
    def config(self) -> PipeEndpointConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def manager(self) -> ClientConnectionManager:
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
    def messages_received(self) -> int:
        return self._pump.messages_received

    def start(self) -> None:
        """Start the background read loop. Does nothing if already started."""
        with self._lifecycle_lock:
            if self._pump.started:
                return
            self._manager.reopen()
            self._publish(StateEventType.STARTED, "Start")
            self._pump.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop reading and release the pipe. Safe to call more than once.

        The transport is disposed first so that a read blocked on the socket
        returns immediately; the reader thread is then joined.
        """
        with self._lifecycle_lock:
            if not self._pump.started:
                return
            self._pump.stop()
            self._manager.shutdown()
            self._pump.join(timeout)
            self._publish(StateEventType.STOPPED, "Stop")

    def is_ready(self) -> bool:
        return self._pump.started and self._manager.is_ready()

    def try_connect(self) -> bool:
        """Attempt one connection; False if another attempt is running or it failed."""
        if not self._pump.started:
            return False
        return self._manager.try_connect()

    def try_read_message(self) -> bool:
        """Read and publish a single message on the calling thread."""
        return self._pump.try_read_message()

    def subscribe_messages(self, callback: MessageCallback) -> Subscription:
        return self._notifier.subscribe_messages(callback)

    def subscribe_state(self, callback: StateCallback) -> Subscription:
        return self._notifier.subscribe_state(callback)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self._notifier.unsubscribe(subscription)

    def _publish(self, event_type: StateEventType, message: str) -> None:
        self._notifier.publish_state(
            StateEvent(event_type=event_type, endpoint=self._config.name, message=message)
        )

    def __enter__(self) -> "PipeClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        return f"PipeClient({self._config.name!r}, {self._manager.state.value})"
