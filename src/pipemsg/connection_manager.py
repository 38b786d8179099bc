"""
Connection lifecycle management for both ends of a pipe.

A ConnectionManager owns at most one live transport. It creates a fresh
transport for every connection attempt, drives it to READY or FAULTED, and
always disposes it before creating the next one. Connection attempts are
single-flight: a caller that arrives while an attempt is running is turned
away immediately with False instead of queueing behind it.

State machine:

    IDLE --try_connect--> CONNECTING --ok--> READY
                               |               |
                        timeout/error     read/write error
                               v               v
                            FAULTED ---dispose---> IDLE
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

from pipemsg.app_logger import LogContext
from pipemsg.config import PipeEndpointConfig, Role
from pipemsg.errors import ConnectFailure, ConnectTimeout, DisposeError
from pipemsg.events import StateEvent, StateEventType
from pipemsg.guards import SingleFlightGuard
from pipemsg.notifier import Notifier
from pipemsg.transport import (
    Transport,
    TransportFactory,
    create_client_transport,
    create_server_transport,
)

if TYPE_CHECKING:
    from pipemsg.app_logger import AppLogger


class ConnectionState(Enum):
    """Connection states of a manager."""

    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    FAULTED = "faulted"


class ConnectionManager:
    """
    Base connection manager with single-flight connect and safe disposal.

    Subclasses implement _establish() to turn a freshly created transport
    into a connected one (connect for clients, accept for servers).
    """

    role: Role = Role.CLIENT

    def __init__(
        self,
        config: PipeEndpointConfig,
        transport_factory: TransportFactory,
        notifier: Optional[Notifier] = None,
        logger: Optional["AppLogger"] = None,
    ):
        """
        Initialise the connection manager.

        Args:
            config: Endpoint configuration
            transport_factory: Creates a new transport for each attempt
            notifier: Receives state events (a private one is created if None)
            logger: Application logger (uses the default logger if None)
        """
        from pipemsg.app_logger import get_default_logger

        self._config = config
        self._transport_factory = transport_factory
        self._logger = logger or get_default_logger()
        self._notifier = notifier or Notifier(self._logger)
        self._context = LogContext(
            component=type(self).__name__, endpoint=config.name, role=self.role.value
        )

        self._state = ConnectionState.IDLE
        self._transport: Optional[Transport] = None
        self._has_error = False
        self._last_error: Optional[BaseException] = None
        self._closed = False
        self._connect_attempts = 0

        self._connect_guard = SingleFlightGuard("connect")
        self._state_lock = threading.RLock()

    @property
    def config(self) -> PipeEndpointConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def connect_attempts(self) -> int:
        return self._connect_attempts

    @property
    def connect_guard(self) -> SingleFlightGuard:
        return self._connect_guard

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def _emit(
        self,
        event_type: StateEventType,
        message: str,
        error: Optional[BaseException] = None,
        **metadata: Any,
    ) -> None:
        self._notifier.publish_state(
            StateEvent(
                event_type=event_type,
                endpoint=self._config.name,
                message=message,
                error=error,
                metadata=metadata,
            )
        )

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        if previous is not state:
            self._logger.debug(
                f"State {previous.value} -> {state.value}",
                context=self._context.for_operation("set_state"),
            )

    def is_ready(self) -> bool:
        """READY, no pending error, and the transport still reports a connection."""
        with self._state_lock:
            transport = self._transport
            if self._state is not ConnectionState.READY or self._has_error:
                return False
        return transport is not None and transport.is_connected()

    def try_connect(self) -> bool:
        """
        Make one connection attempt unless one is already running.

        Returns:
            True if the manager is ready afterwards. False if another attempt
            is in flight, the manager is shut down, or the attempt failed.
        """
        if not self._connect_guard.try_acquire():
            self._logger.debug(
                "Connect attempt already in progress",
                context=self._context.for_operation("try_connect"),
            )
            return False

        try:
            if self._closed:
                return False

            if self.is_ready():
                self._logger.debug(
                    "Already connected, skipping reconnection",
                    context=self._context.for_operation("try_connect"),
                )
                return True

            if self._state is ConnectionState.READY:
                self._emit(StateEventType.DISCONNECTED, "Connection lost")

            # Reset the pipe in case a previous one failed
            self._dispose_transport()
            return self._attempt()
        finally:
            self._connect_guard.release()

    def _attempt(self) -> bool:
        try:
            with self._state_lock:
                if self._closed:
                    return False
                self._connect_attempts += 1
                attempt = self._connect_attempts
                self._has_error = False
                self._set_state(ConnectionState.CONNECTING)
                transport = self._transport_factory(self._config)
                self._transport = transport
        except Exception as e:
            error = ConnectFailure(f"Cannot create transport: {e}", self._config.name)
            error.__cause__ = e
            self._fault(error, StateEventType.CONNECT_FAILURE, None)
            return False

        self._emit(StateEventType.CONNECT_ATTEMPT, "Try Connect", attempt=attempt)
        started_at = time.monotonic()

        try:
            self._establish(transport)
        except TimeoutError as e:
            if self._aborted(transport):
                return False
            error = ConnectTimeout(
                f"Timed out after {self._config.timeout}s", self._config.name
            )
            error.__cause__ = e
            self._fault(error, StateEventType.CONNECT_TIMEOUT, transport)
            return False
        except Exception as e:
            if self._aborted(transport):
                return False
            error = ConnectFailure(f"{type(e).__name__}: {e}", self._config.name)
            error.__cause__ = e
            self._fault(error, StateEventType.CONNECT_FAILURE, transport)
            return False

        with self._state_lock:
            if self._transport is not transport:
                return False
            self._has_error = False
            self._set_state(ConnectionState.READY)

        self._emit(
            StateEventType.CONNECT_SUCCESS,
            "Connected",
            duration=round(time.monotonic() - started_at, 3),
        )
        return self.is_ready()

    def _aborted(self, transport: Transport) -> bool:
        """True when shutdown() replaced the transport while it was connecting."""
        if self._transport is transport:
            return False
        self._logger.debug(
            "Connect attempt aborted by shutdown",
            context=self._context.for_operation("try_connect"),
        )
        return True

    def _establish(self, transport: Transport) -> None:
        raise NotImplementedError

    def _fault(
        self,
        error: BaseException,
        event_type: StateEventType,
        transport: Optional[Transport],
    ) -> None:
        with self._state_lock:
            self._last_error = error
            # A failure on a transport that has already been replaced is stale
            current = transport is None or transport is self._transport
            if current:
                self._has_error = True
                self._set_state(ConnectionState.FAULTED)

        message = getattr(error, "message", None) or str(error)
        self._emit(event_type, message, error=error)
        if current:
            self._dispose_transport(expected=transport)

    def mark_faulted(
        self,
        error: BaseException,
        event_type: StateEventType = StateEventType.READ_ERROR,
        transport: Optional[Transport] = None,
    ) -> None:
        """
        Record a read or write failure and tear the failed transport down.

        Args:
            error: The failure
            event_type: Diagnostic type to publish
            transport: The transport that failed; nothing is disposed if the
                manager has already moved on to another one
        """
        self._fault(error, event_type, transport or self._transport)

    def _dispose_transport(self, expected: Optional[Transport] = None) -> None:
        """Detach the current transport and tear it down, then return to IDLE."""
        with self._state_lock:
            transport = self._transport
            if expected is not None and transport is not expected:
                return
            if transport is None:
                if self._state is ConnectionState.FAULTED:
                    self._has_error = False
                    self._set_state(ConnectionState.IDLE)
                return
            self._transport = None

        self._teardown(transport)

        with self._state_lock:
            if self._transport is None:
                self._has_error = False
                self._set_state(ConnectionState.IDLE)

    def _teardown(self, transport: Transport) -> None:
        """Flush (errors swallowed), then close. Close always runs."""
        try:
            if transport.is_connected():
                self._flush_before_close(transport)
        except Exception as e:
            self._report_dispose_error("flush", e)
        finally:
            try:
                transport.close()
            except Exception as e:
                self._report_dispose_error("close", e)

    def _flush_before_close(self, transport: Transport) -> None:
        transport.flush()

    def _report_dispose_error(self, step: str, cause: BaseException) -> None:
        error = DisposeError(f"Error during {step}: {cause}", self._config.name)
        error.__cause__ = cause
        self._emit(StateEventType.DISPOSE_ERROR, error.message, error=error)

    def reopen(self) -> None:
        """Allow connection attempts again after shutdown()."""
        with self._state_lock:
            self._closed = False

    def shutdown(self) -> None:
        """
        Hard stop: refuse further attempts and dispose the transport now.

        Any thread blocked in connect, accept or read on the transport is
        released with an error.
        """
        with self._state_lock:
            self._closed = True

        self._logger.info(
            "Shutting down connection",
            context=self._context.for_operation("shutdown"),
            state=self._state.value,
        )
        self._dispose_transport()

        with self._state_lock:
            self._has_error = False
            self._set_state(ConnectionState.IDLE)


class ClientConnectionManager(ConnectionManager):
    """Client end: connects to a listening server within the timeout."""

    role = Role.CLIENT

    def __init__(
        self,
        config: PipeEndpointConfig,
        transport_factory: Optional[TransportFactory] = None,
        notifier: Optional[Notifier] = None,
        logger: Optional["AppLogger"] = None,
    ):
        super().__init__(
            config, transport_factory or create_client_transport, notifier, logger
        )

    def _establish(self, transport: Transport) -> None:
        transport.connect(self._config.timeout)


class ServerConnectionManager(ConnectionManager):
    """
    Server end: listens and accepts one client at a time.

    The accept runs on a single worker thread and is raced against the
    configured timeout. If the timeout wins the accept is cancelled. After a
    disconnect the next attempt listens and accepts again.
    """

    role = Role.SERVER

    def __init__(
        self,
        config: PipeEndpointConfig,
        transport_factory: Optional[TransportFactory] = None,
        notifier: Optional[Notifier] = None,
        logger: Optional["AppLogger"] = None,
    ):
        super().__init__(
            config, transport_factory or create_server_transport, notifier, logger
        )
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    def _accept_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"pipemsg-accept-{self._config.name}"
                )
            return self._executor

    def _establish(self, transport: Transport) -> None:
        transport.listen()
        self._logger.debug(
            "Waiting for a client connection",
            context=self._context.for_operation("accept"),
            timeout=self._config.timeout,
            max_instances=self._config.max_instances,
        )

        accept_future = self._accept_executor().submit(transport.accept)
        done, _ = wait([accept_future], timeout=self._config.timeout)
        if accept_future not in done:
            transport.cancel_accept()
            raise TimeoutError(f"No client connected within {self._config.timeout}s")

        accept_future.result()
        transport.wait_for_drain()

    def _flush_before_close(self, transport: Transport) -> None:
        transport.flush()
        transport.wait_for_drain()

    def shutdown(self) -> None:
        transport = self._transport
        if transport is not None:
            transport.cancel_accept()
        super().shutdown()

        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)
