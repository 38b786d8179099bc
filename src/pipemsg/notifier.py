"""
Subscription registry and synchronous dispatch of messages and state events.

Subscribers are called in subscription order on the thread that publishes,
which for a client is its reader thread. A slow subscriber stalls the pump,
so callbacks must return quickly and must not block. A subscriber that raises
is logged and skipped; the remaining subscribers still run.
"""

import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, TYPE_CHECKING

from pipemsg.app_logger import LogContext
from pipemsg.events import StateEvent
from pipemsg.message import Message

if TYPE_CHECKING:
    from pipemsg.app_logger import AppLogger

MessageCallback = Callable[[Message], None]
StateCallback = Callable[[StateEvent], None]


class NotificationKind(Enum):
    MESSAGE = "message"
    STATE = "state"


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe; pass it back to unsubscribe."""

    id: int
    kind: NotificationKind


class Notifier:
    """Delivers decoded messages and state events to subscribers."""

    def __init__(self, logger: Optional["AppLogger"] = None):
        """
        Initialise the notifier.

        Args:
            logger: Application logger for state events and subscriber errors
                (uses the default logger if None)
        """
        from pipemsg.app_logger import get_default_logger

        self._logger = logger or get_default_logger()
        self._context = LogContext(component="Notifier")
        self._ids = itertools.count(1)
        self._subscribers: Dict[NotificationKind, Dict[Subscription, Callable]] = {
            NotificationKind.MESSAGE: {},
            NotificationKind.STATE: {},
        }
        self._lock = threading.Lock()

    def _subscribe(self, kind: NotificationKind, callback: Callable) -> Subscription:
        if not callable(callback):
            raise TypeError(f"Subscriber must be callable, got {type(callback).__name__}")
        with self._lock:
            subscription = Subscription(id=next(self._ids), kind=kind)
            self._subscribers[kind][subscription] = callback
        return subscription

    def subscribe_messages(self, callback: MessageCallback) -> Subscription:
        """Register a callback for received messages."""
        return self._subscribe(NotificationKind.MESSAGE, callback)

    def subscribe_state(self, callback: StateCallback) -> Subscription:
        """Register a callback for state and diagnostic events."""
        return self._subscribe(NotificationKind.STATE, callback)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription.

        Returns:
            True if the subscription was registered, False otherwise
        """
        with self._lock:
            return self._subscribers[subscription.kind].pop(subscription, None) is not None

    def subscriber_count(self, kind: Optional[NotificationKind] = None) -> int:
        with self._lock:
            if kind is not None:
                return len(self._subscribers[kind])
            return sum(len(subs) for subs in self._subscribers.values())

    def publish_message(self, message: Message) -> None:
        """Deliver a message to every message subscriber."""
        self._dispatch(NotificationKind.MESSAGE, message)

    def publish_state(self, event: StateEvent) -> None:
        """Log a state event at its level, then deliver it to state subscribers."""
        log_method = getattr(self._logger, event.level.value, self._logger.info)
        log_method(
            event.message,
            context=LogContext(
                component=self._context.component,
                operation=event.event_type.value,
                endpoint=event.endpoint,
            ),
            **event.metadata,
        )
        self._dispatch(NotificationKind.STATE, event)

    def _dispatch(self, kind: NotificationKind, payload) -> None:
        """Dispatch to subscribers of one kind with error isolation."""
        with self._lock:
            callbacks = list(self._subscribers[kind].items())

        for subscription, callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                self._logger.error(
                    f"Error in {kind.value} subscriber {subscription.id}: {e}",
                    context=self._context.for_operation("dispatch"),
                    exc_info=True,
                )
