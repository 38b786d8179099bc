"""
Ready-made subscriber for pipe notifications.

Subscribers are plain callables; StatisticsHandler exposes bound methods that
can be passed straight to Notifier.subscribe_messages and
Notifier.subscribe_state.
"""

import threading
from collections import defaultdict
from typing import Any, Dict, List

from pipemsg.events import StateEvent, StateEventType
from pipemsg.message import Message
from pipemsg.notifier import Notifier, Subscription


class StatisticsHandler:
    """Counts messages, payload bytes and state events."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def on_message(self, message: Message) -> None:
        with self._lock:
            self._messages += 1
            self._bytes += message.size

    def on_state_event(self, event: StateEvent) -> None:
        with self._lock:
            self._event_counts[event.event_type] += 1
            duration = event.metadata.get("duration")
            if event.event_type is StateEventType.CONNECT_SUCCESS and duration is not None:
                self._connect_durations.append(duration)

    def attach(self, notifier: Notifier) -> List[Subscription]:
        """Subscribe to both channels of a notifier."""
        return [
            notifier.subscribe_messages(self.on_message),
            notifier.subscribe_state(self.on_state_event),
        ]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get current statistics.

        Returns:
            Dictionary of message, byte, connection and event counters
        """
        with self._lock:
            counts = dict(self._event_counts)
            durations = list(self._connect_durations)
            messages = self._messages
            total_bytes = self._bytes

        attempts = counts.get(StateEventType.CONNECT_ATTEMPT, 0)
        successes = counts.get(StateEventType.CONNECT_SUCCESS, 0)
        return {
            "messages": messages,
            "bytes": total_bytes,
            "connect_attempts": attempts,
            "connects": successes,
            "connect_timeouts": counts.get(StateEventType.CONNECT_TIMEOUT, 0),
            "disconnects": counts.get(StateEventType.DISCONNECTED, 0),
            "errors": sum(
                counts.get(t, 0)
                for t in (
                    StateEventType.CONNECT_FAILURE,
                    StateEventType.READ_ERROR,
                    StateEventType.SEND_FAILURE,
                    StateEventType.DISPOSE_ERROR,
                )
            ),
            "success_rate": successes / attempts if attempts else 0.0,
            "avg_connect_duration": sum(durations) / len(durations) if durations else 0.0,
            "event_counts": {t.value: n for t, n in counts.items()},
        }

    def reset(self) -> None:
        """Reset all counters."""
        with self._lock:
            self._messages = 0
            self._bytes = 0
            self._event_counts: Dict[StateEventType, int] = defaultdict(int)
            self._connect_durations: List[float] = []
