"""Fire-and-forget event emission to native and remote listeners."""

import threading
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Callable

from error_handler import ErrorCategory, ErrorSeverity, handle_error
from logging_config import get_logger

logger = get_logger(__name__)

GIT_STATUS_EVENT = "git:status-update"
PR_STATUS_EVENT = "pr:status-update"
CANCELLED_EVENT = "chat:cancelled"

Listener = Callable[[str, Any], None]


def to_payload(value: Any) -> Any:
    """Convert dataclasses and paths into JSON-compatible values."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_payload(asdict(value))
    if isinstance(value, dict):
        return {str(k): to_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_payload(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value


class EventEmitter:
    """Broadcasts named events to every subscribed listener."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Add a listener; returns a function that removes it again."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event_name: str, payload: Any) -> None:
        """Deliver an event to all listeners.

        Listener failures are logged and never reach the emitting code.
        """
        data = to_payload(payload)
        with self._lock:
            listeners = list(self._listeners)

        logger.debug(f"Emitting {event_name} to {len(listeners)} listener(s)")
        for listener in listeners:
            try:
                listener(event_name, data)
            except Exception as e:
                handle_error(
                    e,
                    category=ErrorCategory.EVENT_DELIVERY,
                    severity=ErrorSeverity.ERROR,
                    user_message=f"Failed to emit {event_name} event: {e}",
                    context={"event": event_name},
                )
