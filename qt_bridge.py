"""Qt signal bridge delivering backend events to the native UI thread."""

from PySide6.QtCore import QObject, Signal

from events import EventEmitter
from logging_config import get_logger

logger = get_logger(__name__)


class QtEventBridge(QObject):
    """Re-emits EventEmitter events as a Qt signal.

    Events raised on the polling thread reach slots living in the main
    thread through Qt's queued connections.
    """

    event_received = Signal(str, object)  # event name, payload dict

    def __init__(self, emitter: EventEmitter, parent=None):
        super().__init__(parent)
        self._unsubscribe = emitter.subscribe(self._forward)
        logger.debug("Qt event bridge attached")

    def _forward(self, event_name: str, payload) -> None:
        self.event_received.emit(event_name, payload)

    def detach(self) -> None:
        """Stop forwarding events."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug("Qt event bridge detached")
