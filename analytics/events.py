"""In-process event channel: explicit subscriber lists for anomaly and error events."""

import threading
from typing import Callable

from config import configure_logging
from analytics.models import AnomalyEvent, ErrorEvent

AnomalyCallback = Callable[[AnomalyEvent], None]
ErrorCallback = Callable[[ErrorEvent], None]


class EventChannel:
    """
    Synchronous fan-out to registered callbacks.

    Callbacks run on the emitting thread (anomalies on the recording thread,
    errors on the scheduler thread). A callback that raises is logged and
    skipped; emission always continues with the next subscriber.
    """

    def __init__(self, log_level: str = "INFO"):
        self.log = configure_logging("event-channel", log_level)
        self._lock = threading.Lock()
        self._anomaly_subscribers: list[AnomalyCallback] = []
        self._error_subscribers: list[ErrorCallback] = []

    def on_anomaly(self, callback: AnomalyCallback) -> Callable[[], None]:
        """Subscribe to anomaly events. Returns a function that unsubscribes."""
        return self._subscribe(self._anomaly_subscribers, callback)

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        return self._subscribe(self._error_subscribers, callback)

    def emit_anomaly(self, event: AnomalyEvent):
        self._emit(self._anomaly_subscribers, event, "anomaly")

    def emit_error(self, event: ErrorEvent):
        self._emit(self._error_subscribers, event, "error")

    def _subscribe(self, subscribers: list, callback) -> Callable[[], None]:
        with self._lock:
            subscribers.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in subscribers:
                    subscribers.remove(callback)

        return _unsubscribe

    def _emit(self, subscribers: list, event, kind: str):
        with self._lock:
            targets = list(subscribers)
        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                self.log.error(
                    "subscriber_failed",
                    kind=kind,
                    callback=getattr(callback, "__qualname__", repr(callback)),
                    error=str(e),
                )
