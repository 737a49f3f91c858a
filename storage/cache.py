"""Real-time publication of aggregation updates and anomaly alerts over Redis."""

import json
import math
import threading
from dataclasses import asdict

from analytics.models import Aggregation, AnomalyEvent
from storage.redis_client import RedisClient


def _finite_only(fields: dict) -> dict:
    """JSON has no infinity; a zero-spread baseline reports its deviation as null."""
    return {
        k: None if isinstance(v, float) and not math.isfinite(v) else v
        for k, v in fields.items()
    }


class RealtimePublisher:
    """
    Queues dashboard updates and alerts in memory and ships them in one
    Redis pipeline per ``flush``.

    Queueing never touches the network, so ``queue_alert`` is safe to run as
    an anomaly subscriber on the recording thread. Alerts also land in a
    bounded list for late readers.
    """

    UPDATE_CHANNEL = "analytics:update"
    ALERT_CHANNEL = "alert:trigger"
    ALERTS_KEY = "alerts:anomalies"
    MAX_ALERTS = 100

    def __init__(self, client: RedisClient, max_pending: int = 10_000):
        self._client = client
        self._max_pending = max_pending
        self._lock = threading.Lock()
        self._updates: list[str] = []
        self._alerts: list[str] = []
        self._dropped = 0

    def queue_update(self, metric: str, tags: dict[str, str], aggregation: Aggregation):
        payload = json.dumps({
            "metric": metric,
            "value": aggregation.last,
            "aggregation": {
                "min": aggregation.min,
                "max": aggregation.max,
                "avg": aggregation.avg,
                "count": aggregation.count,
                "sum": aggregation.sum,
                "p50": aggregation.p50,
                "p95": aggregation.p95,
                "p99": aggregation.p99,
            },
            "timeWindow": {"start": aggregation.start_time, "end": aggregation.end_time},
            "tags": tags,
        }, allow_nan=False)
        self._enqueue(self._updates, payload)

    def queue_alert(self, event: AnomalyEvent):
        payload = json.dumps({
            "type": "anomaly",
            "severity": event.severity,
            "message": (
                f"Anomaly detected in {event.metric}: {event.value} "
                f"({event.deviation:.2f} std devs)"
            ),
            "metadata": _finite_only(asdict(event)),
        }, allow_nan=False)
        self._enqueue(self._alerts, payload)

    def _enqueue(self, queue: list[str], payload: str):
        with self._lock:
            if len(self._updates) + len(self._alerts) >= self._max_pending:
                self._dropped += 1
                return
            queue.append(payload)

    def flush(self) -> int:
        """Publish everything queued so far. Returns the number of messages sent."""
        with self._lock:
            updates, self._updates = self._updates, []
            alerts, self._alerts = self._alerts, []
        if not updates and not alerts:
            return 0

        def _op(r):
            pipe = r.pipeline()
            for payload in updates:
                pipe.publish(self.UPDATE_CHANNEL, payload)
            for payload in alerts:
                pipe.publish(self.ALERT_CHANNEL, payload)
                pipe.lpush(self.ALERTS_KEY, payload)
            if alerts:
                pipe.ltrim(self.ALERTS_KEY, 0, self.MAX_ALERTS - 1)
            pipe.execute()

        self._client.execute_with_retry(_op, operation="publish")
        return len(updates) + len(alerts)

    def get_alerts(self, limit: int = 50) -> list[dict]:
        def _op(r):
            raw = r.lrange(self.ALERTS_KEY, 0, limit - 1)
            return [json.loads(item) for item in raw]
        return self._client.execute_with_retry(_op, operation="get_alerts")

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._updates) + len(self._alerts)

    @property
    def dropped(self) -> int:
        return self._dropped
