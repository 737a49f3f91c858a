"""In-memory storage backend; every call succeeds. Used by tests and embedded setups."""

import threading

from analytics.keys import get_metric_key
from analytics.models import Aggregation, BaselineStats, TimeRange
from storage.base import MetricsStorage
from storage.bucketing import baselines_from_rows, granularity_seconds, merge_rows, tags_match, to_row


class InMemoryMetricsStorage(MetricsStorage):
    def __init__(self, retention_sec: float = 30 * 86_400):
        self._retention_sec = retention_sec
        self._rows: list[dict] = []
        self._lock = threading.Lock()
        self.connected = False
        self.closed = False

    def connect(self):
        self.connected = True
        self.closed = False

    def persist_aggregation(self, metric: str, tags: dict[str, str], aggregation: Aggregation):
        with self._lock:
            self._rows.append(to_row(metric, tags, aggregation))

    def load_baseline_stats(self, since: float | None = None) -> list[tuple[str, BaselineStats]]:
        with self._lock:
            rows = [r for r in self._rows if since is None or r["end_time"] >= since]
        return baselines_from_rows(rows)

    def query_history(
        self,
        metric: str,
        tags: dict[str, str] | None,
        time_range: TimeRange,
        granularity: str = "minute",
    ) -> list[dict]:
        granularity_seconds(granularity)
        with self._lock:
            rows = [
                r for r in self._rows
                if r["metric"] == metric
                and tags_match(r["tags"], tags)
                and time_range.contains(r["end_time"])
            ]
        return merge_rows(rows, granularity)

    def cleanup_expired(self, now: float) -> int:
        cutoff = now - self._retention_sec
        with self._lock:
            before = len(self._rows)
            self._rows = [r for r in self._rows if r["end_time"] >= cutoff]
            return before - len(self._rows)

    def close(self):
        self.closed = True

    @property
    def rows(self) -> list[dict]:
        with self._lock:
            return list(self._rows)

    def aggregations(self, metric: str, tags: dict[str, str] | None = None) -> list[Aggregation]:
        """Stored aggregations for exactly ``(metric, tags)``, in persistence order."""
        key = get_metric_key(metric, tags)
        return [
            Aggregation.from_dict(r) for r in self.rows
            if get_metric_key(r["metric"], r["tags"]) == key
        ]
