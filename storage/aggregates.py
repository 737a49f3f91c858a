"""Aggregation history stored in Redis sorted sets (score = aggregation end time)."""

import json
import uuid

from config import configure_logging
from analytics.keys import get_metric_key, split_metric_key
from analytics.models import Aggregation, BaselineStats, TimeRange
from storage.base import MetricsStorage
from storage.bucketing import baselines_from_rows, granularity_seconds, merge_rows, tags_match, to_row
from storage.redis_client import RedisClient


class RedisMetricsStorage(MetricsStorage):
    """
    One sorted set per metric key holds that key's aggregation rows as JSON.

    agg:{metric_key}     sorted set of rows, scored by end_time
    agg:index:{metric}   set of metric keys recorded under a metric name
    agg:keys             set of every metric key with stored rows
    """

    ALL_KEYS = "agg:keys"

    def __init__(self, client: RedisClient, retention_sec: float = 30 * 86_400, log_level: str = "INFO"):
        self.log = configure_logging("aggregate-storage", log_level)
        self._client = client
        self._retention_sec = retention_sec

    @staticmethod
    def series_key(metric_key: str) -> str:
        return f"agg:{metric_key}"

    @staticmethod
    def index_key(metric: str) -> str:
        return f"agg:index:{metric}"

    def connect(self):
        self._client.execute_with_retry(lambda r: r.ping(), operation="connect")
        self.log.info("storage_connected")

    def persist_aggregation(self, metric: str, tags: dict[str, str], aggregation: Aggregation):
        metric_key = get_metric_key(metric, tags)
        row = to_row(metric, tags, aggregation)
        row["id"] = uuid.uuid4().hex
        payload = json.dumps(row)

        def _op(r):
            pipe = r.pipeline()
            pipe.zadd(self.series_key(metric_key), {payload: aggregation.end_time})
            pipe.sadd(self.index_key(metric), metric_key)
            pipe.sadd(self.ALL_KEYS, metric_key)
            pipe.execute()

        self._client.execute_with_retry(_op, operation="persist_aggregation")

    def _read_rows(self, metric_keys: list[str], start, end) -> list[dict]:
        if not metric_keys:
            return []

        def _op(r):
            pipe = r.pipeline()
            for metric_key in metric_keys:
                pipe.zrangebyscore(self.series_key(metric_key), start, end)
            return pipe.execute()

        results = self._client.execute_with_retry(_op, operation="read_rows")
        rows = []
        for payloads in results:
            rows.extend(json.loads(p) for p in payloads)
        return rows

    def load_baseline_stats(self, since: float | None = None) -> list[tuple[str, BaselineStats]]:
        keys = sorted(self._client.execute_with_retry(
            lambda r: r.smembers(self.ALL_KEYS), operation="load_baseline_stats"
        ))
        rows = self._read_rows(keys, "-inf" if since is None else since, "+inf")
        return baselines_from_rows(rows)

    def query_history(
        self,
        metric: str,
        tags: dict[str, str] | None,
        time_range: TimeRange,
        granularity: str = "minute",
    ) -> list[dict]:
        granularity_seconds(granularity)
        keys = self._client.execute_with_retry(
            lambda r: r.smembers(self.index_key(metric)), operation="query_history"
        )
        matching = sorted(k for k in keys if tags_match(split_metric_key(k)[1], tags))
        rows = self._read_rows(matching, time_range.start, time_range.end)
        return merge_rows(rows, granularity)

    def cleanup_expired(self, now: float) -> int:
        """Trim rows older than the retention period and drop emptied keys from the indexes."""
        cutoff = now - self._retention_sec
        keys = sorted(self._client.execute_with_retry(
            lambda r: r.smembers(self.ALL_KEYS), operation="cleanup_expired"
        ))
        if not keys:
            return 0

        def _trim(r):
            pipe = r.pipeline()
            for metric_key in keys:
                pipe.zremrangebyscore(self.series_key(metric_key), "-inf", f"({cutoff}")
                pipe.zcard(self.series_key(metric_key))
            return pipe.execute()

        results = self._client.execute_with_retry(_trim, operation="cleanup_expired")
        removed = sum(results[0::2])
        emptied = [k for k, remaining in zip(keys, results[1::2]) if remaining == 0]

        if emptied:
            def _unindex(r):
                pipe = r.pipeline()
                for metric_key in emptied:
                    metric, _ = split_metric_key(metric_key)
                    pipe.srem(self.ALL_KEYS, metric_key)
                    pipe.srem(self.index_key(metric), metric_key)
                pipe.execute()

            self._client.execute_with_retry(_unindex, operation="cleanup_expired")

        if removed:
            self.log.info("aggregates_expired", removed=removed, emptied_keys=len(emptied))
        return removed

    def close(self):
        self._client.close()
