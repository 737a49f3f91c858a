"""Drain-and-summarize pass for one metric key."""

import time
from typing import Callable

from config import configure_logging
from analytics.baseline import BaselineStore
from analytics.buffer import SampleBuffer
from analytics.events import EventChannel
from analytics.keys import split_metric_key
from analytics.models import Aggregation, ErrorEvent
from analytics.statistics import compute_aggregation
from storage.base import MetricsStorage

AggregationListener = Callable[[str, dict[str, str], Aggregation], None]


class Aggregator:
    """
    Turns a key's buffered samples into one persisted Aggregation.

    1. swap the buffer out (the only step that takes the key's lock)
    2. compute count/sum/min/max/avg/last/p50/p95/p99 and the time bounds
    3. persist through the storage boundary, which owns retries
    4. fold the aggregation into the baseline, even when step 3 failed
    """

    def __init__(
        self,
        buffer: SampleBuffer,
        baselines: BaselineStore,
        storage: MetricsStorage,
        events: EventChannel | None = None,
        on_aggregated: AggregationListener | None = None,
        clock: Callable[[], float] = time.time,
        log_level: str = "INFO",
    ):
        self.log = configure_logging("aggregator", log_level)
        self._buffer = buffer
        self._baselines = baselines
        self._storage = storage
        self._events = events
        self._on_aggregated = on_aggregated
        self._clock = clock
        self._persisted = 0
        self._failures = 0

    def aggregate(self, key: str) -> Aggregation | None:
        samples = self._buffer.drain(key)
        aggregation = compute_aggregation(samples)
        if aggregation is None:
            return None

        metric, tags = split_metric_key(key)
        persisted = False
        try:
            self._storage.persist_aggregation(metric, tags, aggregation)
            persisted = True
            self._persisted += 1
        except Exception as e:
            self._failures += 1
            self.log.error(
                "aggregation_persist_failed",
                metric_key=key,
                count=aggregation.count,
                error=str(e),
            )
            if self._events is not None:
                self._events.emit_error(ErrorEvent(
                    operation="persist_aggregation",
                    error_type=type(e).__name__,
                    message=str(e),
                    timestamp=self._clock(),
                    metric_key=key,
                ))

        baseline = self._baselines.fold(key, aggregation)
        self.log.debug(
            "aggregation_completed",
            metric_key=key,
            count=aggregation.count,
            persisted=persisted,
            baseline_count=baseline.count,
        )

        if persisted and self._on_aggregated is not None:
            try:
                self._on_aggregated(metric, tags, aggregation)
            except Exception as e:
                self.log.error("aggregation_listener_failed", metric_key=key, error=str(e))
        return aggregation

    def aggregate_keys(self, keys: list[str]) -> list[Aggregation]:
        results = []
        for key in keys:
            result = self.aggregate(key)
            if result is not None:
                results.append(result)
        return results

    @property
    def persisted_count(self) -> int:
        return self._persisted

    @property
    def failure_count(self) -> int:
        return self._failures
