"""Baseline statistics store: in-memory cache rehydrated from aggregate history."""

import threading
import time
from typing import Callable

from config import configure_logging
from analytics.models import Aggregation, BaselineStats
from analytics.statistics import fold_aggregation
from storage.base import MetricsStorage


class BaselineStore:
    """
    Holds one immutable BaselineStats per metric key.

    Readers get whatever snapshot is current; writers replace it wholesale
    under a lock, so a reader never sees a half-folded baseline.
    """

    def __init__(
        self,
        storage: MetricsStorage | None = None,
        lookback_sec: float | None = None,
        clock: Callable[[], float] = time.time,
        log_level: str = "INFO",
    ):
        self.log = configure_logging("baseline-store", log_level)
        self._storage = storage
        self._lookback_sec = lookback_sec
        self._clock = clock
        self._stats: dict[str, BaselineStats] = {}
        self._lock = threading.Lock()

    def load(self) -> int:
        """Rehydrate every key's baseline from storage. Returns the number of keys loaded."""
        if self._storage is None:
            return 0
        since = None
        if self._lookback_sec is not None:
            since = self._clock() - self._lookback_sec
        rows = self._storage.load_baseline_stats(since=since)
        with self._lock:
            for key, stats in rows:
                self._stats[key] = stats
        self.log.info("baseline_loaded", keys=len(rows))
        return len(rows)

    def get(self, key: str) -> BaselineStats | None:
        return self._stats.get(key)

    def upsert(self, key: str, stats: BaselineStats):
        with self._lock:
            self._stats[key] = stats

    def fold(self, key: str, aggregation: Aggregation) -> BaselineStats:
        with self._lock:
            updated = fold_aggregation(self._stats.get(key), aggregation)
            self._stats[key] = updated
        return updated

    def __len__(self) -> int:
        return len(self._stats)
