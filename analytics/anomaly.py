"""Baseline-relative deviation scoring for incoming samples."""

import math
import time

from analytics.baseline import BaselineStore
from analytics.events import EventChannel
from analytics.keys import split_metric_key
from analytics.models import AnomalyEvent, BaselineStats

MEDIUM = "medium"
HIGH = "high"


class AnomalyDetector:
    """
    Scores each new value against the key's baseline:

        deviation = |value - mean| / std_dev

    deviation < threshold             -> no anomaly
    threshold <= deviation < 2*thresh -> "medium"
    deviation >= 2*threshold          -> "high"

    No decision is made until the baseline holds ``min_samples`` values. A
    zero-variance baseline makes any departure from its mean maximally severe.
    Non-finite values are skipped.
    """

    def __init__(
        self,
        baselines: BaselineStore,
        events: EventChannel | None = None,
        threshold: float = 3.0,
        min_samples: int = 30,
    ):
        self._baselines = baselines
        self._events = events
        self._threshold = threshold
        self._min_samples = min_samples

    def score(self, key: str, value: float) -> float | None:
        """Deviation of ``value`` from the baseline, or None when no decision is possible."""
        return self._deviation(self._baselines.get(key), value)

    def _deviation(self, baseline: BaselineStats | None, value) -> float | None:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return None
        if not math.isfinite(value):
            return None
        if baseline is None or baseline.count < self._min_samples:
            return None
        delta = abs(value - baseline.mean)
        if baseline.std_dev <= 0.0:
            return math.inf if delta > 0.0 else 0.0
        return delta / baseline.std_dev

    def classify(self, deviation: float) -> str | None:
        if deviation >= 2 * self._threshold:
            return HIGH
        if deviation >= self._threshold:
            return MEDIUM
        return None

    def detect(self, key: str, value: float, timestamp: float | None = None) -> AnomalyEvent | None:
        """Return and emit an AnomalyEvent when ``value`` deviates from the baseline."""
        baseline = self._baselines.get(key)
        deviation = self._deviation(baseline, value)
        if deviation is None:
            return None
        severity = self.classify(deviation)
        if severity is None:
            return None

        metric, tags = split_metric_key(key)
        event = AnomalyEvent(
            metric=metric,
            value=value,
            tags=tags,
            deviation=deviation,
            severity=severity,
            timestamp=time.time() if timestamp is None else timestamp,
            metric_key=key,
            baseline_mean=baseline.mean,
            baseline_std_dev=baseline.std_dev,
            baseline_count=baseline.count,
        )
        if self._events is not None:
            self._events.emit_anomaly(event)
        return event

    @property
    def threshold(self) -> float:
        return self._threshold
