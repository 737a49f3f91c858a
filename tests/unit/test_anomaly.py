"""Tests for baseline-relative anomaly detection."""

import math

import pytest

from analytics.anomaly import AnomalyDetector
from analytics.baseline import BaselineStore
from analytics.events import EventChannel
from analytics.keys import get_metric_key
from analytics.models import BaselineStats

KEY = get_metric_key("latency", {"route": "/search"})


@pytest.fixture
def baselines():
    store = BaselineStore()
    store.upsert(KEY, BaselineStats.from_moments(count=1000, mean=100.0, std_dev=10.0))
    return store


class TestAnomalyDetector:
    def test_value_within_threshold(self, baselines):
        detector = AnomalyDetector(baselines, threshold=3.0)
        assert detector.detect(KEY, 105.0) is None

    def test_medium_severity(self, baselines):
        detector = AnomalyDetector(baselines, threshold=3.0)
        event = detector.detect(KEY, 130.0, timestamp=1234.0)
        assert event is not None
        assert event.severity == "medium"
        assert event.deviation == pytest.approx(3.0)
        assert event.metric == "latency"
        assert event.tags == {"route": "/search"}
        assert event.timestamp == 1234.0
        assert event.baseline_count == 1000

    def test_high_severity(self, baselines):
        detector = AnomalyDetector(baselines, threshold=3.0)
        event = detector.detect(KEY, 40.0)
        assert event is not None
        assert event.severity == "high"
        assert event.deviation == pytest.approx(6.0)

    def test_insufficient_baseline(self):
        store = BaselineStore()
        store.upsert(KEY, BaselineStats.from_moments(count=29, mean=100.0, std_dev=10.0))
        detector = AnomalyDetector(store, min_samples=30)
        for value in (100.0, 1e9, -1e9):
            assert detector.detect(KEY, value) is None

    def test_unknown_key(self, baselines):
        detector = AnomalyDetector(baselines)
        assert detector.detect("other:", 1e9) is None

    def test_zero_std_dev(self):
        store = BaselineStore()
        store.upsert(KEY, BaselineStats.from_moments(count=500, mean=5.0, std_dev=0.0))
        detector = AnomalyDetector(store)
        assert detector.detect(KEY, 5.0) is None
        event = detector.detect(KEY, 5.1)
        assert event is not None
        assert event.severity == "high"
        assert math.isinf(event.deviation)

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, "130", None])
    def test_invalid_values_are_skipped(self, baselines, value):
        detector = AnomalyDetector(baselines)
        assert detector.detect(KEY, value) is None

    def test_emits_to_channel(self, baselines):
        channel = EventChannel()
        received = []
        channel.on_anomaly(received.append)
        detector = AnomalyDetector(baselines, channel)
        detector.detect(KEY, 105.0)
        event = detector.detect(KEY, 170.0)
        assert received == [event]

    def test_custom_threshold(self, baselines):
        detector = AnomalyDetector(baselines, threshold=2.0)
        assert detector.detect(KEY, 125.0).severity == "medium"
        assert detector.detect(KEY, 145.0).severity == "high"

    def test_score_without_emitting(self, baselines):
        channel = EventChannel()
        received = []
        channel.on_anomaly(received.append)
        detector = AnomalyDetector(baselines, channel)
        assert detector.score(KEY, 80.0) == pytest.approx(2.0)
        assert detector.score(KEY, 200.0) == pytest.approx(10.0)
        assert received == []
