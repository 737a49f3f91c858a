"""Tests for the baseline statistics store."""

import pytest

from analytics.baseline import BaselineStore
from analytics.models import BaselineStats, Sample
from analytics.statistics import compute_aggregation
from storage import InMemoryMetricsStorage


def _agg(values, start):
    return compute_aggregation([Sample(value=float(v), timestamp=start + i) for i, v in enumerate(values)])


class TestBaselineStore:
    def test_get_missing(self):
        assert BaselineStore().get("m:") is None

    def test_upsert_replaces(self):
        store = BaselineStore()
        store.upsert("m:", BaselineStats.from_moments(10, 1.0, 0.5))
        store.upsert("m:", BaselineStats.from_moments(20, 2.0, 0.5))
        assert store.get("m:").count == 20
        assert len(store) == 1

    def test_fold_accumulates(self):
        store = BaselineStore()
        store.fold("m:", _agg([1, 2, 3], 0.0))
        updated = store.fold("m:", _agg([4, 5], 10.0))
        assert updated.count == 5
        assert updated.mean == 3.0
        assert store.get("m:") is updated

    def test_load_from_storage(self):
        storage = InMemoryMetricsStorage()
        storage.persist_aggregation("m", {"a": "1"}, _agg([1, 2, 3], 1000.0))
        storage.persist_aggregation("m", {"a": "1"}, _agg([7, 9], 2000.0))
        storage.persist_aggregation("other", {}, _agg([5], 1000.0))

        store = BaselineStore(storage)
        assert store.load() == 2
        stats = store.get("m:a:1")
        assert stats.count == 5
        assert stats.mean == pytest.approx(4.4)
        assert store.get("other:").count == 1

    def test_load_honours_lookback(self):
        storage = InMemoryMetricsStorage()
        storage.persist_aggregation("m", {}, _agg([100], 1000.0))
        storage.persist_aggregation("m", {}, _agg([1, 3], 9000.0))

        store = BaselineStore(storage, lookback_sec=5000, clock=lambda: 10_000.0)
        store.load()
        assert store.get("m:").count == 2
        assert store.get("m:").mean == 2.0

    def test_load_without_storage(self):
        assert BaselineStore().load() == 0
