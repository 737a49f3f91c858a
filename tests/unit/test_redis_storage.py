"""Tests for the Redis-backed storage, client and publisher."""

import json
import math

import fakeredis
import pytest
import redis

from analytics.errors import CircuitOpenError, StorageError
from analytics.models import AnomalyEvent, Sample, TimeRange
from analytics.statistics import compute_aggregation
from storage import RealtimePublisher, RedisClient, RedisMetricsStorage


def _agg(values, start):
    return compute_aggregation([Sample(value=float(v), timestamp=start + i) for i, v in enumerate(values)])


@pytest.fixture
def fake():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def client(settings, fake):
    return RedisClient(settings, connection=fake, sleep=lambda _s: None)


@pytest.fixture
def redis_storage(client):
    return RedisMetricsStorage(client, retention_sec=1000)


class TestRedisMetricsStorage:
    def test_persist_writes_series_and_indexes(self, redis_storage, fake):
        redis_storage.persist_aggregation("req", {"code": "200"}, _agg([1, 2], 100.0))
        assert fake.smembers("agg:keys") == {"req:code:200"}
        assert fake.smembers("agg:index:req") == {"req:code:200"}
        rows = fake.zrange("agg:req:code:200", 0, -1, withscores=True)
        assert len(rows) == 1
        payload, score = rows[0]
        assert score == 101.0
        assert json.loads(payload)["count"] == 2

    def test_identical_aggregations_are_both_kept(self, redis_storage, fake):
        agg = _agg([1], 100.0)
        redis_storage.persist_aggregation("m", {}, agg)
        redis_storage.persist_aggregation("m", {}, agg)
        assert fake.zcard("agg:m:") == 2

    def test_query_history(self, redis_storage):
        redis_storage.persist_aggregation("req", {"code": "200", "route": "/a"}, _agg([10], 100.0))
        redis_storage.persist_aggregation("req", {"code": "200", "route": "/b"}, _agg([30], 110.0))
        redis_storage.persist_aggregation("req", {"code": "500"}, _agg([99], 110.0))
        redis_storage.persist_aggregation("req", {"code": "200"}, _agg([50], 9000.0))

        rows = redis_storage.query_history("req", {"code": "200"}, TimeRange(0, 1000), "hour")
        assert len(rows) == 1
        assert rows[0]["count"] == 2
        assert rows[0]["avg"] == 20.0

    def test_query_unknown_metric(self, redis_storage):
        assert redis_storage.query_history("missing", {}, TimeRange(0, 10)) == []

    def test_load_baseline_stats(self, redis_storage):
        redis_storage.persist_aggregation("cpu", {"host": "a"}, _agg([2, 4], 100.0))
        redis_storage.persist_aggregation("cpu", {"host": "a"}, _agg([6], 500.0))
        redis_storage.persist_aggregation("cpu", {"host": "b"}, _agg([1], 100.0))

        stats = dict(redis_storage.load_baseline_stats())
        assert stats["cpu:host:a"].count == 3
        assert stats["cpu:host:a"].mean == 4.0
        assert stats["cpu:host:b"].count == 1

        recent = dict(redis_storage.load_baseline_stats(since=400.0))
        assert recent["cpu:host:a"].count == 1
        assert "cpu:host:b" not in recent

    def test_cleanup_expired(self, redis_storage, fake):
        redis_storage.persist_aggregation("m", {}, _agg([1], 100.0))
        redis_storage.persist_aggregation("m", {}, _agg([2], 1900.0))
        redis_storage.persist_aggregation("gone", {}, _agg([3], 100.0))

        assert redis_storage.cleanup_expired(now=2000.0) == 2
        assert fake.zcard("agg:m:") == 1
        assert fake.smembers("agg:keys") == {"m:"}
        assert fake.smembers("agg:index:gone") == set()

    def test_connect(self, redis_storage):
        redis_storage.connect()


class TestRedisClient:
    def test_retries_with_backoff_then_gives_up(self, settings, fake):
        delays = []
        client = RedisClient(settings.model_copy(update={
            "storage_max_retries": 3, "storage_backoff_base_sec": 0.1,
        }), connection=fake, sleep=delays.append)

        def _op(_r):
            raise redis.ConnectionError("refused")

        with pytest.raises(StorageError):
            client.execute_with_retry(_op, operation="persist_aggregation")
        assert delays == pytest.approx([0.1, 0.2])

    def test_recovers_after_transient_failure(self, client):
        calls = []

        def _op(r):
            calls.append(1)
            if len(calls) == 1:
                raise redis.TimeoutError("slow")
            return "ok"

        assert client.execute_with_retry(_op) == "ok"
        assert client.circuit_state == "closed"

    def test_non_transient_errors_are_not_retried(self, client):
        calls = []

        def _op(_r):
            calls.append(1)
            raise redis.ResponseError("WRONGTYPE")

        with pytest.raises(StorageError):
            client.execute_with_retry(_op)
        assert len(calls) == 1

    def test_circuit_opens(self, settings, fake):
        client = RedisClient(settings.model_copy(update={
            "storage_max_retries": 1, "circuit_failure_threshold": 2,
        }), connection=fake, sleep=lambda _s: None)

        def _op(_r):
            raise redis.ConnectionError("down")

        for _ in range(2):
            with pytest.raises(StorageError):
                client.execute_with_retry(_op)
        assert client.circuit_state == "open"
        with pytest.raises(CircuitOpenError):
            client.execute_with_retry(lambda r: r.ping())

    def test_ping(self, client):
        assert client.ping() is True


class TestRealtimePublisher:
    def test_queue_does_not_touch_redis(self, client, fake):
        publisher = RealtimePublisher(client)
        publisher.queue_update("m", {"a": "1"}, _agg([1, 2], 100.0))
        assert publisher.pending == 1
        assert fake.llen(RealtimePublisher.ALERTS_KEY) == 0

    def test_flush_publishes_and_keeps_recent_alerts(self, client):
        publisher = RealtimePublisher(client)
        publisher.queue_update("m", {}, _agg([1], 100.0))
        publisher.queue_alert(AnomalyEvent(
            metric="m", value=130.0, tags={}, deviation=3.0, severity="medium", timestamp=1.0,
        ))
        assert publisher.flush() == 2
        assert publisher.pending == 0

        alerts = publisher.get_alerts()
        assert len(alerts) == 1
        assert alerts[0]["severity"] == "medium"
        assert alerts[0]["message"] == "Anomaly detected in m: 130.0 (3.00 std devs)"
        assert alerts[0]["metadata"]["metric"] == "m"

    def test_zero_spread_alert_is_strict_json(self, client, fake):
        publisher = RealtimePublisher(client)
        publisher.queue_alert(AnomalyEvent(
            metric="m", value=6.0, tags={}, deviation=math.inf, severity="high", timestamp=1.0,
        ))
        publisher.flush()

        def reject(token):
            raise ValueError(token)

        raw = fake.lindex(RealtimePublisher.ALERTS_KEY, 0)
        alert = json.loads(raw, parse_constant=reject)
        assert alert["severity"] == "high"
        assert alert["metadata"]["deviation"] is None
        assert alert["message"] == "Anomaly detected in m: 6.0 (inf std devs)"

    def test_flush_nothing(self, client):
        assert RealtimePublisher(client).flush() == 0

    def test_bounded_queue(self, client):
        publisher = RealtimePublisher(client, max_pending=2)
        for _ in range(3):
            publisher.queue_update("m", {}, _agg([1], 1.0))
        assert publisher.pending == 2
        assert publisher.dropped == 1


class TestRedisBackedEngine:
    def test_end_to_end(self, settings, client, clock):
        from analytics.engine import MetricsEngine
        from analytics.models import BaselineStats

        storage = RedisMetricsStorage(client)
        publisher = RealtimePublisher(client)
        eng = MetricsEngine(settings, storage, publisher=publisher, clock=clock).start()
        eng.baselines.upsert("latency:route:/a", BaselineStats.from_moments(1000, 100.0, 10.0))

        for v in [100.0, 101.0, 99.0, 180.0]:
            eng.record_metric("latency", v, {"route": "/a"})
        assert publisher.pending == 1

        eng.aggregate_all()
        assert publisher.pending == 0
        assert publisher.get_alerts()[0]["severity"] == "high"

        rows = eng.get_metric_history(
            "latency", {"route": "/a"}, (clock.now - 60, clock.now + 60)
        )
        assert rows[0]["count"] == 4
        assert rows[0]["max"] == 180.0
        eng.shutdown()
