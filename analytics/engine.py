"""Metrics engine: wires buffering, moving averages, anomaly detection and aggregation."""

import math
import numbers
import threading
import time
from decimal import Decimal
from typing import Callable, Mapping

from config import Settings, configure_logging
from analytics.aggregator import Aggregator
from analytics.anomaly import AnomalyDetector
from analytics.baseline import BaselineStore
from analytics.buffer import SampleBuffer
from analytics.errors import ConfigurationError, EngineClosedError
from analytics.events import AnomalyCallback, ErrorCallback, EventChannel
from analytics.keys import get_metric_key
from analytics.models import Aggregation, ErrorEvent, Sample, TimeRange
from analytics.moving_average import MovingAverageTracker
from storage import RealtimePublisher, RedisClient, RedisMetricsStorage
from storage.base import MetricsStorage

CREATED = "created"
RUNNING = "running"
CLOSING = "closing"
CLOSED = "closed"


def _validate(settings: Settings):
    sizes = list(settings.window_sizes)
    if not sizes or any(s <= 0 for s in sizes) or len(set(sizes)) != len(sizes):
        raise ConfigurationError(f"invalid window sizes: {sizes}")
    if settings.aggregation_interval_sec <= 0:
        raise ConfigurationError("aggregation_interval_sec must be positive")
    if settings.buffer_overflow_threshold <= 0:
        raise ConfigurationError("buffer_overflow_threshold must be positive")
    if settings.anomaly_threshold <= 0:
        raise ConfigurationError("anomaly_threshold must be positive")
    if settings.anomaly_min_samples < 0:
        raise ConfigurationError("anomaly_min_samples must not be negative")


class MetricsEngine:
    """
    In-process metrics analytics.

    Writes: record_metric → SampleBuffer + MovingAverageTracker + AnomalyDetector,
    all in memory, serialized per key. A background scheduler thread drains
    buffers on a timer (or early, on buffer overflow), persists aggregations
    and folds them into the baseline.

    Lifecycle: start() opens storage, loads baselines, then starts the
    scheduler; shutdown() stops the scheduler, flushes every buffer once and
    closes storage.
    """

    def __init__(
        self,
        settings: Settings,
        storage: MetricsStorage,
        publisher: RealtimePublisher | None = None,
        clock: Callable[[], float] = time.time,
    ):
        _validate(settings)
        self.settings = settings
        self.log = configure_logging("metrics-engine", settings.log_level)
        self._storage = storage
        self._publisher = publisher
        self._clock = clock

        self._events = EventChannel(settings.log_level)
        self._buffer = SampleBuffer(
            overflow_threshold=settings.buffer_overflow_threshold,
            on_overflow=self._request_flush,
        )
        self._averages = MovingAverageTracker(settings.window_sizes)
        self._baselines = BaselineStore(
            storage,
            lookback_sec=settings.baseline_lookback_sec,
            clock=clock,
            log_level=settings.log_level,
        )
        self._detector = AnomalyDetector(
            self._baselines,
            self._events,
            threshold=settings.anomaly_threshold,
            min_samples=settings.anomaly_min_samples,
        )
        self._aggregator = Aggregator(
            self._buffer,
            self._baselines,
            storage,
            events=self._events,
            on_aggregated=publisher.queue_update if publisher else None,
            clock=clock,
            log_level=settings.log_level,
        )
        if publisher is not None:
            self._events.on_anomaly(publisher.queue_alert)

        self._state = CREATED
        self._state_lock = threading.Lock()
        self._closed = threading.Event()
        self._pass_lock = threading.Lock()
        self._overflow: set[str] = set()
        self._overflow_lock = threading.Lock()
        self._stop = threading.Event()
        self._wakeup = threading.Event()
        self._flush_thread: threading.Thread | None = None
        self._last_cleanup = time.monotonic()

    # ─── Lifecycle ──────────────────────────────────────────────────

    def start(self) -> "MetricsEngine":
        with self._state_lock:
            if self._state != CREATED:
                raise EngineClosedError(f"engine cannot start from state {self._state!r}")

            self._storage.connect()
            try:
                self._baselines.load()
            except Exception as e:
                self.log.error("baseline_load_failed", error=str(e))
                self._emit_error("load_baseline", e)

            self._flush_thread = threading.Thread(
                target=self._flush_loop, name="metrics-aggregation", daemon=True
            )
            self._flush_thread.start()
            self._state = RUNNING

        self.log.info(
            "engine_started",
            window_sizes=self.settings.window_sizes,
            interval_sec=self.settings.aggregation_interval_sec,
            baselines=len(self._baselines),
        )
        return self

    def shutdown(self):
        """Stop the scheduler, flush every buffered sample exactly once, close storage."""
        with self._state_lock:
            previous = self._state
            if previous in (CREATED, RUNNING):
                self._state = CLOSING
        if previous in (CLOSING, CLOSED):
            self._closed.wait()
            return

        self.log.info("engine_stopping")
        self._buffer.close()
        self._stop.set()
        self._wakeup.set()
        if self._flush_thread is not None:
            self._flush_thread.join()

        flushed: list[Aggregation] = []
        try:
            flushed = self._run_pass(self._buffer.non_empty_keys())
            try:
                self._storage.close()
            except Exception as e:
                self.log.error("storage_close_failed", error=str(e))
                self._emit_error("close", e)
        finally:
            with self._state_lock:
                self._state = CLOSED
            self._closed.set()
        self.log.info("engine_stopped", final_aggregations=len(flushed))

    def __enter__(self) -> "MetricsEngine":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ─── Write path ─────────────────────────────────────────────────

    def record_metric(
        self,
        name: str,
        value: float,
        tags: Mapping[str, str] | None = None,
        timestamp: float | None = None,
    ):
        """Record one measurement. Never raises; invalid or late writes are dropped."""
        try:
            if self._state != RUNNING:
                self.log.debug("metric_rejected", metric=name, reason=self._state)
                return
            if not isinstance(name, str) or not name:
                self.log.debug("metric_rejected", metric=name, reason="invalid_name")
                return
            if isinstance(value, bool) or not isinstance(value, (numbers.Real, Decimal)):
                self.log.debug("metric_rejected", metric=name, reason="non_numeric")
                return
            value = float(value)
            if not math.isfinite(value):
                self.log.debug("metric_rejected", metric=name, reason="non_finite")
                return

            ts = self._clock() if timestamp is None else float(timestamp)
            if not math.isfinite(ts):
                self.log.debug("metric_rejected", metric=name, reason="non_finite_timestamp")
                return
            clean_tags = {str(k): str(v) for k, v in tags.items()} if tags else {}
            key = get_metric_key(name, clean_tags)

            if self._buffer.record(key, Sample(value=value, timestamp=ts, tags=clean_tags)) < 0:
                self.log.debug("metric_rejected", metric=name, reason=CLOSING)
                return
            self._averages.update(key, value, ts)
            self._detector.detect(key, value, ts)
        except Exception as e:
            self.log.error("record_metric_failed", metric=name, error=str(e))

    # ─── Aggregation ────────────────────────────────────────────────

    def aggregate(self, metric_key: str) -> Aggregation | None:
        with self._pass_lock:
            return self._aggregator.aggregate(metric_key)

    def aggregate_all(self) -> list[Aggregation]:
        return self._run_pass(self._buffer.non_empty_keys())

    def _request_flush(self, metric_key: str):
        with self._overflow_lock:
            self._overflow.add(metric_key)
        self._wakeup.set()

    def _take_overflow(self) -> list[str]:
        with self._overflow_lock:
            keys, self._overflow = list(self._overflow), set()
        return keys

    def _run_pass(self, keys: list[str]) -> list[Aggregation]:
        with self._pass_lock:
            results = self._aggregator.aggregate_keys(keys)
            if self._publisher is not None:
                try:
                    self._publisher.flush()
                except Exception as e:
                    self.log.error("publish_failed", error=str(e))
                    self._emit_error("publish", e)
        return results

    def _flush_loop(self):
        """Aggregate every key on the interval, and overflowing keys as soon as they are signalled."""
        interval = self.settings.aggregation_interval_sec
        next_due = time.monotonic() + interval
        while not self._stop.is_set():
            self._wakeup.wait(max(0.0, next_due - time.monotonic()))
            self._wakeup.clear()
            if self._stop.is_set():
                break
            try:
                overflow = self._take_overflow()
                if overflow:
                    self._run_pass(overflow)
                if time.monotonic() >= next_due:
                    results = self._run_pass(self._buffer.non_empty_keys())
                    next_due = time.monotonic() + interval
                    if results:
                        self.log.debug("aggregation_pass", keys=len(results))
                    self._maybe_cleanup()
            except Exception as e:
                self.log.error("flush_error", error=str(e))

    def _maybe_cleanup(self):
        if time.monotonic() - self._last_cleanup < self.settings.cleanup_interval_sec:
            return
        self._last_cleanup = time.monotonic()
        try:
            self._storage.cleanup_expired(self._clock())
        except Exception as e:
            self.log.error("cleanup_failed", error=str(e))
            self._emit_error("cleanup_expired", e)

    def _emit_error(self, operation: str, error: Exception, metric_key: str | None = None):
        self._events.emit_error(ErrorEvent(
            operation=operation,
            error_type=type(error).__name__,
            message=str(error),
            timestamp=self._clock(),
            metric_key=metric_key,
        ))

    # ─── Read path ──────────────────────────────────────────────────

    def get_current_metrics(self) -> dict[str, dict[int, float | None]]:
        """In-window moving averages per metric key; None marks a window with no data."""
        return self._averages.snapshot()

    def get_metric_history(
        self,
        name: str,
        tags: Mapping[str, str] | None,
        time_range: TimeRange | tuple[float, float],
        granularity: str = "minute",
    ) -> list[dict]:
        """Bucketed history from storage. Storage errors propagate to the caller."""
        if self._state == CLOSED:
            raise EngineClosedError("engine is shut down")
        if not isinstance(time_range, TimeRange):
            time_range = TimeRange(*time_range)
        return self._storage.query_history(name, dict(tags or {}), time_range, granularity)

    # ─── Events ─────────────────────────────────────────────────────

    def on_anomaly(self, callback: AnomalyCallback) -> Callable[[], None]:
        return self._events.on_anomaly(callback)

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        return self._events.on_error(callback)

    @property
    def events(self) -> EventChannel:
        return self._events

    @property
    def baselines(self) -> BaselineStore:
        return self._baselines

    @property
    def buffer(self) -> SampleBuffer:
        return self._buffer

    @property
    def detector(self) -> AnomalyDetector:
        return self._detector

    @property
    def state(self) -> str:
        return self._state


def build_engine(settings: Settings | None = None, clock: Callable[[], float] = time.time) -> MetricsEngine:
    """Engine backed by Redis for aggregate history and real-time publication."""
    settings = settings or Settings()
    client = RedisClient(settings)
    storage = RedisMetricsStorage(
        client,
        retention_sec=settings.aggregate_retention_sec,
        log_level=settings.log_level,
    )
    publisher = RealtimePublisher(client) if settings.publish_updates else None
    return MetricsEngine(settings, storage, publisher=publisher, clock=clock)
