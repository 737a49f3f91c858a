"""Resilient Redis client with connection pooling, circuit breaker and bounded retries."""

import threading
import time
from typing import Any, Callable

import redis

from config import Settings, configure_logging
from analytics.errors import CircuitOpenError, StorageError


class CircuitBreaker:
    """
    Three-state circuit breaker: CLOSED → OPEN → HALF_OPEN.

    CLOSED: Normal operation. Track consecutive failures.
    OPEN:   After failure_threshold failures, reject all calls immediately.
    HALF_OPEN: After recovery_timeout, allow one test call through.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.state = "closed"
        self.failure_count = 0
        self.last_failure_time = 0.0
        self._clock = clock
        self._lock = threading.Lock()

    def can_execute(self) -> bool:
        with self._lock:
            if self.state == "closed":
                return True
            if self.state == "open":
                if self._clock() - self.last_failure_time > self.recovery_timeout:
                    self.state = "half_open"
                    return True
                return False
            return True

    def record_success(self):
        with self._lock:
            self.failure_count = 0
            self.state = "closed"

    def record_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if self.state == "half_open" or self.failure_count >= self.failure_threshold:
                self.state = "open"


class RedisClient:
    """
    Redis access for the storage layer.

    Every operation goes through ``execute_with_retry``: connection and timeout
    errors are retried with exponential backoff (base * 2**attempt) up to
    ``max_retries`` attempts, then surface as StorageError.
    """

    def __init__(
        self,
        settings: Settings,
        connection: redis.Redis | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.log = configure_logging("redis-client", settings.log_level)
        self._max_retries = settings.storage_max_retries
        self._backoff_base = settings.storage_backoff_base_sec
        self._sleep = sleep
        self._circuit = CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_sec,
        )
        if connection is not None:
            self._pool = None
            self._client = connection
        else:
            self._pool = redis.ConnectionPool.from_url(
                settings.redis_url,
                max_connections=settings.redis_pool_size,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)
            self.log.info(
                "redis_pool_created",
                url=settings.redis_url,
                pool_size=settings.redis_pool_size,
            )

    def get_client(self) -> redis.Redis:
        return self._client

    def pipeline(self) -> redis.client.Pipeline:
        return self._client.pipeline()

    def execute_with_retry(self, func: Callable[[redis.Redis], Any], operation: str = "redis") -> Any:
        """Execute a Redis operation with circuit breaker and retry logic."""
        if not self._circuit.can_execute():
            raise CircuitOpenError(f"{operation}: Redis circuit breaker is OPEN, failing fast")

        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                result = func(self._client)
                self._circuit.record_success()
                return result
            except (redis.ConnectionError, redis.TimeoutError) as e:
                last_error = e
                self._circuit.record_failure()
                if attempt < self._max_retries - 1:
                    backoff = self._backoff_base * (2 ** attempt)
                    self.log.warning(
                        "redis_retry",
                        operation=operation,
                        attempt=attempt + 1,
                        backoff=backoff,
                        error=str(e),
                    )
                    self._sleep(backoff)
            except redis.RedisError as e:
                raise StorageError(f"{operation}: {e}") from e

        raise StorageError(
            f"{operation}: gave up after {self._max_retries} attempts: {last_error}"
        ) from last_error

    def ping(self) -> bool:
        try:
            return bool(self.execute_with_retry(lambda r: r.ping(), operation="ping"))
        except StorageError:
            return False

    def close(self):
        if self._pool is not None:
            self._pool.disconnect()
        else:
            self._client.close()
        self.log.info("redis_connection_closed")

    @property
    def circuit_state(self) -> str:
        return self._circuit.state
