from .redis_client import RedisClient
from .aggregates import RedisMetricsStorage
from .cache import RealtimePublisher
from .memory import InMemoryMetricsStorage

__all__ = ["RedisClient", "RedisMetricsStorage", "RealtimePublisher", "InMemoryMetricsStorage"]
