"""Storage boundary consumed by the metrics engine."""

from abc import ABC, abstractmethod

from analytics.models import Aggregation, BaselineStats, TimeRange


class MetricsStorage(ABC):
    """
    Durable home for aggregations.

    Implementations own retries: a method that raises has already given up.
    """

    def connect(self):
        """Open connections. Called once before the baseline is loaded."""

    @abstractmethod
    def persist_aggregation(self, metric: str, tags: dict[str, str], aggregation: Aggregation):
        """Store one aggregation row."""

    @abstractmethod
    def load_baseline_stats(self, since: float | None = None) -> list[tuple[str, BaselineStats]]:
        """Rebuild per-key baselines from aggregation rows ending at or after ``since``."""

    @abstractmethod
    def query_history(
        self,
        metric: str,
        tags: dict[str, str] | None,
        time_range: TimeRange,
        granularity: str = "minute",
    ) -> list[dict]:
        """Bucketed summary rows, oldest first, for every key of ``metric`` containing ``tags``."""

    def cleanup_expired(self, now: float) -> int:
        """Delete rows past retention. Returns the number of rows removed."""
        return 0

    def close(self):
        """Flush and release connections."""
