"""Value types shared by the engine and the storage layer."""

import math
from dataclasses import dataclass, field

from analytics.errors import InvalidQueryError


@dataclass(frozen=True, slots=True)
class Sample:
    value: float
    timestamp: float
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Aggregation:
    """Summary of one drained buffer. ``variance`` is the population variance of the batch."""

    count: int
    sum: float
    min: float
    max: float
    avg: float
    last: float
    p50: float
    p95: float
    p99: float
    start_time: float
    end_time: float
    variance: float = 0.0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "sum": self.sum,
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "last": self.last,
            "p50": self.p50,
            "p95": self.p95,
            "p99": self.p99,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "variance": self.variance,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Aggregation":
        return cls(
            count=int(data["count"]),
            sum=float(data["sum"]),
            min=float(data["min"]),
            max=float(data["max"]),
            avg=float(data["avg"]),
            last=float(data["last"]),
            p50=float(data["p50"]),
            p95=float(data["p95"]),
            p99=float(data["p99"]),
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            variance=float(data.get("variance", 0.0)),
        )


@dataclass(frozen=True)
class BaselineStats:
    """
    Running reference statistics for one metric key.

    ``m2`` is the sum of squared deviations from the mean; ``std_dev`` is
    derived from it. ``sum_squares`` is the plain sum of squared values.
    """

    count: int = 0
    mean: float = 0.0
    std_dev: float = 0.0
    sum: float = 0.0
    sum_squares: float = 0.0
    m2: float = 0.0

    @classmethod
    def from_moments(cls, count: int, mean: float, std_dev: float) -> "BaselineStats":
        """Build a baseline from summary moments alone (count, mean, stdDev)."""
        m2 = std_dev * std_dev * count
        return cls(
            count=count,
            mean=mean,
            std_dev=std_dev,
            sum=mean * count,
            sum_squares=m2 + count * mean * mean,
            m2=m2,
        )


@dataclass(frozen=True)
class AnomalyEvent:
    metric: str
    value: float
    tags: dict[str, str]
    deviation: float
    severity: str  # "medium" | "high"
    timestamp: float
    metric_key: str = ""
    baseline_mean: float = 0.0
    baseline_std_dev: float = 0.0
    baseline_count: int = 0


@dataclass(frozen=True)
class ErrorEvent:
    operation: str
    error_type: str
    message: str
    timestamp: float
    metric_key: str | None = None


@dataclass(frozen=True)
class TimeRange:
    start: float
    end: float

    def __post_init__(self):
        if math.isnan(self.start) or math.isnan(self.end) or self.start > self.end:
            raise InvalidQueryError(f"invalid time range: {self.start} > {self.end}")

    def contains(self, timestamp: float) -> bool:
        return self.start <= timestamp <= self.end
