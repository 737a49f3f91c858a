"""Time-bucket math and merging of stored aggregation rows into history rows."""

from math import floor
from typing import Iterable

from analytics.errors import InvalidQueryError
from analytics.keys import get_metric_key
from analytics.models import Aggregation, BaselineStats
from analytics.statistics import fold_aggregation

GRANULARITY_SECONDS = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}


def granularity_seconds(granularity: str) -> int:
    try:
        return GRANULARITY_SECONDS[granularity]
    except KeyError:
        raise InvalidQueryError(
            f"unknown granularity {granularity!r}; expected one of {sorted(GRANULARITY_SECONDS)}"
        ) from None


def bucket_start(timestamp_seconds: float, granularity_sec: int) -> float:
    return float(floor(timestamp_seconds / granularity_sec) * granularity_sec)


def tags_match(candidate: dict[str, str], wanted: dict[str, str] | None) -> bool:
    """True when ``candidate`` contains every pair of ``wanted``."""
    if not wanted:
        return True
    return all(candidate.get(k) == v for k, v in wanted.items())


def to_row(metric: str, tags: dict[str, str], aggregation: Aggregation) -> dict:
    """Serializable storage row for one aggregation, stamped with its minute bucket."""
    row = aggregation.to_dict()
    row["metric"] = metric
    row["tags"] = dict(tags)
    row["time_bucket"] = bucket_start(aggregation.end_time, GRANULARITY_SECONDS["minute"])
    return row


def merge_rows(rows: Iterable[dict], granularity: str) -> list[dict]:
    """
    Re-bucket rows to ``granularity``.

    count, sum, min and max merge exactly and avg is recomputed from them;
    last and the percentiles come from the row with the latest end_time.
    """
    size = granularity_seconds(granularity)
    buckets: dict[float, dict] = {}
    latest: dict[float, float] = {}
    for row in rows:
        bucket = bucket_start(row["end_time"], size)
        merged = buckets.get(bucket)
        if merged is None:
            buckets[bucket] = {
                "time_bucket": bucket,
                "count": row["count"],
                "sum": row["sum"],
                "min": row["min"],
                "max": row["max"],
                "last": row["last"],
                "p50": row["p50"],
                "p95": row["p95"],
                "p99": row["p99"],
            }
            latest[bucket] = row["end_time"]
            continue
        merged["count"] += row["count"]
        merged["sum"] += row["sum"]
        merged["min"] = min(merged["min"], row["min"])
        merged["max"] = max(merged["max"], row["max"])
        if row["end_time"] >= latest[bucket]:
            latest[bucket] = row["end_time"]
            for field in ("last", "p50", "p95", "p99"):
                merged[field] = row[field]

    result = []
    for bucket in sorted(buckets):
        merged = buckets[bucket]
        merged["avg"] = merged["sum"] / merged["count"] if merged["count"] else 0.0
        result.append(merged)
    return result


def baselines_from_rows(rows: Iterable[dict]) -> list[tuple[str, BaselineStats]]:
    """Fold rows, oldest first, into one baseline per metric key."""
    stats: dict[str, BaselineStats] = {}
    for row in sorted(rows, key=lambda r: r["end_time"]):
        key = get_metric_key(row["metric"], row["tags"])
        stats[key] = fold_aggregation(stats.get(key), Aggregation.from_dict(row))
    return list(stats.items())
