"""Summary statistics for drained buffers and the baseline fold."""

import math
from typing import Sequence

from analytics.models import Aggregation, BaselineStats, Sample


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """
    Nearest-rank lookup: index = round(p * (n - 1)), clamped to [0, n - 1].

    ``round`` is Python's half-to-even rounding, so p50 of ten values picks
    index 4 (the 5th value).
    """
    n = len(sorted_values)
    if n == 0:
        raise ValueError("percentile of an empty sequence")
    idx = int(round(p * (n - 1)))
    return sorted_values[min(max(idx, 0), n - 1)]


def compute_aggregation(samples: Sequence[Sample]) -> Aggregation | None:
    """
    Summarize samples in buffer order.

    count/sum/min/max/last, the time bounds and the batch M2 (Welford) are
    collected in a single pass; percentiles come from one sort.
    """
    if not samples:
        return None

    count = 0
    total = 0.0
    mean = 0.0
    m2 = 0.0
    min_val = math.inf
    max_val = -math.inf
    start = math.inf
    end = -math.inf
    for sample in samples:
        v = sample.value
        count += 1
        total += v
        delta = v - mean
        mean += delta / count
        m2 += delta * (v - mean)
        if v < min_val:
            min_val = v
        if v > max_val:
            max_val = v
        if sample.timestamp < start:
            start = sample.timestamp
        if sample.timestamp > end:
            end = sample.timestamp

    sorted_vals = sorted(s.value for s in samples)
    return Aggregation(
        count=count,
        sum=total,
        min=min_val,
        max=max_val,
        avg=total / count,
        last=samples[-1].value,
        p50=percentile(sorted_vals, 0.50),
        p95=percentile(sorted_vals, 0.95),
        p99=percentile(sorted_vals, 0.99),
        start_time=start,
        end_time=end,
        variance=max(m2 / count, 0.0),
    )


def fold_aggregation(baseline: BaselineStats | None, agg: Aggregation) -> BaselineStats:
    """
    Merge one aggregation into a baseline.

    count and sum add up and mean = sum / count. Spread is combined with the
    pairwise M2 update (Chan et al.) rather than sum_squares/n - mean^2, which
    loses precision once counts get large.
    """
    if baseline is None:
        baseline = BaselineStats()
    if agg.count <= 0:
        return baseline

    new_count = baseline.count + agg.count
    new_sum = baseline.sum + agg.sum
    new_mean = new_sum / new_count

    batch_m2 = agg.variance * agg.count
    delta = agg.avg - baseline.mean
    new_m2 = baseline.m2 + batch_m2 + delta * delta * baseline.count * agg.count / new_count
    new_m2 = max(new_m2, 0.0)

    return BaselineStats(
        count=new_count,
        mean=new_mean,
        std_dev=math.sqrt(new_m2 / new_count),
        sum=new_sum,
        sum_squares=baseline.sum_squares + batch_m2 + agg.count * agg.avg * agg.avg,
        m2=new_m2,
    )
