"""Bucketed downsampling of time-ordered points."""

import math
from typing import Any, Literal

from hachart.engine.tokens.transforms import to_number


def downsample(
    points: list[list[Any]],
    max_points: int,
    method: Literal["mean", "last"] = "mean",
) -> list[list[Any]]:
    """Reduce ``points`` (sorted ascending by time) to about ``max_points``.

    Returns the input list itself when no reduction is needed. Each
    non-empty bucket yields one point stamped with the bucket's last
    timestamp. The input's final point is always the output's final point.
    """
    if len(points) <= max_points or max_points <= 1:
        return points

    first_t = points[0][0]
    last_t = points[-1][0]
    span = max(1, last_t - first_t)
    bucket_size = span / max_points

    buckets: list[list[list[Any]]] = [[] for _ in range(max_points)]
    for p in points:
        idx = min(max_points - 1, math.floor((p[0] - first_t) / bucket_size))
        buckets[idx].append(p)

    out: list[list[Any]] = []
    for bucket in buckets:
        if not bucket:
            continue
        t = bucket[-1][0]

        if method == "last":
            out.append([t, bucket[-1][1]])
            continue

        total = 0.0
        count = 0
        for _, v in bucket:
            n = to_number(v) if v is not None else math.nan
            if math.isfinite(n):
                total += n
                count += 1
        out.append([t, total / count if count else bucket[-1][1]])

    last = points[-1]
    if out and out[-1][0] != last[0]:
        out.append(last)
    return out
