"""``$statistics`` generator: pre-aggregated recorder statistics.

Rows come back already bucketed by ``period`` with mean/min/max/sum/change/
state columns, so there is no downsampling here. ``pairs`` mode collapses
each entity's rows into a single summed value.
"""

import json
import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from hachart.engine.history.fetch import bucket_down, build_series
from hachart.engine.models import (
    CacheEntry,
    InvalidTimeRangeError,
    StatisticsSpec,
    StatisticsUnavailableError,
    is_number,
)
from hachart.engine.store import StateStore
from hachart.engine.tokens.entity import display_name, epoch_ms, parse_time, to_iso
from hachart.engine.tokens.transforms import round_half_up
from hachart.shared.lru import LruMap

logger = logging.getLogger(__name__)

INVALID_STATISTICS_TIME = "INVALID_STATISTICS_TIME"


def statistics_time_range(spec: StatisticsSpec, now_ms: float) -> tuple[int, int]:
    """Derive ``(start_ms, end_ms)``; the end is always bucketed to ``cache_seconds``."""
    end_ms = parse_time(spec.end, now_ms) if spec.end is not None else now_ms
    if math.isfinite(end_ms):
        end_ms = bucket_down(end_ms, spec.cache_seconds)

    if spec.start is not None:
        start_ms = parse_time(spec.start, end_ms - spec.days * 86_400_000)
    else:
        start_ms = end_ms - spec.days * 86_400_000

    if not math.isfinite(end_ms) or not math.isfinite(start_ms):
        raise InvalidTimeRangeError(
            INVALID_STATISTICS_TIME,
            {
                "start": spec.start,
                "end": spec.end,
                "days": spec.days,
                "now_ms": now_ms,
                "computed": {"start_ms": start_ms, "end_ms": end_ms},
            },
        )
    return int(start_ms), int(end_ms)


def statistics_cache_key(spec: StatisticsSpec, start_iso: str, end_iso: str) -> str:
    return "|".join(
        [
            ",".join(spec.entity_ids),
            start_iso,
            end_iso,
            spec.period,
            spec.stat_type,
            spec.mode or "",
            spec.series_type or "",
            json.dumps(spec.series_overrides or {}, sort_keys=True, separators=(",", ":"), default=str),
        ]
    )


def _row_start_ms(row: Mapping[str, Any]) -> int | None:
    start = row.get("start")
    if is_number(start):
        return int(epoch_ms(start)) if math.isfinite(start) else None
    if isinstance(start, str):
        try:
            dt = datetime.fromisoformat(start)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return int(round(dt.timestamp() * 1000))
    return None


def extract_statistic(rows: Any, stat_type: str) -> list[list[float]]:
    """``[[start_ms, value], ...]`` for one entity, values rounded to 2 dp."""
    points = []
    for row in rows or []:
        if not isinstance(row, Mapping):
            continue
        ts = _row_start_ms(row)
        value = row.get(stat_type)
        if ts is None or not is_number(value) or not math.isfinite(value):
            continue
        points.append([ts, round_half_up(value, 2)])
    return points


async def fetch_statistics(
    client: Any,
    store: StateStore | None,
    spec: StatisticsSpec,
    watched: set[str],
    cache: LruMap,
    now_ms: float,
) -> Any:
    """Resolve one ``$statistics`` generator, consulting ``cache`` first.

    Raises:
        InvalidTimeRangeError: start/end did not parse to finite times.
        StatisticsUnavailableError: ``client`` cannot query statistics.
    """
    start_ms, end_ms = statistics_time_range(spec, now_ms)

    entity_ids = spec.entity_ids
    watched.update(entity_ids)

    start_iso = to_iso(start_ms)
    end_iso = to_iso(end_ms)

    key = statistics_cache_key(spec, start_iso, end_iso)
    cached: CacheEntry | None = cache.get(key)
    if cached is not None and cached.is_fresh(now_ms):
        logger.debug("Statistics cache hit for %s", ",".join(entity_ids))
        return cached.value

    query = getattr(client, "query_statistics", None)
    if query is None:
        raise StatisticsUnavailableError("$statistics requires a client with recorder statistics support")

    response = await query(start_iso, end_iso, entity_ids, spec.period, [spec.stat_type])
    response = response or {}

    per_entity = {eid: extract_statistic(response.get(eid), spec.stat_type) for eid in entity_ids}

    mode = spec.mode or ("series" if len(entity_ids) > 1 else "values")
    if mode == "values":
        result: Any = per_entity.get(entity_ids[0], []) if entity_ids else []
    elif mode == "pairs":
        result = [
            {
                "name": display_name(ref, store, spec.name_from),
                "value": round_half_up(sum(v for _, v in per_entity.get(ref.id, [])), 2),
            }
            for ref in spec.entities
        ]
    else:
        result = build_series(
            spec.entities,
            per_entity,
            store,
            spec.name_from,
            spec.effective_series_type,
            spec.series_overrides,
        )

    logger.debug("Statistics fetched for %s (%s/%s)", ",".join(entity_ids), spec.period, spec.stat_type)
    cache.set(key, CacheEntry(ts=now_ms, value=result, expires_at=now_ms + spec.cache_seconds * 1000))
    return result
