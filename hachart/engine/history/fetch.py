"""``$history`` generator: time range, cache key, fetch and output shaping."""

import json
import logging
import math
from typing import Any

from hachart.engine.collectors.ha_api import HistoryAPI
from hachart.engine.history.decode import decode_history
from hachart.engine.history.downsample import downsample
from hachart.engine.models import CacheEntry, EntityRef, HistorySpec, InvalidTimeRangeError
from hachart.engine.store import StateStore
from hachart.engine.tokens.entity import display_name, parse_time, to_iso
from hachart.shared.lru import LruMap

logger = logging.getLogger(__name__)

INVALID_HISTORY_TIME = "INVALID_HISTORY_TIME"


def bucket_down(ms: float, cache_seconds: float) -> float:
    """Round ``ms`` down to a multiple of the cache window."""
    bucket = max(1, cache_seconds) * 1000
    return math.floor(ms / bucket) * bucket


def history_time_range(spec: HistorySpec, now_ms: float) -> tuple[int, int]:
    """Derive ``(start_ms, end_ms)``.

    An implicit end is "now" bucketed to ``cache_seconds`` so repeated calls
    inside one cache window produce the same range and cache key.
    """
    end_ms = parse_time(spec.end, now_ms)
    if spec.end is None:
        end_ms = bucket_down(end_ms, spec.cache_seconds)

    if spec.start is not None:
        start_ms = parse_time(spec.start, end_ms - 24 * 3_600_000)
    else:
        start_ms = end_ms - spec.hours * 3_600_000

    if not math.isfinite(end_ms) or not math.isfinite(start_ms):
        raise InvalidTimeRangeError(
            INVALID_HISTORY_TIME,
            {
                "start": spec.start,
                "end": spec.end,
                "hours": spec.hours,
                "now_ms": now_ms,
                "computed": {"start_ms": start_ms, "end_ms": end_ms},
            },
        )
    return int(start_ms), int(end_ms)


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def history_cache_key(spec: HistorySpec, start_ms: int, end_ms: int) -> str:
    """Fingerprint of every parameter that changes the fetched output."""
    sample = f"{spec.sample.max_points}:{spec.sample.method}" if spec.sample else ""
    overrides = _dumps(spec.series_overrides) if spec.series_overrides else ""
    return "|".join(
        [
            ",".join(spec.entity_ids),
            str(start_ms),
            str(end_ms),
            spec.attr or "",
            spec.coerce or "number",
            _dumps(spec.transforms.to_dict()),
            spec.mode or "",
            spec.series_type or "",
            sample,
            overrides,
            "1" if spec.minimal_response else "0",
        ]
    )


def build_series(
    entities: list[EntityRef],
    per_entity: dict[str, list[list[Any]]],
    store: StateStore | None,
    name_from: str,
    series_type: str,
    overrides: dict[str, dict[str, Any]] | None,
    extra: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """One ECharts series object per entity, with per-series overrides.

    Overrides are looked up by display name first, then by entity id.
    """
    series = []
    for ref in entities:
        name = display_name(ref, store, name_from)
        base: dict[str, Any] = {"name": name, "type": series_type}
        if extra:
            base.update(extra)
        base["data"] = per_entity.get(ref.id, [])

        if overrides:
            override = overrides.get(name) if name in overrides else overrides.get(ref.id)
            if isinstance(override, dict):
                base.update(override)
        series.append(base)
    return series


async def fetch_history(
    client: HistoryAPI,
    store: StateStore | None,
    spec: HistorySpec,
    watched: set[str],
    cache: LruMap,
    now_ms: float,
) -> Any:
    """Resolve one ``$history`` generator, consulting ``cache`` first.

    Raises:
        InvalidTimeRangeError: start/end did not parse to finite times.
    """
    start_ms, end_ms = history_time_range(spec, now_ms)

    entity_ids = spec.entity_ids
    watched.update(entity_ids)

    key = history_cache_key(spec, start_ms, end_ms)
    cached: CacheEntry | None = cache.get(key)
    if cached is not None and cached.is_fresh(now_ms):
        logger.debug("History cache hit for %s", ",".join(entity_ids))
        return cached.value

    hist = await client.query_history_period(
        to_iso(start_ms),
        to_iso(end_ms),
        ",".join(entity_ids),
        minimal_response=spec.minimal_response,
    )

    per_entity = decode_history(
        hist,
        entity_ids,
        attr=spec.attr,
        default=spec.default,
        coerce=spec.coerce,
        transforms=spec.transforms,
    )

    if spec.sample is not None and spec.sample.max_points > 1:
        for eid in entity_ids:
            per_entity[eid] = downsample(per_entity[eid], spec.sample.max_points, spec.sample.method)

    mode = spec.mode or ("series" if len(entity_ids) > 1 else "values")
    if mode == "values":
        result: Any = per_entity.get(entity_ids[0], []) if entity_ids else []
    else:
        result = build_series(
            spec.entities,
            per_entity,
            store,
            spec.name_from,
            spec.effective_series_type,
            spec.series_overrides,
            extra={"showSymbol": spec.show_symbol},
        )

    logger.debug(
        "History fetched for %s: %d points",
        ",".join(entity_ids),
        sum(len(p) for p in per_entity.values()),
    )
    cache.set(key, CacheEntry(ts=now_ms, value=result, expires_at=now_ms + spec.cache_seconds * 1000))
    return result
