"""Decoding of recorder history rows.

Handles:
 - full rows with entity_id/state/attributes/last_changed
 - compressed arrays where only the first row carries entity_id/attributes
 - minimal_response short keys (e/s/a/lc/lu)
"""

import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from hachart.engine.models import CoerceMode, TransformSpec, is_number
from hachart.engine.tokens.entity import epoch_ms
from hachart.engine.tokens.transforms import coerce_history_point_number

_ENTITY_KEYS = ("entity_id", "e", "id")
_STATE_KEYS = ("state", "s", "st")
_ATTRIBUTE_KEYS = ("attributes", "a", "attr")
_TIMESTAMP_KEYS = ("last_changed", "last_updated", "lc", "lu", "c", "u", "ts", "t", "time_fired")


def _first(row: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def hist_entity_id(row: Mapping[str, Any]) -> str | None:
    value = _first(row, _ENTITY_KEYS)
    return str(value) if value is not None else None


def hist_state(row: Mapping[str, Any]) -> Any:
    return _first(row, _STATE_KEYS)


def hist_attributes(row: Mapping[str, Any]) -> dict[str, Any] | None:
    value = _first(row, _ATTRIBUTE_KEYS)
    return dict(value) if isinstance(value, Mapping) else None


def hist_timestamp_ms(row: Mapping[str, Any]) -> int | None:
    t = _first(row, _TIMESTAMP_KEYS)
    if t is None:
        return None
    if is_number(t):
        if not math.isfinite(t):
            return None
        return int(epoch_ms(t))
    if not isinstance(t, str):
        return None
    try:
        dt = datetime.fromisoformat(t.strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(round(dt.timestamp() * 1000))


def decode_history(
    raw: Iterable[Any] | None,
    entity_ids: list[str],
    attr: str | None = None,
    default: Any = None,
    coerce: CoerceMode | None = None,
    transforms: TransformSpec | None = None,
) -> dict[str, list[list[float]]]:
    """Group history rows into ``{entity_id: [[ts_ms, value], ...]}``.

    Each per-entity array is scanned in order, carrying the current entity
    id and the last attributes seen forward to rows that omit them. Rows
    without a timestamp or a finite value are dropped. Output lists are
    sorted ascending by timestamp.
    """
    per_entity: dict[str, list[list[float]]] = {eid: [] for eid in entity_ids}

    for arr in raw or []:
        if not isinstance(arr, list) or not arr:
            continue

        current_id: str | None = None
        last_attrs: dict[str, Any] | None = None

        for row in arr:
            if not isinstance(row, Mapping):
                continue

            row_id = hist_entity_id(row)
            if row_id is not None and row_id != current_id:
                current_id = row_id
                last_attrs = None
            if current_id is None or current_id not in per_entity:
                continue

            attrs = hist_attributes(row)
            if attrs is not None:
                last_attrs = attrs

            ts = hist_timestamp_ms(row)
            if ts is None:
                continue

            value = (last_attrs or {}).get(attr) if attr else hist_state(row)
            n = coerce_history_point_number(value, default, coerce, transforms)
            if n is None:
                continue

            per_entity[current_id].append([ts, n])

    for points in per_entity.values():
        points.sort(key=lambda p: p[0])
    return per_entity
