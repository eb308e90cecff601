"""Entity reference helpers shared by the resolver and the fetch engines."""

import math
from datetime import UTC, datetime
from typing import Any

from hachart.engine.models import EntityRef, EntityState, NameFrom, is_number
from hachart.engine.store import StateStore
from hachart.shared.constants import EPOCH_MS_THRESHOLD


def normalize_entity_spec(raw: Any) -> EntityRef:
    if isinstance(raw, EntityRef):
        return raw
    return EntityRef.from_spec(raw)


def display_name(ref: EntityRef, store: StateStore | None, name_from: NameFrom = "friendly_name") -> str:
    """Override name, else entity_id or friendly_name per ``name_from``."""
    if ref.name is not None:
        return ref.name
    if name_from == "entity_id":
        return ref.id
    st = store.lookup(ref.id) if store is not None else None
    return (st.friendly_name if st else None) or ref.id


def entity_raw_value(st: EntityState, attr: str | None) -> Any:
    """The attribute value when ``attr`` is set, else the state string."""
    if attr:
        return st.attributes.get(attr)
    return st.state


def epoch_ms(value: float) -> float:
    """Scale seconds-precision epochs up to milliseconds."""
    return value * 1000 if value < EPOCH_MS_THRESHOLD else value


def parse_time(t: Any, fallback_ms: float) -> float:
    """Parse an ISO string or epoch number into epoch ms.

    ``None`` yields ``fallback_ms``. Anything unparseable yields ``nan`` so
    the caller's range guard reports it.
    """
    if t is None:
        return fallback_ms
    if is_number(t):
        return epoch_ms(t) if math.isfinite(t) else math.nan
    if isinstance(t, str):
        s = t.strip()
        try:
            return epoch_ms(float(s))
        except ValueError:
            pass
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return math.nan
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.timestamp() * 1000
    return math.nan


def to_iso(ms: float) -> str:
    """Epoch ms to an ISO-8601 UTC string with millisecond precision."""
    dt = datetime.fromtimestamp(ms / 1000, tz=UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"
