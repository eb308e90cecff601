"""Value coercion and the fixed numeric transform pipeline.

Raw values come from the state machine as strings (``"21.5"``, ``"on"``),
attribute values of any JSON type, or recorder history rows. Everything a
chart plots goes through ``coerce_value`` and ``apply_number_transforms``.
"""

import math
from typing import Any

from hachart.engine.models import CoerceMode, TransformSpec, is_number
from hachart.shared.constants import FALSY_STRINGS, TRUTHY_STRINGS


def to_number(raw: Any) -> float:
    """Loose numeric conversion. Returns ``nan`` when there is no number."""
    if isinstance(raw, bool):
        return 1 if raw else 0
    if is_number(raw):
        return raw
    if isinstance(raw, str):
        s = raw.strip()
        if s == "":
            return 0
        try:
            return int(s)
        except ValueError:
            pass
        try:
            return float(s)
        except ValueError:
            return math.nan
    return math.nan


def _finite(x: Any) -> bool:
    return is_number(x) and math.isfinite(x)


def coerce_value(raw: Any, mode: CoerceMode = "auto") -> Any:
    """Convert a raw state/attribute value according to ``mode``."""
    if mode == "string":
        return "" if raw is None else str(raw)

    if mode == "bool":
        if isinstance(raw, bool):
            return raw
        if is_number(raw):
            return raw != 0
        if isinstance(raw, str):
            s = raw.strip().lower()
            if s in TRUTHY_STRINGS:
                return True
            if s in FALSY_STRINGS:
                return False
            return bool(s)
        return bool(raw)

    if mode == "number":
        n = to_number(raw)
        return n if math.isfinite(n) else math.nan

    # auto
    if isinstance(raw, bool) or is_number(raw):
        return raw
    if isinstance(raw, str):
        if raw.strip() == "":
            return raw
        n = to_number(raw)
        return n if math.isfinite(n) else raw
    return raw


def _apply_map(x: float, transforms: TransformSpec) -> float:
    m = transforms.map
    try:
        if m.type == "log":
            return math.log(x + m.add) / math.log(m.base)
        if m.type == "sqrt":
            return 0 if x < 0 else math.sqrt(x)
        if m.type == "pow":
            return math.pow(x, m.pow)
    except (ValueError, ZeroDivisionError, OverflowError):
        return math.nan
    return x


def round_half_up(x: float, digits: int) -> float:
    p = 10**digits
    return math.floor(x * p + 0.5) / p


def apply_number_transforms(value: Any, transforms: TransformSpec, default: Any = None) -> Any:
    """Run the pipeline map → abs → scale → offset → min → max → clamp → round.

    Non-numeric input is returned as ``default`` (or unchanged when there is
    no default). A stage that produces a non-finite number falls back to
    ``default`` or 0 so NaN never reaches the chart.
    """
    x = to_number(value)
    if not math.isfinite(x):
        return default if default is not None else value

    fallback = default if default is not None else 0

    if transforms.map is not None:
        x = _apply_map(x, transforms)
        if not _finite(x):
            return fallback

    if transforms.abs:
        x = abs(x)
    if transforms.scale is not None:
        x *= transforms.scale
    if transforms.offset is not None:
        x += transforms.offset
    if transforms.min is not None:
        x = max(transforms.min, x)
    if transforms.max is not None:
        x = min(transforms.max, x)
    if transforms.clamp is not None:
        lo, hi = transforms.clamp
        x = min(hi, max(lo, x))
    if transforms.round is not None:
        x = round_half_up(x, transforms.round)

    if not _finite(x):
        return fallback
    return x


def apply_transforms_with_spec(
    value: Any,
    default: Any,
    coerce: CoerceMode | None,
    transforms: TransformSpec | None,
) -> Any:
    """Coerce with the effective mode (``auto`` by default), then transform.

    Explicit ``string`` and ``bool`` modes skip the numeric pipeline.
    """
    mode = coerce or "auto"
    coerced = coerce_value(value, mode)
    if isinstance(coerced, float) and math.isnan(coerced):
        return default if default is not None else 0
    if mode in ("string", "bool"):
        return coerced
    return apply_number_transforms(coerced, transforms or TransformSpec(), default)


def coerce_history_point_number(
    raw: Any,
    default: Any,
    coerce: CoerceMode | None,
    transforms: TransformSpec | None,
) -> float | None:
    """Numeric value for one history point, or None to drop the point."""
    v = apply_transforms_with_spec(raw, default, coerce or "number", transforms)
    n = v if is_number(v) else to_number(v)
    if not math.isfinite(n):
        return None
    return n
