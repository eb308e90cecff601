"""Typed specs for the generator grammar and shared engine data.

Generator bodies arrive as hand-authored mappings (YAML/JSON already
deserialized). Each spec class reads its mapping once via ``from_dict`` so
the resolver and the fetch engines work with attributes instead of raw
dict lookups.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from hachart.shared.constants import (
    HISTORY_DEFAULT_CACHE_SECONDS,
    HISTORY_DEFAULT_HOURS,
    HISTORY_DEFAULT_SERIES_TYPE,
    STATISTICS_DEFAULT_CACHE_SECONDS,
    STATISTICS_DEFAULT_DAYS,
    STATISTICS_DEFAULT_PERIOD,
    STATISTICS_DEFAULT_SERIES_TYPE,
    STATISTICS_DEFAULT_STAT_TYPE,
)

CoerceMode = Literal["auto", "number", "string", "bool"]
NameFrom = Literal["friendly_name", "entity_id"]


def is_number(value: Any) -> bool:
    """True for int/float values, excluding bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _opt_number(value: Any) -> float | None:
    return value if is_number(value) else None


# ── Errors ──────────────────────────────────────────────────────────────


class InvalidTimeRangeError(ValueError):
    """A generator's start/end did not resolve to finite epoch milliseconds.

    Recoverable: the resolver drops the offending generator's value and
    keeps resolving the rest of the tree.
    """

    def __init__(self, code: str, details: dict[str, Any]):
        self.code = code
        self.details = details
        super().__init__(
            f"Invalid time range; start/end must be finite epoch-ms numbers. "
            f"Details: {json.dumps(details, default=str)}"
        )


class StatisticsUnavailableError(RuntimeError):
    """The transport has no long-term statistics capability."""


class RenderError(RuntimeError):
    """The downstream renderer rejected a resolved option."""


# ── Store data ──────────────────────────────────────────────────────────


@dataclass
class EntityState:
    """One entity as seen in the Home Assistant state machine."""

    entity_id: str
    state: str
    attributes: dict[str, Any] = field(default_factory=dict)
    last_changed: str = ""
    last_updated: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EntityState:
        attrs = data.get("attributes")
        return cls(
            entity_id=str(data.get("entity_id", "")),
            state=str(data.get("state", "")),
            attributes=dict(attrs) if isinstance(attrs, Mapping) else {},
            last_changed=str(data.get("last_changed") or ""),
            last_updated=str(data.get("last_updated") or data.get("last_changed") or ""),
        )

    @property
    def friendly_name(self) -> str | None:
        name = self.attributes.get("friendly_name")
        return name if isinstance(name, str) else None


@dataclass(frozen=True)
class CacheEntry:
    """A computed time-series value. Replaced wholesale, never mutated."""

    ts: float
    value: Any
    expires_at: float

    def is_fresh(self, now_ms: float) -> bool:
        return self.expires_at > now_ms


# ── Grammar pieces ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class EntityRef:
    """An entity reference: bare id or ``{id, name}`` with a display override."""

    id: str
    name: str | None = None

    @classmethod
    def from_spec(cls, raw: Any) -> EntityRef:
        if isinstance(raw, Mapping):
            name = raw.get("name")
            return cls(id=str(raw.get("id", "")), name=str(name) if name is not None else None)
        return cls(id=str(raw))


def _entity_refs(raw: Any) -> list[EntityRef]:
    if not isinstance(raw, list):
        return []
    return [EntityRef.from_spec(e) for e in raw]


@dataclass(frozen=True)
class MapSpec:
    """The optional first stage of the transform pipeline."""

    type: Literal["log", "sqrt", "pow"]
    base: float = 10
    add: float = 1
    pow: float | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> MapSpec | None:
        if raw in ("log", "sqrt"):
            return cls(type=raw)
        if not isinstance(raw, Mapping):
            return None
        kind = raw.get("type")
        if kind == "log":
            base = raw.get("base")
            add = raw.get("add")
            return cls(
                type="log",
                base=base if is_number(base) else 10,
                add=add if is_number(add) else 1,
            )
        if kind == "sqrt":
            return cls(type="sqrt")
        if kind == "pow" and is_number(raw.get("pow")):
            return cls(type="pow", pow=raw["pow"])
        return None

    def to_dict(self) -> dict[str, Any]:
        if self.type == "log":
            return {"type": "log", "base": self.base, "add": self.add}
        if self.type == "pow":
            return {"type": "pow", "pow": self.pow}
        return {"type": self.type}


@dataclass(frozen=True)
class TransformSpec:
    """Ordered numeric pipeline: map, abs, scale, offset, min, max, clamp, round."""

    map: MapSpec | None = None
    abs: bool = False
    scale: float | None = None
    offset: float | None = None
    min: float | None = None
    max: float | None = None
    clamp: tuple[float, float] | None = None
    round: int | None = None

    @classmethod
    def from_dict(cls, raw: Any, prefix: str = "") -> TransformSpec:
        """Read a transforms mapping; ``prefix="$"`` reads entity-token keys."""
        if not isinstance(raw, Mapping):
            return cls()
        clamp = raw.get(f"{prefix}clamp")
        clamp_pair = None
        if isinstance(clamp, (list, tuple)) and len(clamp) == 2 and all(is_number(c) for c in clamp):
            clamp_pair = (clamp[0], clamp[1])
        rnd = raw.get(f"{prefix}round")
        return cls(
            map=MapSpec.from_raw(raw.get(f"{prefix}map")),
            abs=raw.get(f"{prefix}abs") is True,
            scale=_opt_number(raw.get(f"{prefix}scale")),
            offset=_opt_number(raw.get(f"{prefix}offset")),
            min=_opt_number(raw.get(f"{prefix}min")),
            max=_opt_number(raw.get(f"{prefix}max")),
            clamp=clamp_pair,
            round=int(rnd) if is_number(rnd) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Canonical form used in cache keys; absent stages are omitted."""
        out: dict[str, Any] = {}
        if self.map is not None:
            out["map"] = self.map.to_dict()
        if self.abs:
            out["abs"] = True
        for name in ("scale", "offset", "min", "max"):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        if self.clamp is not None:
            out["clamp"] = list(self.clamp)
        if self.round is not None:
            out["round"] = self.round
        return out


@dataclass(frozen=True)
class SampleSpec:
    max_points: int
    method: Literal["mean", "last"] = "mean"

    @classmethod
    def from_raw(cls, raw: Any) -> SampleSpec | None:
        if not isinstance(raw, Mapping) or not is_number(raw.get("max_points")):
            return None
        method = raw.get("method", "mean")
        return cls(max_points=int(raw["max_points"]), method="last" if method == "last" else "mean")


# ── Generator specs ─────────────────────────────────────────────────────


@dataclass
class TokenSpec:
    """``{"$entity": id, "$attr": ..., "$coerce": ..., "$default": ..., "$scale": ...}``"""

    entity: str
    attr: str | None = None
    coerce: CoerceMode | None = None
    default: Any = None
    transforms: TransformSpec = field(default_factory=TransformSpec)

    @classmethod
    def from_dict(cls, node: Mapping[str, Any]) -> TokenSpec:
        attr = node.get("$attr")
        return cls(
            entity=str(node.get("$entity", "")),
            attr=str(attr) if attr else None,
            coerce=node.get("$coerce"),
            default=node.get("$default"),
            transforms=TransformSpec.from_dict(node, prefix="$"),
        )


@dataclass
class DataSpec:
    """Body of a ``$data`` bulk-extraction generator."""

    entities: list[EntityRef] = field(default_factory=list)
    mode: Literal["pairs", "names", "values"] = "pairs"
    name_from: NameFrom = "friendly_name"
    attr: str | None = None
    coerce: CoerceMode | None = None
    default: Any = None
    include_unavailable: bool = False
    exclude_unavailable: bool = True
    exclude_zero: bool = False
    sort: Literal["asc", "desc", "none"] = "none"
    limit: int | None = None
    transforms: TransformSpec = field(default_factory=TransformSpec)

    @classmethod
    def from_dict(cls, body: Any) -> DataSpec:
        if not isinstance(body, Mapping):
            return cls()
        limit = body.get("limit")
        return cls(
            entities=_entity_refs(body.get("entities")),
            mode=body.get("mode") if body.get("mode") in ("names", "values") else "pairs",
            name_from=body.get("name_from", "friendly_name"),
            attr=body.get("attr") or None,
            coerce=body.get("coerce"),
            default=body.get("default"),
            include_unavailable=bool(body.get("include_unavailable", False)),
            exclude_unavailable=bool(body.get("exclude_unavailable", True)),
            exclude_zero=bool(body.get("exclude_zero", False)),
            sort=body.get("sort") if body.get("sort") in ("asc", "desc") else "none",
            limit=int(limit) if is_number(limit) else None,
            transforms=TransformSpec.from_dict(body.get("transforms")),
        )


@dataclass
class HistorySpec:
    """Body of a ``$history`` generator (recorder state history)."""

    entities: list[EntityRef] = field(default_factory=list)
    hours: float = HISTORY_DEFAULT_HOURS
    start: str | float | None = None
    end: str | float | None = None
    mode: Literal["values", "series"] | None = None
    name_from: NameFrom = "friendly_name"
    attr: str | None = None
    coerce: CoerceMode | None = None
    default: Any = None
    transforms: TransformSpec = field(default_factory=TransformSpec)
    series_type: str | None = None
    show_symbol: bool = False
    sample: SampleSpec | None = None
    cache_seconds: float = HISTORY_DEFAULT_CACHE_SECONDS
    series_overrides: dict[str, dict[str, Any]] | None = None
    minimal_response: bool = False

    @property
    def entity_ids(self) -> list[str]:
        return [e.id for e in self.entities]

    @property
    def effective_series_type(self) -> str:
        return self.series_type or HISTORY_DEFAULT_SERIES_TYPE

    @classmethod
    def from_dict(cls, body: Any) -> HistorySpec:
        if not isinstance(body, Mapping):
            return cls()
        hours = body.get("hours")
        cache_seconds = body.get("cache_seconds")
        overrides = body.get("series_overrides")
        mode = body.get("mode")
        return cls(
            entities=_entity_refs(body.get("entities")),
            hours=hours if is_number(hours) else HISTORY_DEFAULT_HOURS,
            start=body.get("start"),
            end=body.get("end"),
            mode=mode if mode in ("values", "series") else None,
            name_from=body.get("name_from", "friendly_name"),
            attr=body.get("attr") or None,
            coerce=body.get("coerce"),
            default=body.get("default"),
            transforms=TransformSpec.from_dict(body.get("transforms")),
            series_type=body.get("series_type"),
            show_symbol=bool(body.get("show_symbol", False)),
            sample=SampleSpec.from_raw(body.get("sample")),
            cache_seconds=cache_seconds if is_number(cache_seconds) else HISTORY_DEFAULT_CACHE_SECONDS,
            series_overrides=dict(overrides) if isinstance(overrides, Mapping) else None,
            minimal_response=bool(body.get("minimal_response", False)),
        )


@dataclass
class StatisticsSpec:
    """Body of a ``$statistics`` generator (recorder long-term statistics)."""

    entities: list[EntityRef] = field(default_factory=list)
    period: str = STATISTICS_DEFAULT_PERIOD
    stat_type: str = STATISTICS_DEFAULT_STAT_TYPE
    days: float = STATISTICS_DEFAULT_DAYS
    start: str | float | None = None
    end: str | float | None = None
    mode: Literal["values", "series", "pairs"] | None = None
    name_from: NameFrom = "friendly_name"
    series_type: str | None = None
    cache_seconds: float = STATISTICS_DEFAULT_CACHE_SECONDS
    series_overrides: dict[str, dict[str, Any]] | None = None

    @property
    def entity_ids(self) -> list[str]:
        return [e.id for e in self.entities]

    @property
    def effective_series_type(self) -> str:
        return self.series_type or STATISTICS_DEFAULT_SERIES_TYPE

    @classmethod
    def from_dict(cls, body: Any) -> StatisticsSpec:
        if not isinstance(body, Mapping):
            return cls()
        days = body.get("days")
        cache_seconds = body.get("cache_seconds")
        overrides = body.get("series_overrides")
        mode = body.get("mode")
        return cls(
            entities=_entity_refs(body.get("entities")),
            period=body.get("period") or STATISTICS_DEFAULT_PERIOD,
            stat_type=body.get("stat_type") or STATISTICS_DEFAULT_STAT_TYPE,
            days=days if is_number(days) else STATISTICS_DEFAULT_DAYS,
            start=body.get("start"),
            end=body.get("end"),
            mode=mode if mode in ("values", "series", "pairs") else None,
            name_from=body.get("name_from", "friendly_name"),
            series_type=body.get("series_type"),
            cache_seconds=cache_seconds if is_number(cache_seconds) else STATISTICS_DEFAULT_CACHE_SECONDS,
            series_overrides=dict(overrides) if isinstance(overrides, Mapping) else None,
        )
