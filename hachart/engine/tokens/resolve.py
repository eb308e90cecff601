"""Recursive resolution of generator tokens inside an option tree.

The walk is depth-first and order-preserving. Generator nodes are replaced
wholesale by their computed value; every other dict/list is rebuilt with
resolved children, and primitives pass through. The input tree is never
mutated.
"""

import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from hachart.engine.models import (
    DataSpec,
    HistorySpec,
    InvalidTimeRangeError,
    StatisticsSpec,
    TokenSpec,
    is_number,
)
from hachart.engine.store import StateStore
from hachart.engine.tokens.entity import display_name, entity_raw_value
from hachart.engine.tokens.guards import classify_node
from hachart.engine.tokens.transforms import apply_transforms_with_spec, to_number
from hachart.shared.constants import (
    KEY_DATA,
    KEY_ENTITY,
    KEY_HISTORY,
    KEY_STATISTICS,
    UNAVAILABLE_STATES,
)

logger = logging.getLogger(__name__)

HistoryFetcher = Callable[[HistorySpec], Awaitable[Any]]
StatisticsFetcher = Callable[[StatisticsSpec], Awaitable[Any]]


@dataclass
class ResolvedTree:
    """Output of one resolution pass."""

    option: Any
    watched_entities: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)


async def _run_fetcher(fetcher: Callable[[Any], Awaitable[Any]], spec: Any, kind: str, warnings: list[str] | None):
    """Await a time-series fetch; an invalid time range drops only this generator."""
    try:
        return await fetcher(spec)
    except InvalidTimeRangeError as err:
        logger.warning("Dropping %s generator for %s: %s", kind, ",".join(spec.entity_ids), err)
        if warnings is not None:
            warnings.append(f"{kind}: {err}")
        return []


def _numeric(value: Any) -> float | None:
    n = value if is_number(value) else to_number(value)
    return n if math.isfinite(n) else None


def resolve_data(spec: DataSpec, store: StateStore | None, watched: set[str]) -> list[Any]:
    """Bulk extraction: current values of many entities, filtered and sorted."""
    include_unavailable = not spec.exclude_unavailable or spec.include_unavailable
    rows: list[dict[str, Any]] = []

    for ref in spec.entities:
        watched.add(ref.id)

        st = store.lookup(ref.id) if store is not None else None
        if st is None:
            continue
        if st.state in UNAVAILABLE_STATES and not include_unavailable:
            continue

        value = apply_transforms_with_spec(
            entity_raw_value(st, spec.attr), spec.default, spec.coerce, spec.transforms
        )
        num = _numeric(value)
        if spec.exclude_zero and num == 0:
            continue

        rows.append(
            {
                "id": ref.id,
                "name": display_name(ref, store, spec.name_from),
                "value": value,
                "num": num,
            }
        )

    # Rows without a numeric value go last in both directions
    if spec.sort == "asc":
        rows.sort(key=lambda r: (r["num"] is None, r["num"] if r["num"] is not None else 0))
    elif spec.sort == "desc":
        rows.sort(key=lambda r: (r["num"] is None, -r["num"] if r["num"] is not None else 0))

    if spec.limit is not None and spec.limit > 0:
        rows = rows[: spec.limit]

    if spec.mode == "names":
        return [r["name"] for r in rows]
    if spec.mode == "values":
        return [r["value"] for r in rows]
    return [{"name": r["name"], "value": r["value"]} for r in rows]


def resolve_token(spec: TokenSpec, store: StateStore | None, watched: set[str]) -> Any:
    """Single entity value, or ``$default`` when the entity is absent.

    An explicit ``string`` or ``bool`` ``$coerce`` returns the coerced value
    as is; only ``auto`` and ``number`` run the numeric transform pipeline.
    """
    watched.add(spec.entity)

    st = store.lookup(spec.entity) if store is not None else None
    if st is None:
        return spec.default

    return apply_transforms_with_spec(
        entity_raw_value(st, spec.attr), spec.default, spec.coerce, spec.transforms
    )


async def deep_resolve(
    node: Any,
    store: StateStore | None,
    watched: set[str],
    fetch_history: HistoryFetcher,
    fetch_statistics: StatisticsFetcher | None = None,
    warnings: list[str] | None = None,
) -> Any:
    """Resolve every generator reachable from ``node``.

    Entity ids touched along the way are added to ``watched``. Fetch errors
    other than an invalid time range propagate to the caller.
    """
    kind = classify_node(node)

    if kind == KEY_HISTORY:
        spec = HistorySpec.from_dict(node[KEY_HISTORY])
        watched.update(spec.entity_ids)
        return await _run_fetcher(fetch_history, spec, "$history", warnings)

    if kind == KEY_STATISTICS:
        spec = StatisticsSpec.from_dict(node[KEY_STATISTICS])
        watched.update(spec.entity_ids)
        if fetch_statistics is None:
            return []
        return await _run_fetcher(fetch_statistics, spec, "$statistics", warnings)

    if kind == KEY_DATA:
        return resolve_data(DataSpec.from_dict(node[KEY_DATA]), store, watched)

    if kind == KEY_ENTITY:
        return resolve_token(TokenSpec.from_dict(node), store, watched)

    if isinstance(node, list):
        return [
            await deep_resolve(x, store, watched, fetch_history, fetch_statistics, warnings)
            for x in node
        ]

    if isinstance(node, Mapping):
        out = {}
        for k, v in node.items():
            out[k] = await deep_resolve(v, store, watched, fetch_history, fetch_statistics, warnings)
        return out

    return node


async def resolve_tree(
    tree: Any,
    store: StateStore | None,
    fetch_history: HistoryFetcher,
    fetch_statistics: StatisticsFetcher | None = None,
) -> ResolvedTree:
    """Resolve a whole option tree, collecting watched entities and warnings."""
    result = ResolvedTree(option=None)
    result.option = await deep_resolve(
        tree, store, result.watched_entities, fetch_history, fetch_statistics, result.warnings
    )
    return result
