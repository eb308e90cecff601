"""Cache-lifetime scan over an option tree."""

from collections.abc import Mapping
from typing import Any

from hachart.engine.models import is_number
from hachart.engine.tokens.guards import classify_node, is_time_series_generator
from hachart.shared.constants import HISTORY_DEFAULT_CACHE_SECONDS


def min_cache_seconds_in_tree(tree: Any, fallback: float = HISTORY_DEFAULT_CACHE_SECONDS) -> float:
    """Smallest explicit positive ``cache_seconds`` over all time-series generators."""
    found: list[float] = []

    def walk(node: Any) -> None:
        if is_time_series_generator(node):
            body = node[classify_node(node)]
            cs = body.get("cache_seconds") if isinstance(body, Mapping) else None
            if is_number(cs) and cs > 0:
                found.append(cs)
            return
        if isinstance(node, list):
            for x in node:
                walk(x)
        elif isinstance(node, Mapping):
            for v in node.values():
                walk(v)

    walk(tree)
    return min(found) if found else fallback
