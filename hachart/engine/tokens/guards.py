"""Structural classification of option-tree nodes.

A node is a generator when it is a dict carrying one of the reserved keys.
When a hand-written node carries several, the first key in
``GENERATOR_PRIORITY`` wins: history, statistics, data, entity.
"""

from collections.abc import Mapping
from typing import Any

from hachart.shared.constants import (
    GENERATOR_PRIORITY,
    KEY_DATA,
    KEY_ENTITY,
    KEY_HISTORY,
    KEY_STATISTICS,
)


def _has_key(node: Any, key: str) -> bool:
    return isinstance(node, Mapping) and key in node


def is_history_generator(node: Any) -> bool:
    return _has_key(node, KEY_HISTORY)


def is_statistics_generator(node: Any) -> bool:
    return _has_key(node, KEY_STATISTICS)


def is_data_generator(node: Any) -> bool:
    return _has_key(node, KEY_DATA)


def is_token_object(node: Any) -> bool:
    return _has_key(node, KEY_ENTITY)


def classify_node(node: Any) -> str | None:
    """Return the reserved key this node is a generator for, or None."""
    if not isinstance(node, Mapping):
        return None
    for key in GENERATOR_PRIORITY:
        if key in node:
            return key
    return None


def is_time_series_generator(node: Any) -> bool:
    return classify_node(node) in (KEY_HISTORY, KEY_STATISTICS)


def contains_history_token(node: Any) -> bool:
    """True if any reachable node is a $history or $statistics generator."""
    if is_time_series_generator(node):
        return True
    if isinstance(node, list):
        return any(contains_history_token(x) for x in node)
    if isinstance(node, Mapping):
        return any(contains_history_token(v) for v in node.values())
    return False
