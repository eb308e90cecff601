"""Read-only view of the Home Assistant state machine.

The resolver only ever calls ``lookup`` on the store; anything that
implements the ``StateStore`` protocol can stand in (tests use
``StatesSnapshot`` built from plain dicts).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from hachart.engine.models import EntityState


class StateStore(Protocol):
    def lookup(self, entity_id: str) -> EntityState | None: ...

    def is_dark_mode(self) -> bool: ...


class StatesSnapshot:
    """Immutable snapshot of entity states keyed by entity_id."""

    def __init__(self, states: Mapping[str, EntityState] | None = None, dark_mode: bool = False):
        self._states: dict[str, EntityState] = dict(states or {})
        self._dark_mode = dark_mode

    @classmethod
    def from_states_payload(cls, payload: Iterable[Mapping[str, Any]], dark_mode: bool = False) -> StatesSnapshot:
        """Build from the list returned by ``GET /api/states``."""
        states = {}
        for raw in payload:
            if not isinstance(raw, Mapping) or not raw.get("entity_id"):
                continue
            st = EntityState.from_dict(raw)
            states[st.entity_id] = st
        return cls(states, dark_mode=dark_mode)

    def lookup(self, entity_id: str) -> EntityState | None:
        return self._states.get(entity_id)

    def is_dark_mode(self) -> bool:
        return self._dark_mode

    def with_state(self, state: EntityState | None, entity_id: str | None = None) -> StatesSnapshot:
        """Copy with one entity replaced, or removed when ``state`` is None."""
        states = dict(self._states)
        if state is None:
            states.pop(entity_id or "", None)
        else:
            states[state.entity_id] = state
        return StatesSnapshot(states, dark_mode=self._dark_mode)

    @property
    def entity_ids(self) -> list[str]:
        return list(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._states
