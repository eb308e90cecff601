"""Shared fixtures: entity states, snapshots and fake HA transports."""

from unittest.mock import AsyncMock

import pytest

from hachart.engine.models import EntityState
from hachart.engine.store import StatesSnapshot

# Fixed clock: 2026-01-15T12:00:10Z
NOW_S = 1_768_478_410.0


def _make_state(entity_id, state, friendly_name=None, last_updated="2026-01-15T11:00:00+00:00", **attributes):
    if friendly_name is not None:
        attributes["friendly_name"] = friendly_name
    return EntityState(
        entity_id=entity_id,
        state=state,
        attributes=attributes,
        last_changed=last_updated,
        last_updated=last_updated,
    )


class FakeHistoryClient:
    """Transport with recorder history only."""

    def __init__(self, history=None):
        self.query_history_period = AsyncMock(return_value=history or [])


class FakeHAClient(FakeHistoryClient):
    """Transport with recorder history and long-term statistics."""

    def __init__(self, history=None, statistics=None):
        super().__init__(history)
        self.query_statistics = AsyncMock(return_value=statistics or {})
        self.fetch_states = AsyncMock(return_value=[])
        self.close = AsyncMock()


@pytest.fixture
def now_s():
    return NOW_S


@pytest.fixture
def now_ms():
    return NOW_S * 1000


@pytest.fixture
def make_state():
    """Factory for EntityState objects with a friendly_name and attributes."""
    return _make_state


@pytest.fixture
def store():
    return StatesSnapshot(
        {
            "sensor.temp": _make_state("sensor.temp", "21.5", "Living Room", unit_of_measurement="°C"),
            "sensor.humidity": _make_state("sensor.humidity", "48", "Humidity"),
            "sensor.power": _make_state("sensor.power", "-120", "Grid Power"),
            "sensor.offline": _make_state("sensor.offline", "unavailable", "Offline"),
            "light.kitchen": _make_state("light.kitchen", "on", "Kitchen", brightness=180),
            "sensor.x": _make_state("sensor.x", "3", "Energy X"),
        }
    )


@pytest.fixture
def history_only_client():
    """Factory: ``history_only_client(rows)`` has no statistics capability."""
    return FakeHistoryClient


@pytest.fixture
def ha_client_factory():
    """Factory: ``ha_client_factory(history=..., statistics=...)``."""
    return FakeHAClient


@pytest.fixture
def ha_client():
    return FakeHAClient()
