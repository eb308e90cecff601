"""Tests for entity reference helpers and time parsing."""

import math

import pytest

from hachart.engine.models import EntityRef
from hachart.engine.tokens.entity import (
    display_name,
    entity_raw_value,
    normalize_entity_spec,
    parse_time,
    to_iso,
)

NOON_MS = 1_768_478_400_000.0  # 2026-01-15T12:00:00Z


class TestNormalizeEntitySpec:
    def test_bare_id(self):
        assert normalize_entity_spec("sensor.temp") == EntityRef(id="sensor.temp")

    def test_object_with_name(self):
        ref = normalize_entity_spec({"id": "sensor.temp", "name": "Inside"})
        assert ref.id == "sensor.temp"
        assert ref.name == "Inside"

    def test_passthrough(self):
        ref = EntityRef(id="sensor.x")
        assert normalize_entity_spec(ref) is ref


class TestDisplayName:
    def test_override_wins(self, store):
        assert display_name(EntityRef(id="sensor.temp", name="Lounge"), store) == "Lounge"

    def test_friendly_name(self, store):
        assert display_name(EntityRef(id="sensor.temp"), store) == "Living Room"

    def test_entity_id_mode(self, store):
        assert display_name(EntityRef(id="sensor.temp"), store, "entity_id") == "sensor.temp"

    def test_unknown_entity_falls_back_to_id(self, store):
        assert display_name(EntityRef(id="sensor.missing"), store) == "sensor.missing"

    def test_no_store(self):
        assert display_name(EntityRef(id="sensor.temp"), None) == "sensor.temp"


class TestEntityRawValue:
    def test_state(self, store):
        assert entity_raw_value(store.lookup("light.kitchen"), None) == "on"

    def test_attribute(self, store):
        assert entity_raw_value(store.lookup("light.kitchen"), "brightness") == 180

    def test_missing_attribute(self, store):
        assert entity_raw_value(store.lookup("light.kitchen"), "color_temp") is None


class TestParseTime:
    def test_none_uses_fallback(self):
        assert parse_time(None, 42.0) == 42.0

    @pytest.mark.parametrize(
        "value",
        [
            1_768_478_400,
            1_768_478_400_000,
            "1768478400",
            "2026-01-15T12:00:00Z",
            "2026-01-15T12:00:00+00:00",
            "2026-01-15T12:00:00",
            "2026-01-15T13:00:00+01:00",
        ],
    )
    def test_accepted_forms(self, value):
        assert parse_time(value, 0) == NOON_MS

    @pytest.mark.parametrize("value", ["whenever", "", [], {"t": 1}, float("inf")])
    def test_unparseable_is_nan(self, value):
        assert math.isnan(parse_time(value, 0))


class TestToIso:
    def test_millisecond_precision(self):
        assert to_iso(NOON_MS + 500) == "2026-01-15T12:00:00.500Z"

    def test_whole_second(self):
        assert to_iso(NOON_MS) == "2026-01-15T12:00:00.000Z"
