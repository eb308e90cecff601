"""Tests for recorder history decoding: full, compressed and minimal rows."""

from hachart.engine.history.decode import decode_history, hist_timestamp_ms
from hachart.engine.models import TransformSpec

T0 = "2026-01-15T10:00:00+00:00"
T0_MS = 1_768_471_200_000


class TestTimestamps:
    def test_iso_string(self):
        assert hist_timestamp_ms({"last_changed": T0}) == T0_MS

    def test_iso_zulu_and_naive_are_utc(self):
        assert hist_timestamp_ms({"lu": "2026-01-15T10:00:00Z"}) == T0_MS
        assert hist_timestamp_ms({"lc": "2026-01-15T10:00:00"}) == T0_MS

    def test_epoch_seconds_are_scaled(self):
        assert hist_timestamp_ms({"lu": T0_MS / 1000}) == T0_MS

    def test_epoch_ms_kept(self):
        assert hist_timestamp_ms({"ts": T0_MS}) == T0_MS

    def test_missing_or_garbage(self):
        assert hist_timestamp_ms({"state": "1"}) is None
        assert hist_timestamp_ms({"last_changed": "yesterday"}) is None


class TestDecodeHistory:
    def test_compressed_array_attributes_all_rows(self):
        """Only the first row names the entity; later rows carry state + time."""
        raw = [
            [
                {"entity_id": "sensor.temp", "state": "20.0", "attributes": {"unit": "C"}, "last_changed": T0},
                {"state": "20.5", "last_changed": "2026-01-15T10:05:00+00:00"},
                {"state": "21.0", "last_changed": "2026-01-15T10:10:00+00:00"},
            ]
        ]
        result = decode_history(raw, ["sensor.temp"])
        assert result["sensor.temp"] == [
            [T0_MS, 20.0],
            [T0_MS + 300_000, 20.5],
            [T0_MS + 600_000, 21.0],
        ]

    def test_minimal_response_short_keys(self):
        raw = [[{"e": "sensor.a", "s": "1", "lu": T0_MS / 1000}, {"s": "2", "lu": T0_MS / 1000 + 60}]]
        result = decode_history(raw, ["sensor.a"])
        assert result["sensor.a"] == [[T0_MS, 1], [T0_MS + 60_000, 2]]

    def test_attribute_series_carries_last_attributes_forward(self):
        raw = [
            [
                {"entity_id": "light.k", "state": "on", "attributes": {"brightness": 100}, "last_changed": T0},
                {"state": "on", "last_changed": "2026-01-15T10:01:00+00:00"},
                {"state": "on", "attributes": {"brightness": 200}, "last_changed": "2026-01-15T10:02:00+00:00"},
            ]
        ]
        result = decode_history(raw, ["light.k"], attr="brightness")
        assert [v for _, v in result["light.k"]] == [100, 100, 200]

    def test_multiple_entities_and_unrequested_rows(self):
        raw = [
            [{"entity_id": "sensor.a", "state": "1", "last_changed": T0}],
            [{"entity_id": "sensor.other", "state": "9", "last_changed": T0}],
            [{"entity_id": "sensor.b", "state": "2", "last_changed": T0}],
        ]
        result = decode_history(raw, ["sensor.a", "sensor.b"])
        assert set(result) == {"sensor.a", "sensor.b"}
        assert result["sensor.b"] == [[T0_MS, 2]]

    def test_requested_entity_without_rows_is_empty(self):
        assert decode_history([], ["sensor.a"]) == {"sensor.a": []}

    def test_rows_sorted_and_untimed_rows_dropped(self):
        raw = [
            [
                {"entity_id": "sensor.a", "state": "2", "last_changed": "2026-01-15T10:05:00+00:00"},
                {"state": "1", "last_changed": T0},
                {"state": "3"},
            ]
        ]
        result = decode_history(raw, ["sensor.a"])
        assert result["sensor.a"] == [[T0_MS, 1], [T0_MS + 300_000, 2]]

    def test_transforms_applied_per_point(self):
        raw = [[{"entity_id": "sensor.p", "state": "-3", "last_changed": T0}]]
        result = decode_history(raw, ["sensor.p"], transforms=TransformSpec(abs=True, scale=0.5))
        assert result["sensor.p"] == [[T0_MS, 1.5]]

    def test_unavailable_state_uses_default(self):
        raw = [[{"entity_id": "sensor.a", "state": "unavailable", "last_changed": T0}]]
        assert decode_history(raw, ["sensor.a"], default=-1)["sensor.a"] == [[T0_MS, -1]]
