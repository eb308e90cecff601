"""Tests for value coercion and the numeric transform pipeline."""

import math

import pytest

from hachart.engine.models import MapSpec, TransformSpec
from hachart.engine.tokens.transforms import (
    apply_number_transforms,
    apply_transforms_with_spec,
    coerce_history_point_number,
    coerce_value,
    round_half_up,
    to_number,
)

# ── to_number / coerce_value ─────────────────────────────────────────────


class TestToNumber:
    @pytest.mark.parametrize(
        "raw,expected",
        [(True, 1), (False, 0), (3, 3), (2.5, 2.5), ("  7 ", 7), ("1e3", 1000.0), ("", 0)],
    )
    def test_numeric_inputs(self, raw, expected):
        assert to_number(raw) == expected

    @pytest.mark.parametrize("raw", ["on", None, [1], {"a": 1}])
    def test_non_numeric_is_nan(self, raw):
        assert math.isnan(to_number(raw))


class TestCoerceValue:
    def test_auto_parses_numeric_strings(self):
        assert coerce_value("3.14", "auto") == 3.14

    def test_auto_keeps_text(self):
        assert coerce_value("hello", "auto") == "hello"

    def test_auto_keeps_blank_string(self):
        assert coerce_value("  ", "auto") == "  "

    @pytest.mark.parametrize("raw", ["on", "ON ", "true", "1", "yes", "home", "open"])
    def test_bool_truthy(self, raw):
        assert coerce_value(raw, "bool") is True

    @pytest.mark.parametrize("raw", ["off", "false", "0", "no", "not_home", "closed"])
    def test_bool_falsy(self, raw):
        assert coerce_value(raw, "bool") is False

    def test_bool_from_numbers(self):
        assert coerce_value(0, "bool") is False
        assert coerce_value(2, "bool") is True

    def test_bool_unknown_string_is_truthy_when_non_empty(self):
        assert coerce_value("heat", "bool") is True
        assert coerce_value("", "bool") is False

    def test_number_mode_nan_for_text(self):
        assert math.isnan(coerce_value("on", "number"))

    def test_string_mode(self):
        assert coerce_value(21.5, "string") == "21.5"
        assert coerce_value(None, "string") == ""


# ── apply_number_transforms ─────────────────────────────────────────────


class TestNumberTransforms:
    def test_scale_before_offset(self):
        """10 * 2 + 5 = 25, not (10 + 5) * 2."""
        assert apply_number_transforms(10, TransformSpec(scale=2, offset=5)) == 25

    def test_abs_before_scale(self):
        assert apply_number_transforms(-4, TransformSpec(abs=True, scale=-1)) == -4

    def test_min_max_clamp(self):
        assert apply_number_transforms(-3, TransformSpec(min=0)) == 0
        assert apply_number_transforms(130, TransformSpec(max=100)) == 100
        assert apply_number_transforms(7, TransformSpec(clamp=(0, 5))) == 5

    def test_round_half_up(self):
        assert apply_number_transforms(1.125, TransformSpec(round=2)) == 1.13
        assert apply_number_transforms(2.5, TransformSpec(round=0)) == 3
        assert round_half_up(-2.5, 0) == -2

    def test_log_map_defaults(self):
        """log10(x + 1)."""
        result = apply_number_transforms(99, TransformSpec(map=MapSpec(type="log")))
        assert result == pytest.approx(2.0)

    def test_log_map_custom_base(self):
        spec = TransformSpec(map=MapSpec(type="log", base=2, add=0))
        assert apply_number_transforms(8, spec) == pytest.approx(3.0)

    def test_log_of_non_positive_falls_back_to_default(self):
        spec = TransformSpec(map=MapSpec(type="log", add=0))
        assert apply_number_transforms(0, spec, default=-1) == -1
        assert apply_number_transforms(-5, spec) == 0

    def test_sqrt_of_negative_is_zero(self):
        assert apply_number_transforms(-9, TransformSpec(map=MapSpec(type="sqrt"))) == 0
        assert apply_number_transforms(9, TransformSpec(map=MapSpec(type="sqrt"))) == 3

    def test_pow_map(self):
        assert apply_number_transforms(3, TransformSpec(map=MapSpec(type="pow", pow=2))) == 9

    def test_non_numeric_returns_default(self):
        assert apply_number_transforms("on", TransformSpec(scale=2), default=0) == 0

    def test_non_numeric_without_default_passes_through(self):
        assert apply_number_transforms("on", TransformSpec(scale=2)) == "on"

    def test_numeric_string_is_transformed(self):
        assert apply_number_transforms("4", TransformSpec(scale=0.5)) == 2


class TestTransformSpecParsing:
    def test_token_keys_are_dollar_prefixed(self):
        spec = TransformSpec.from_dict({"$scale": 2, "$round": 1, "$clamp": [0, 10], "$map": "sqrt"}, prefix="$")
        assert spec.scale == 2
        assert spec.round == 1
        assert spec.clamp == (0, 10)
        assert spec.map == MapSpec(type="sqrt")

    def test_invalid_values_ignored(self):
        spec = TransformSpec.from_dict({"scale": "x", "clamp": [1], "map": {"type": "pow"}})
        assert spec == TransformSpec()

    def test_canonical_dict_omits_absent_stages(self):
        assert TransformSpec(scale=2).to_dict() == {"scale": 2}
        assert TransformSpec().to_dict() == {}


# ── Combined coercion + transforms ──────────────────────────────────────


class TestApplyWithSpec:
    def test_auto_numeric_state(self):
        assert apply_transforms_with_spec("21.5", None, None, TransformSpec(scale=2)) == 43.0

    def test_auto_text_state_passes_through(self):
        assert apply_transforms_with_spec("heat", None, None, None) == "heat"

    def test_number_mode_nan_uses_default(self):
        assert apply_transforms_with_spec("unavailable", 5, "number", None) == 5
        assert apply_transforms_with_spec("unavailable", None, "number", None) == 0

    def test_bool_mode_skips_pipeline(self):
        assert apply_transforms_with_spec("on", None, "bool", TransformSpec(scale=10)) is True

    def test_string_mode_skips_pipeline(self):
        assert apply_transforms_with_spec(42, None, "string", TransformSpec(scale=10)) == "42"


class TestHistoryPointNumber:
    def test_numeric_state(self):
        assert coerce_history_point_number("12.5", None, None, None) == 12.5

    def test_text_state_without_default_is_zero(self):
        """Number coercion: NaN falls back to default or 0."""
        assert coerce_history_point_number("unknown", None, None, None) == 0

    def test_bool_coerce_gives_numeric_points(self):
        assert coerce_history_point_number("on", None, "bool", None) == 1
        assert coerce_history_point_number("off", None, "bool", None) == 0

    def test_text_coerce_drops_point(self):
        assert coerce_history_point_number("heat", None, "string", None) is None
