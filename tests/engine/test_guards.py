"""Tests for generator classification and tree scans."""

from hachart.engine.history.cache_ttl import min_cache_seconds_in_tree
from hachart.engine.tokens.guards import (
    classify_node,
    contains_history_token,
    is_data_generator,
    is_history_generator,
    is_statistics_generator,
    is_time_series_generator,
    is_token_object,
)


class TestClassifyNode:
    def test_single_keys(self):
        assert classify_node({"$history": {}}) == "$history"
        assert classify_node({"$statistics": {}}) == "$statistics"
        assert classify_node({"$data": {}}) == "$data"
        assert classify_node({"$entity": "sensor.x"}) == "$entity"

    def test_plain_values_are_not_generators(self):
        assert classify_node({"data": [1, 2]}) is None
        assert classify_node([{"$entity": "sensor.x"}]) is None
        assert classify_node("$entity") is None

    def test_precedence_history_over_everything(self):
        """Several reserved keys: history > statistics > data > entity, regardless of key order."""
        node = {"$entity": "sensor.x", "$data": {}, "$statistics": {}, "$history": {}}
        assert classify_node(node) == "$history"

    def test_precedence_statistics_over_data_and_entity(self):
        assert classify_node({"$entity": "sensor.x", "$data": {}, "$statistics": {}}) == "$statistics"

    def test_precedence_data_over_entity(self):
        assert classify_node({"$entity": "sensor.x", "$data": {}}) == "$data"

    def test_predicates(self):
        assert is_history_generator({"$history": {}})
        assert is_statistics_generator({"$statistics": {}})
        assert is_data_generator({"$data": {}})
        assert is_token_object({"$entity": "sensor.x"})
        assert is_time_series_generator({"$statistics": {}})
        assert not is_time_series_generator({"$data": {}})


class TestContainsHistoryToken:
    def test_nested_history(self):
        tree = {"series": [{"type": "line"}, {"data": {"$history": {"entities": ["sensor.x"]}}}]}
        assert contains_history_token(tree)

    def test_statistics_counts_as_time_series(self):
        assert contains_history_token([[{"$statistics": {"entities": ["sensor.x"]}}]])

    def test_only_live_tokens(self):
        tree = {"series": [{"data": [{"$entity": "sensor.x"}]}, {"data": {"$data": {"entities": []}}}]}
        assert not contains_history_token(tree)


class TestMinCacheSeconds:
    def test_fallback_when_no_explicit_values(self):
        tree = {"a": {"$history": {"entities": ["sensor.x"]}}}
        assert min_cache_seconds_in_tree(tree, fallback=30) == 30

    def test_smallest_positive_across_generators(self):
        tree = {
            "series": [
                {"data": {"$history": {"entities": ["sensor.a"], "cache_seconds": 120}}},
                {"data": {"$statistics": {"entities": ["sensor.b"], "cache_seconds": 45}}},
                {"data": {"$history": {"entities": ["sensor.c"], "cache_seconds": 0}}},
            ]
        }
        assert min_cache_seconds_in_tree(tree) == 45

    def test_ignores_non_generator_cache_seconds(self):
        tree = {"cache_seconds": 1, "series": [{"$history": {"entities": ["sensor.x"], "cache_seconds": 60}}]}
        assert min_cache_seconds_in_tree(tree) == 60
