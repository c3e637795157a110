"""
Tests for layer merging — dict/list/scalar rules and fold properties.
"""

from stackplane.core.config.merge import merge, merge_pair


class TestMergeRules:
    def test_nested_mappings_merge_recursively(self):
        result = merge([
            {"services": {"app": {"image": "a:1", "environment": {"A": "1"}}}},
            {"services": {"app": {"environment": {"B": "2"}}}},
        ])
        assert result == {"services": {"app": {"image": "a:1", "environment": {"A": "1", "B": "2"}}}}

    def test_lists_append_dedupe_preserve(self):
        assert merge([{"a": [1, 2]}, {"a": [2, 3]}])["a"] == [1, 2, 3]

    def test_list_dedupe_is_structural(self):
        result = merge([
            {"v": [{"source": "x", "target": "/x"}]},
            {"v": [{"target": "/x", "source": "x"}, {"source": "y", "target": "/y"}]},
        ])
        assert result["v"] == [{"source": "x", "target": "/x"}, {"source": "y", "target": "/y"}]

    def test_bool_and_int_are_distinct_list_items(self):
        assert merge([{"a": [1]}, {"a": [True]}])["a"] == [1, True]

    def test_scalar_override_wins(self):
        assert merge([{"mode": "composition"}, {"mode": "orchestrated"}])["mode"] == "orchestrated"

    def test_type_mismatch_override_wins(self):
        assert merge([{"ports": ["80"]}, {"ports": "8080:80"}])["ports"] == "8080:80"
        assert merge([{"deploy": {"replicas": 2}}, {"deploy": None}])["deploy"] is None

    def test_none_layer_is_empty(self):
        assert merge([None, {"a": 1}, None]) == {"a": 1}

    def test_inputs_not_mutated(self):
        base = {"a": {"b": [1]}}
        override = {"a": {"b": [2]}}
        merge([base, override])
        assert base == {"a": {"b": [1]}}
        assert override == {"a": {"b": [2]}}

    def test_result_does_not_alias_inputs(self):
        base = {"a": {"b": [1]}}
        result = merge_pair(base, {})
        result["a"]["b"].append(9)
        assert base["a"]["b"] == [1]


class TestMergeProperties:
    LAYERS = [
        {"name": "x", "services": {"app": {"ports": ["80"], "labels": {"tier": "web"}}}},
        {"services": {"app": {"ports": ["80", "443"], "image": "nginx"}}, "allow_prune": False},
        {"services": {"app": {"labels": {"tier": "edge"}}}, "allow_prune": True},
    ]

    def test_left_fold(self):
        l1, l2, l3 = self.LAYERS
        assert merge([merge([l1, l2]), l3]) == merge([l1, l2, l3])

    def test_incremental_pairs_match_fold(self):
        l1, l2, l3 = self.LAYERS
        assert merge_pair(merge_pair(l1, l2), l3) == merge(self.LAYERS)

    def test_empty_is_identity(self):
        x = self.LAYERS[0]
        assert merge([x, {}]) == x
        assert merge([{}, x]) == x

    def test_no_layers(self):
        assert merge([]) == {}

    def test_later_layer_wins(self):
        result = merge(self.LAYERS)
        assert result["services"]["app"]["labels"]["tier"] == "edge"
        assert result["services"]["app"]["ports"] == ["80", "443"]
        assert result["allow_prune"] is True
