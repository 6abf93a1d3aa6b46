"""Tests for the filter/sort view pipeline."""

import sys

import pytest

from fleetview.models import FilterState, SortDirection, SortState
from fleetview.normalize.processor import NodeNormalizer
from fleetview.view.pipeline import (
    best_server_view,
    build_view,
    country_options,
    filter_nodes,
    provider_options,
    sort_nodes,
    text_sort_key,
)

from conftest import make_node, make_snapshot


def ids(nodes):
    return [node.id for node in nodes]


def test_scenario_from_single_feed_entry():
    normalizer = NodeNormalizer()
    nodes = normalizer.normalize_nodes([
        {"sid": 1, "hostname": "node-kr-1", "ip": "1.1.1.1", "location": "Seoul (Google)"},
        {"sid": 2, "hostname": "node-kr-2", "ip": "2.2.2.2", "location": "Seoul (Google)"},
    ])
    metric_map = {
        "1": make_snapshot(1, cpu=0, io=0, nic=0, network=5, congestion=0),
        "2": make_snapshot(2, cpu=0, io=0, nic=None, network=3, congestion=0),
    }

    node = nodes[0]
    assert (node.region, node.provider_brand, node.country_code) == ("Seoul", "Google", "KR")

    assert "1" in ids(filter_nodes(nodes, metric_map, FilterState(cpu_max=0)))
    assert "1" in ids(filter_nodes(nodes, metric_map, FilterState(cpu_max=-1)))
    assert ids(filter_nodes(nodes, metric_map, FilterState(nic_max=0))) == ["1"]


class TestFilterNodes:
    """Tests for filter_nodes."""

    def setup_method(self):
        self.nodes = [
            make_node(1, "node-kr-1", "1.1.1.1", "Seoul (Google)"),
            make_node(2, "node-jp-2", "2.2.2.2", "JP Tokyo (Amazon)"),
            make_node(3, "node-us-3", "3.3.3.3", "US Dallas (Foo-3)"),
            make_node(4, "node-de-4", "4.4.4.4", "Frankfurt (Google)"),
        ]
        self.metrics = {
            "1": make_snapshot(1, cpu=0, io=0, nic=0, network=5, congestion=0),
            "2": make_snapshot(2, cpu=50, io=1, nic=0, network=9, congestion=2),
            "3": make_snapshot(3, cpu=5, io=None, nic=0, network=1, congestion=0),
        }

    def test_no_filters_keeps_everything(self):
        assert ids(filter_nodes(self.nodes, self.metrics, FilterState())) == ["1", "2", "3", "4"]

    def test_brand_filter(self):
        result = filter_nodes(self.nodes, self.metrics, FilterState(brand="Google"))
        assert ids(result) == ["1", "4"]

    def test_fallback_brand_filter(self):
        result = filter_nodes(self.nodes, self.metrics, FilterState(brand="Foo"))
        assert ids(result) == ["3"]

    def test_country_filter(self):
        result = filter_nodes(self.nodes, self.metrics, FilterState(country_codes={"KR", "US"}))
        assert ids(result) == ["1", "3"]

    def test_keyword_matches_any_field_case_insensitively(self):
        assert ids(filter_nodes(self.nodes, self.metrics, FilterState(keyword="TOKYO"))) == ["2"]
        assert ids(filter_nodes(self.nodes, self.metrics, FilterState(keyword="3.3.3"))) == ["3"]
        assert ids(filter_nodes(self.nodes, self.metrics, FilterState(keyword="amazon"))) == ["2"]

    def test_ceiling_excludes_node_without_metrics(self):
        result = filter_nodes(self.nodes, self.metrics, FilterState(cpu_max=100))
        assert ids(result) == ["1", "2", "3"]

    def test_ceiling_excludes_per_missing_channel(self):
        # Node 3 has cpu but no io reading
        assert "3" in ids(filter_nodes(self.nodes, self.metrics, FilterState(cpu_max=10)))
        assert "3" not in ids(filter_nodes(self.nodes, self.metrics, FilterState(io_max=10)))

    def test_inactive_ceilings(self):
        for value in (None, -1, float("nan"), float("inf"), "", "abc"):
            state = FilterState(cpu_max=value)
            assert state.cpu_max is None
            assert ids(filter_nodes(self.nodes, self.metrics, state)) == ["1", "2", "3", "4"]

    def test_zero_ceiling_is_active(self):
        assert ids(filter_nodes(self.nodes, self.metrics, FilterState(cpu_max=0))) == ["1"]

    def test_conjunction_only_grows_when_a_predicate_is_removed(self):
        full = FilterState(brand="Google", cpu_max=10, keyword="node", country_codes={"KR", "DE"})
        narrow = set(ids(filter_nodes(self.nodes, self.metrics, full)))

        for relaxed in (
            FilterState(cpu_max=10, keyword="node", country_codes={"KR", "DE"}),
            FilterState(brand="Google", keyword="node", country_codes={"KR", "DE"}),
            FilterState(brand="Google", cpu_max=10, country_codes={"KR", "DE"}),
            FilterState(brand="Google", cpu_max=10, keyword="node"),
        ):
            assert narrow <= set(ids(filter_nodes(self.nodes, self.metrics, relaxed)))


class TestSortNodes:
    """Tests for sort_nodes."""

    def setup_method(self):
        self.nodes = [
            make_node(1, location="Seoul (Google)"),
            make_node(2, location="JP Tokyo (Amazon)"),
            make_node(3, location="US Dallas (Vultr)"),
            make_node(4, location="Frankfurt (Linode)"),
        ]
        self.metrics = {
            "1": make_snapshot(1, cpu=30),
            "2": make_snapshot(2, cpu=None),
            "3": make_snapshot(3, cpu=10),
        }

    def test_unknown_sorts_last_ascending(self):
        result = sort_nodes(self.nodes, self.metrics, SortState(key="cpu_load"))
        assert ids(result) == ["3", "1", "2", "4"]

    def test_unknown_sorts_first_descending(self):
        result = sort_nodes(
            self.nodes, self.metrics, SortState(key="cpu_load", direction=SortDirection.DESC)
        )
        assert ids(result) == ["4", "2", "1", "3"]

    def test_sort_is_stable_for_ties(self):
        metric_map = {node.id: make_snapshot(node.id, network=1) for node in self.nodes}
        result = sort_nodes(self.nodes, metric_map, SortState(key="network"))
        assert ids(result) == ["1", "2", "3", "4"]

    def test_region_sort_is_case_insensitive(self):
        nodes = [
            make_node(1, location="seoul (Google)"),
            make_node(2, location="Amsterdam (Google)"),
            make_node(3, location="berlin (Google)"),
        ]
        assert ids(sort_nodes(nodes, {}, SortState(key="region"))) == ["2", "3", "1"]

    def test_sid_sort_is_numeric(self):
        nodes = [make_node(10), make_node(9), make_node(100)]
        assert ids(sort_nodes(nodes, {}, SortState(key="sid"))) == ["9", "10", "100"]

    def test_unknown_key_falls_back_to_region(self):
        result = sort_nodes(self.nodes, self.metrics, SortState(key="bogus"))
        assert ids(result) == ["4", "2", "1", "3"]

    def test_unknown_sorts_after_very_large_known_values(self):
        nodes = [make_node(1), make_node(2), make_node(3)]
        metric_map = NodeNormalizer().normalize_metrics([
            ["1", "1/1/1", "99999999999999999999", "0"],
            ["2", "1/1/1", "", "0"],
        ])
        metric_map["3"] = make_snapshot(3, network=float(sys.maxsize))

        ascending = sort_nodes(nodes, metric_map, SortState(key="network"))
        descending = sort_nodes(
            nodes, metric_map, SortState(key="network", direction=SortDirection.DESC)
        )

        assert ids(ascending) == ["3", "1", "2"]
        assert ids(descending) == ["2", "1", "3"]

    def test_text_keys_tolerate_nul_characters(self):
        nodes = [
            make_node(1, location="Seoul\x00 (Google)"),
            make_node(2, location="Amsterdam (Google)"),
        ]
        assert ids(sort_nodes(nodes, {}, SortState(key="region"))) == ["2", "1"]
        assert text_sort_key("a\x00b") == text_sort_key("ab")

    def test_toggled(self):
        state = SortState(key="cpu_load")
        assert state.toggled("cpu_load") == SortState(key="cpu_load", direction=SortDirection.DESC)
        assert state.toggled("cpu_load").toggled("cpu_load") == state
        assert state.toggled("ip") == SortState(key="ip")


def test_build_view_filters_then_sorts():
    nodes = [make_node(1), make_node(2), make_node(3)]
    metric_map = {
        "1": make_snapshot(1, cpu=5, network=30),
        "2": make_snapshot(2, cpu=50, network=10),
        "3": make_snapshot(3, cpu=1, network=20),
    }
    view = build_view(nodes, metric_map, FilterState(cpu_max=10), SortState(key="network"))
    assert ids(view) == ["3", "1"]


def test_best_server_view():
    nodes = [make_node(1), make_node(2), make_node(3), make_node(4)]
    metric_map = {
        "1": make_snapshot(1, cpu=0, io=0, nic=0, network=30, congestion=0),
        "2": make_snapshot(2, cpu=0, io=0, nic=0, network=10, congestion=0),
        "3": make_snapshot(3, cpu=1, io=0, nic=0, network=1, congestion=0),
        "4": make_snapshot(4, cpu=0, io=None, nic=0, network=1, congestion=0),
    }
    assert ids(best_server_view(nodes, metric_map, FilterState())) == ["2", "1"]
    assert ids(best_server_view(nodes, metric_map, FilterState(keyword="no-match"))) == []


def test_provider_and_country_options():
    nodes = [
        make_node(1, "node-kr-1", location="Seoul (Google)"),
        make_node(2, "node-jp-2", location="JP Tokyo (Amazon)"),
        make_node(3, "node-kr-3", location="Busan (Google)"),
        make_node(4, "relay-4", location="Nowhere"),
    ]
    assert provider_options(nodes) == ["Amazon", "Google"]
    assert country_options(nodes) == [("??", 1), ("JP", 1), ("KR", 2)]


@pytest.mark.parametrize("key", ["region", "provider", "ip", "sid", "cpu_load", "congestion"])
def test_descending_is_reverse_of_ascending(key):
    nodes = [make_node(i, location=loc) for i, loc in enumerate(["B (x)", "A (y)", "B (x)", "C (z)"], 1)]
    metric_map = {"1": make_snapshot(1, cpu=1, congestion=2), "3": make_snapshot(3, cpu=1)}

    ascending = sort_nodes(nodes, metric_map, SortState(key=key))
    descending = sort_nodes(nodes, metric_map, SortState(key=key, direction=SortDirection.DESC))
    assert ids(descending) == list(reversed(ids(ascending)))
