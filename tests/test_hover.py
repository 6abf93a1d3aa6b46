"""Tests for hover card building and the hover epoch."""

import dataclasses

from fleetview.i18n import Translator
from fleetview.models import ChartRef
from fleetview.view.hover import (
    HoverStatus,
    HoverTracker,
    build_detail_card,
    build_failed_card,
    build_loading_card,
    format_fetch_time,
)

from conftest import make_detail, make_node, make_snapshot


class TestHoverTracker:
    """Tests for HoverTracker."""

    def setup_method(self):
        self.tracker = HoverTracker()
        self.t = Translator("en")
        self.node = make_node(1)

    def test_enter_returns_increasing_tokens(self):
        first = self.tracker.enter("1")
        second = self.tracker.enter("2")

        assert second > first
        assert not self.tracker.is_current(first)
        assert self.tracker.is_current(second, "2")
        assert not self.tracker.is_current(second, "1")

    def test_leave_invalidates_token(self):
        token = self.tracker.enter("1")
        self.tracker.leave()

        assert not self.tracker.is_current(token)
        assert not self.tracker.show(token, build_loading_card(self.node, self.t))
        assert self.tracker.card is None

    def test_show_current_card(self):
        token = self.tracker.enter("1")
        card = build_loading_card(self.node, self.t)

        assert self.tracker.show(token, card)
        assert self.tracker.card is card

    def test_hide_clears_card(self):
        token = self.tracker.enter("1")
        self.tracker.show(token, build_loading_card(self.node, self.t))
        self.tracker.hide()

        assert self.tracker.card is None
        assert self.tracker.row_id is None


def test_loading_card():
    card = build_loading_card(make_node(1), Translator("en"))

    assert card.status == HoverStatus.LOADING
    assert ("Status", "Fetching details…") in card.rows
    assert card.footer == "First load takes about 1-2 seconds"


def test_failed_card():
    card = build_failed_card(make_node(1), Translator("en"))

    assert card.status == HoverStatus.FAILED
    assert ("Status", "Unable to fetch details") in card.rows


def test_detail_card():
    node = make_node(1)
    detail = dataclasses.replace(make_detail(1), charts=(
        ChartRef(kind="system_load", url="https://x/12_proc.png", sort_score=12),
        ChartRef(kind="network", url="https://x/3_eth0.png", sort_score=3),
    ))
    card = build_detail_card(node, detail, make_snapshot(1, cpu=0, network=5), Translator("en"))
    rows = dict(card.rows)

    assert card.status == HoverStatus.READY
    assert card.title == node.hostname
    assert rows["Private IP"] == "192.168.0.2"
    assert rows["Uptime"] == "12 days"
    assert rows["Price policy"] == "0.5 credit / GB"
    assert rows["CPU %"] == "0"
    assert rows["Traffic (MB)"] == "5 MB"
    assert rows["Congestion"] == "—"
    assert [label for label, _ in card.charts] == ["Traffic chart", "System load chart"]
    assert card.footer.startswith("Fetched at: 2024-01-02 03:04:05")


def test_format_fetch_time_missing():
    assert format_fetch_time(None) == "—"


def test_translator_lookup():
    t = Translator("xx")

    assert t.t("table.empty") == "No nodes match the current filters."
    assert t.t("country.selected", count=3) == "Country (3 selected)"
    assert t.t("missing.key") == "missing.key"
    assert t.t("hover.labels") == "hover.labels"
