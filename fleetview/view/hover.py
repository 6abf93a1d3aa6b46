"""Hover card content and the hover staleness token."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from fleetview.i18n import Translator
from fleetview.models import PLACEHOLDER_TEXT, ChartRef, DetailRecord, MetricSnapshot, Node
from fleetview.view.reconcile import render_metric_text


class HoverStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class HoverCard:
    node_id: str
    title: str
    subtitle: str
    status: HoverStatus
    rows: Tuple[Tuple[str, str], ...] = ()
    charts: Tuple[Tuple[str, ChartRef], ...] = ()
    footer: str = ""


def format_fetch_time(moment: Optional[datetime]) -> str:
    if moment is None:
        return PLACEHOLDER_TEXT
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def _or_placeholder(text: Optional[str]) -> str:
    return text if text else PLACEHOLDER_TEXT


def metric_rows(snapshot: Optional[MetricSnapshot], t: Translator) -> Tuple[Tuple[str, str], ...]:
    """Metric lines shown on the card: the load triple, then network and congestion."""

    def text(channel: str) -> str:
        value = snapshot.channel(channel).display_text if snapshot else None
        return render_metric_text(value, channel)

    return (
        (t.t("hover.labels.cpu"), text("cpu_load")),
        (t.t("hover.labels.ioWait"), text("io_wait")),
        (t.t("hover.labels.nicError"), text("nic_error")),
        (t.t("hover.labels.network"), text("network")),
        (t.t("hover.labels.congestion"), text("congestion")),
    )


def build_loading_card(node: Node, t: Translator) -> HoverCard:
    return HoverCard(
        node_id=node.id,
        title=node.hostname,
        subtitle=node.raw_location,
        status=HoverStatus.LOADING,
        rows=(
            (t.t("hover.labels.ipv4"), node.ipv4),
            (t.t("hover.labels.sid"), node.id),
            (t.t("hover.labels.status"), t.t("hover.fetching")),
        ),
        footer=t.t("hover.firstLoadHint"),
    )


def build_failed_card(node: Node, t: Translator) -> HoverCard:
    return HoverCard(
        node_id=node.id,
        title=node.hostname,
        subtitle=node.raw_location,
        status=HoverStatus.FAILED,
        rows=(
            (t.t("hover.labels.ipv4"), node.ipv4),
            (t.t("hover.labels.status"), t.t("hover.fetchFailed")),
        ),
        footer=t.t("hover.retryLater"),
    )


def build_detail_card(
    node: Node,
    detail: DetailRecord,
    snapshot: Optional[MetricSnapshot],
    t: Translator,
) -> HoverCard:
    rows = [
        (t.t("hover.labels.ipv4"), node.ipv4),
        (t.t("hover.labels.privateIp"), _or_placeholder(detail.private_ip)),
        (t.t("hover.labels.uptime"), _or_placeholder(detail.uptime)),
        (t.t("hover.labels.heartbeat"), _or_placeholder(detail.heartbeat)),
        (t.t("hover.labels.pricePolicy"), "\n".join(detail.price_policy_lines) or PLACEHOLDER_TEXT),
    ]
    rows.extend(metric_rows(snapshot, t))

    charts = tuple(
        (t.t(f"metricImageLabels.{ref.kind}"), ref)
        for ref in sorted(detail.charts, key=lambda ref: ref.sort_score)
    )
    return HoverCard(
        node_id=node.id,
        title=node.hostname,
        subtitle=node.raw_location,
        status=HoverStatus.READY,
        rows=tuple(rows),
        charts=charts,
        footer=f"{t.t('hover.fetchTimePrefix')}{format_fetch_time(detail.fetched_at)} · {t.t('hover.liveSource')}",
    )


@dataclass
class HoverTracker:
    """
    Which row the pointer is over, guarded by a monotonically increasing epoch.

    Every enter, leave or hide bumps the epoch. A continuation holding an
    older epoch must drop its result.
    """

    epoch: int = 0
    row_id: Optional[str] = None
    card: Optional[HoverCard] = field(default=None, repr=False)

    def enter(self, row_id: str) -> int:
        self.epoch += 1
        self.row_id = str(row_id)
        self.card = None
        return self.epoch

    def leave(self) -> None:
        self.hide()

    def hide(self) -> None:
        self.epoch += 1
        self.row_id = None
        self.card = None

    def is_current(self, token: int, row_id: Optional[str] = None) -> bool:
        if token != self.epoch:
            return False
        return row_id is None or self.row_id == str(row_id)

    def show(self, token: int, card: HoverCard) -> bool:
        """Display ``card`` if ``token`` is still current."""
        if not self.is_current(token, card.node_id):
            return False
        self.card = card
        return True
