"""Keyed reconciliation of the rendered row set against the desired view.

Rows are keyed by node id. A row that stays in the desired set keeps its
identity across passes, and with it its visibility subscription, cached
detail and any interaction state attached to it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from fleetview import metrics
from fleetview.config import settings
from fleetview.i18n import Translator
from fleetview.models import CHANNELS, PLACEHOLDER_TEXT, DetailRecord, MetricSnapshot, Node
from fleetview.view.visibility import Subscription, VisibilityScheduler

logger = logging.getLogger(__name__)

PLAIN_NUMBER_RE = re.compile(r"^[\d.]+$")


def render_metric_text(text: Optional[str], channel: str) -> str:
    """Cell text for a metric; absent values render as the placeholder."""
    raw = (text or "").strip()
    if not raw or raw == PLACEHOLDER_TEXT:
        return PLACEHOLDER_TEXT
    if channel == "network" and PLAIN_NUMBER_RE.match(raw):
        return f"{raw} MB"
    return raw


@dataclass(frozen=True)
class RowCells:
    """Rendered text of one row."""

    region: str
    provider: str
    ip: str
    sid: str
    admin_url: str
    cpu_load: str
    io_wait: str
    nic_error: str
    network: str
    congestion: str


def render_cells(node: Node, snapshot: Optional[MetricSnapshot], admin_url_template: str) -> RowCells:
    texts = {
        channel: render_metric_text(
            snapshot.channel(channel).display_text if snapshot else None, channel
        )
        for channel in CHANNELS
    }
    return RowCells(
        region=node.region or node.raw_location,
        provider=node.provider or PLACEHOLDER_TEXT,
        ip=node.ipv4,
        sid=node.id,
        admin_url=admin_url_template.format(sid=node.id),
        **texts,
    )


class RenderedRow:
    """One rendered node row. Only the ReconciliationEngine creates and disposes rows."""

    def __init__(self, node: Node, cells: RowCells):
        self.node_id = node.id
        self.node = node
        self.cells = cells
        self.subscription: Optional[Subscription] = None
        self.detail: Optional[DetailRecord] = None
        self.attached = True

    def update(self, node: Node, cells: RowCells) -> bool:
        """Replace content in place. Returns True if anything visible changed."""
        changed = cells != self.cells or node != self.node
        self.node = node
        self.cells = cells
        return changed

    def apply_detail(self, detail: DetailRecord) -> bool:
        """Attach a fetched detail record unless the row is gone or it belongs elsewhere."""
        if not self.attached or detail.node_id != self.node_id:
            return False
        self.detail = detail
        return True

    def __repr__(self) -> str:
        return f"RenderedRow({self.node_id!r})"


class RowOp(NamedTuple):
    op: str  # "insert", "move", "update" or "remove"
    row_id: str
    index: int


@dataclass
class ReconcileResult:
    ops: List[RowOp] = field(default_factory=list)
    full_render: bool = False
    placeholder: Optional[str] = None

    def of(self, op: str) -> List[RowOp]:
        return [item for item in self.ops if item.op == op]

    @property
    def structural_count(self) -> int:
        """Inserts, moves and removals; updates excluded."""
        return sum(1 for item in self.ops if item.op != "update")


class RowContainer:
    """The rendered table body: ordered rows plus an optional placeholder row."""

    def __init__(self):
        self.rows: List[RenderedRow] = []
        self.placeholder: Optional[str] = None
        self._by_id: Dict[str, RenderedRow] = {}

    def __len__(self) -> int:
        return len(self.rows)

    def ids(self) -> List[str]:
        return [row.node_id for row in self.rows]

    def get(self, row_id: str) -> Optional[RenderedRow]:
        return self._by_id.get(str(row_id))

    def row_at(self, index: int) -> Optional[RenderedRow]:
        if 0 <= index < len(self.rows):
            return self.rows[index]
        return None

    def insert(self, index: int, row: RenderedRow) -> None:
        self.rows.insert(index, row)
        self._by_id[row.node_id] = row

    def move(self, row: RenderedRow, index: int) -> None:
        self.rows.remove(row)
        self.rows.insert(index, row)

    def remove(self, row: RenderedRow) -> None:
        self.rows.remove(row)
        del self._by_id[row.node_id]

    def clear(self) -> List[RenderedRow]:
        removed = self.rows
        self.rows = []
        self._by_id = {}
        return removed


class ReconciliationEngine:
    """
    Brings a RowContainer in line with a desired node order.

    Incremental pass: remove rows no longer desired, then walk the desired
    order inserting missing rows and moving misplaced ones, updating every
    row's content in place. With no prior rows, or nothing desired, the
    container is rebuilt from scratch instead.
    """

    def __init__(
        self,
        container: Optional[RowContainer] = None,
        scheduler: Optional[VisibilityScheduler] = None,
        translator: Optional[Translator] = None,
        admin_url_template: Optional[str] = None,
    ):
        self.container = container or RowContainer()
        self.scheduler = scheduler
        self.translator = translator or Translator()
        self.admin_url_template = admin_url_template or settings.node_admin_url

    # ===== Row lifecycle =====

    def _create_row(self, node: Node, snapshot: Optional[MetricSnapshot]) -> RenderedRow:
        row = RenderedRow(node, render_cells(node, snapshot, self.admin_url_template))
        if self.scheduler is not None:
            row.detail = self.scheduler.detail_cache.peek(node.id)
            row.subscription = self.scheduler.subscribe(node.id, on_fetched=row.apply_detail)
        return row

    def _dispose_row(self, row: RenderedRow) -> None:
        row.attached = False
        if self.scheduler is not None and row.subscription is not None:
            self.scheduler.unsubscribe(row.subscription)

    def _record(self, result: ReconcileResult, op: str, row_id: str, index: int) -> None:
        result.ops.append(RowOp(op, row_id, index))
        metrics.reconcile_ops_total.labels(op=op).inc()

    # ===== Passes =====

    def show_placeholder(self, message: str) -> ReconcileResult:
        """Drop every row and show a single message row."""
        result = ReconcileResult(full_render=True, placeholder=message)
        for index, row in enumerate(self.container.clear()):
            self._dispose_row(row)
            self._record(result, "remove", row.node_id, index)
        self.container.placeholder = message
        return result

    def render_full(
        self,
        desired: Sequence[Node],
        metric_map: Mapping[str, MetricSnapshot],
    ) -> ReconcileResult:
        """Clear and rebuild. An empty view renders the empty-table placeholder."""
        if not desired:
            return self.show_placeholder(self.translator.t("table.empty"))

        result = ReconcileResult(full_render=True)
        for index, row in enumerate(self.container.clear()):
            self._dispose_row(row)
            self._record(result, "remove", row.node_id, index)
        self.container.placeholder = None

        for index, node in enumerate(desired):
            row = self._create_row(node, metric_map.get(node.id))
            self.container.insert(index, row)
            self._record(result, "insert", node.id, index)
        return result

    def reconcile(
        self,
        desired: Sequence[Node],
        metric_map: Mapping[str, MetricSnapshot],
    ) -> ReconcileResult:
        """Apply the minimal set of row operations to reach ``desired``."""
        container = self.container
        if not container.rows or not desired:
            return self.render_full(desired, metric_map)

        result = ReconcileResult()
        desired_index = {node.id: index for index, node in enumerate(desired)}

        for index, row in reversed(list(enumerate(container.rows))):
            if row.node_id not in desired_index:
                container.remove(row)
                self._dispose_row(row)
                self._record(result, "remove", row.node_id, index)

        for index, node in enumerate(desired):
            snapshot = metric_map.get(node.id)
            cells = render_cells(node, snapshot, self.admin_url_template)
            row = container.get(node.id)
            if row is None:
                row = self._create_row(node, snapshot)
                container.insert(index, row)
                self._record(result, "insert", node.id, index)
                continue
            if container.row_at(index) is not row:
                container.move(row, index)
                self._record(result, "move", node.id, index)
            if row.update(node, cells):
                self._record(result, "update", node.id, index)

        if result.ops:
            logger.debug(
                f"Reconciled {len(desired)} rows: "
                f"{len(result.of('insert'))} inserted, {len(result.of('move'))} moved, "
                f"{len(result.of('remove'))} removed, {len(result.of('update'))} updated"
            )
        return result
