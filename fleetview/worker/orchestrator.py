"""Sequences bootstrap, background refresh and user-driven view changes."""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

from fleetview import metrics
from fleetview.config import settings
from fleetview.i18n import Translator
from fleetview.ingest.base import (
    DetailFetchError,
    DetailSource,
    IngestionError,
    MetricsFeedSource,
    NodeFeedSource,
)
from fleetview.ingest.detail_cache import DetailCache
from fleetview.models import (
    SORT_KEYS,
    FilterState,
    MetricSnapshot,
    Node,
    SortDirection,
    SortState,
    UserPreferences,
)
from fleetview.normalize.processor import NodeNormalizer
from fleetview.storage.snapshot_store import SnapshotStore
from fleetview.view import pipeline
from fleetview.view.hover import (
    HoverCard,
    HoverTracker,
    build_detail_card,
    build_failed_card,
    build_loading_card,
)
from fleetview.view.reconcile import ReconcileResult, ReconciliationEngine, RowContainer
from fleetview.view.visibility import VisibilityScheduler

logger = logging.getLogger(__name__)

FILTER_FIELDS = frozenset(f.name for f in dataclasses.fields(FilterState))

PRESET_BEST_SERVER = "best_server"


@dataclass(frozen=True)
class FleetTables:
    """The committed node and metric tables. Replaced whole, never edited."""

    nodes: Tuple[Node, ...] = ()
    metrics: Mapping[str, MetricSnapshot] = field(default_factory=lambda: MappingProxyType({}))
    origin: str = "empty"  # "empty", "snapshot" or "live"
    committed_at: Optional[float] = None
    _index: Mapping[str, Node] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def build(
        cls,
        nodes: Sequence[Node],
        metric_map: Mapping[str, MetricSnapshot],
        origin: str,
    ) -> "FleetTables":
        ordered = tuple(pipeline.default_order(nodes))
        return cls(
            nodes=ordered,
            metrics=MappingProxyType(dict(metric_map)),
            origin=origin,
            committed_at=time.time(),
            _index=MappingProxyType({node.id: node for node in ordered}),
        )

    @property
    def committed(self) -> bool:
        return self.committed_at is not None

    def node(self, node_id: str) -> Optional[Node]:
        return self._index.get(str(node_id))


class Orchestrator:
    """
    Owns the committed tables and the user's filter/sort state.

    All node/metric mutation goes through ``_commit``; every user action
    persists preferences and runs one reconciliation pass.
    """

    def __init__(
        self,
        node_source: NodeFeedSource,
        store: SnapshotStore,
        metrics_source: Optional[MetricsFeedSource] = None,
        detail_source: Optional[DetailSource] = None,
        normalizer: Optional[NodeNormalizer] = None,
        translator: Optional[Translator] = None,
        container: Optional[RowContainer] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            node_source: Node list feed; also used for metrics and details
                         when those sources are not given separately
            store: Snapshot and preference persistence
            metrics_source: Status table feed
            detail_source: Per-node detail pages
            normalizer: Shared normalizer (defaults to the configured brand table)
            translator: Label lookup
            container: Row container to reconcile into
        """
        self.node_source = node_source
        self.metrics_source = metrics_source or node_source
        self.detail_source = detail_source or node_source
        self.store = store
        self.normalizer = normalizer or store.normalizer
        self.translator = translator or Translator()

        self.detail_cache = DetailCache(self.detail_source)
        self.visibility = VisibilityScheduler(self.detail_cache)
        self.engine = ReconciliationEngine(
            container or RowContainer(),
            scheduler=self.visibility,
            translator=self.translator,
        )
        self.hover = HoverTracker()

        self.tables = FleetTables()
        self.preferences = UserPreferences()
        self.preset: Optional[str] = None
        self.ordered_view: List[Node] = []
        self.last_result: Optional[ReconcileResult] = None
        self.last_refresh_error: Optional[IngestionError] = None

        self._refresh_token = 0
        self._placeholder_key = "table.loading"
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def container(self) -> RowContainer:
        return self.engine.container

    @property
    def filters(self) -> FilterState:
        return self.preferences.filters

    @property
    def sort(self) -> SortState:
        return self.preferences.sort

    # ===== State commit and rendering =====

    def _commit(self, tables: FleetTables) -> None:
        self.tables = tables
        metrics.nodes_committed.set(len(tables.nodes))

    def _show_placeholder(self, key: str) -> None:
        self._placeholder_key = key
        self.last_result = self.engine.show_placeholder(self.translator.t(key))

    def _compute_view(self) -> List[Node]:
        tables = self.tables
        if self.preset == PRESET_BEST_SERVER:
            return pipeline.best_server_view(tables.nodes, tables.metrics, self.filters)
        return pipeline.build_view(tables.nodes, tables.metrics, self.filters, self.sort)

    def _render(self) -> List[Node]:
        """Recompute the desired view and reconcile once."""
        if not self.tables.committed:
            # Nothing to show yet: keep the current placeholder, in the current language
            self._show_placeholder(self._placeholder_key)
            self.ordered_view = []
            return self.ordered_view

        self.ordered_view = self._compute_view()
        self.last_result = self.engine.reconcile(self.ordered_view, self.tables.metrics)
        return self.ordered_view

    # ===== Data lifecycle =====

    async def bootstrap(self, wait_for_refresh: bool = True) -> List[Node]:
        """
        Restore preferences and the cached snapshot, render it, then refresh.

        Args:
            wait_for_refresh: Await the live refresh instead of running it
                              in the background

        Returns:
            The ordered view after the last completed step
        """
        prefs = await self.store.load_preferences()
        if prefs is not None:
            self.preferences = prefs
            self.translator.set_language(prefs.locale or settings.default_locale)
            logger.info(f"Restored preferences (sort={prefs.sort.key} {prefs.sort.direction.value})")

        restored = await self.store.load()
        if restored is not None:
            nodes, metric_map = restored
            self._commit(FleetTables.build(nodes, metric_map, origin="snapshot"))
            logger.info(f"Restored snapshot with {len(nodes)} nodes")
        else:
            self._placeholder_key = "table.loading"
        self._render()

        if not wait_for_refresh:
            self._refresh_task = asyncio.ensure_future(self.refresh())
            return self.ordered_view
        return await self.refresh()

    async def refresh(self) -> List[Node]:
        """
        Fetch both feeds, normalize, commit, persist and reconcile.

        A failed refresh leaves the committed tables untouched. Only the most
        recently issued refresh may commit.
        """
        self._refresh_token += 1
        token = self._refresh_token
        started = time.monotonic()

        try:
            raw_nodes, raw_rows = await asyncio.gather(
                self.node_source.fetch_nodes(),
                self.metrics_source.fetch_status_rows(),
                return_exceptions=True,
            )
            for outcome in (raw_nodes, raw_rows):
                if isinstance(outcome, BaseException):
                    raise outcome
            nodes = self.normalizer.normalize_nodes(raw_nodes)
            metric_map = self.normalizer.normalize_metrics(raw_rows)
        except IngestionError as e:
            if token != self._refresh_token:
                logger.debug(f"Ignoring failure of superseded refresh: {e}")
                return self.ordered_view
            metrics.refreshes_total.labels(status="error").inc()
            self.last_refresh_error = e
            logger.error(f"Refresh failed: {e}")
            if not self.tables.committed:
                self._show_placeholder("errors.loadFailed")
            return self.ordered_view

        if token != self._refresh_token:
            metrics.refreshes_total.labels(status="superseded").inc()
            logger.info("Discarding superseded refresh result")
            return self.ordered_view

        self._commit(FleetTables.build(nodes, metric_map, origin="live"))
        self.last_refresh_error = None
        view = self._render()

        duration = time.monotonic() - started
        metrics.refreshes_total.labels(status="success").inc()
        metrics.refresh_duration_seconds.observe(duration)
        logger.info(
            f"Committed {len(nodes)} nodes and {len(metric_map)} metric rows "
            f"in {duration:.2f}s ({len(view)} shown)"
        )

        await self.store.save(self.tables.nodes, self.tables.metrics)
        return view

    async def wait_for_refresh(self) -> None:
        """Await a background refresh started by ``bootstrap``."""
        if self._refresh_task is not None:
            await self._refresh_task

    # ===== User actions =====

    async def _apply_preferences(self, prefs: UserPreferences, preset: Optional[str] = None) -> List[Node]:
        self.preferences = prefs
        self.preset = preset
        self.hover.hide()
        view = self._render()
        await self.store.save_preferences(prefs)
        return view

    async def apply_filter(self, **changes) -> List[Node]:
        """
        Merge filter changes into the current filter state.

        Raises:
            ValueError: If a change names an unknown filter field
        """
        unknown = set(changes) - FILTER_FIELDS
        if unknown:
            raise ValueError(f"Unknown filter field(s): {', '.join(sorted(unknown))}")
        filters = dataclasses.replace(self.filters, **changes)
        return await self._apply_preferences(dataclasses.replace(self.preferences, filters=filters))

    async def apply_sort(self, key: str, direction: Optional[SortDirection] = None) -> List[Node]:
        """
        Sort by ``key``. Re-applying the current key flips the direction
        unless one is given explicitly.

        Raises:
            ValueError: If ``key`` is not sortable
        """
        if key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {key}")
        if direction is not None:
            sort = SortState(key=key, direction=SortDirection(direction))
        else:
            sort = self.sort.toggled(key)
        return await self._apply_preferences(dataclasses.replace(self.preferences, sort=sort))

    async def reset_filters(self) -> List[Node]:
        """Back to no filters and the default sort; the language is kept."""
        prefs = UserPreferences(locale=self.preferences.locale)
        return await self._apply_preferences(prefs)

    async def apply_best_server_preset(self) -> List[Node]:
        """Show currently filtered nodes with zero load, by traffic ascending."""
        return await self._apply_preferences(self.preferences, preset=PRESET_BEST_SERVER)

    async def set_language(self, locale: str) -> List[Node]:
        self.translator.set_language(locale)
        self.hover.hide()
        prefs = dataclasses.replace(self.preferences, locale=locale)
        self.preferences = prefs
        view = self._render()
        await self.store.save_preferences(prefs)
        return view

    # ===== Row interaction =====

    def on_visible(self, row_id: str) -> Optional[asyncio.Task]:
        """Forward a row's first visible transition to the prefetch scheduler."""
        return self.visibility.notify_visible(row_id)

    async def on_hover_enter(self, row_id: str) -> Optional[HoverCard]:
        """
        Show the hover card for a row, fetching its detail if needed.

        Returns:
            The card that was shown, or None if the node is unknown or the
            pointer moved on before the fetch finished
        """
        node = self.tables.node(row_id)
        if node is None:
            return None

        token = self.hover.enter(node.id)
        cached = self.detail_cache.peek(node.id)
        if cached is not None:
            card = build_detail_card(node, cached, self.tables.metrics.get(node.id), self.translator)
            self.hover.show(token, card)
            return card

        self.hover.show(token, build_loading_card(node, self.translator))
        try:
            detail = await self.detail_cache.get_detail(node.id)
        except DetailFetchError as e:
            if not self.hover.is_current(token, node.id):
                return None
            logger.warning(f"Detail fetch failed for node {node.id}: {e}")
            card = build_failed_card(node, self.translator)
            self.hover.show(token, card)
            return card

        row = self.container.get(node.id)
        if row is not None:
            row.apply_detail(detail)

        if not self.hover.is_current(token, node.id):
            return None
        card = build_detail_card(node, detail, self.tables.metrics.get(node.id), self.translator)
        self.hover.show(token, card)
        return card

    def on_hover_leave(self) -> None:
        self.hover.leave()

    # ===== Filter panel options =====

    def provider_options(self) -> List[str]:
        return pipeline.provider_options(self.tables.nodes)

    def country_options(self) -> List[Tuple[str, int]]:
        return pipeline.country_options(self.tables.nodes)

    def country_label(self) -> str:
        selected = self.filters.country_codes
        if not selected:
            return self.translator.t("country.all")
        return self.translator.t("country.selected", count=len(selected))

    def country_total(self) -> int:
        return len(self.tables.nodes)

    async def close(self):
        """Close sources and storage."""
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self.visibility.clear()
        closed = set()
        for source in (self.node_source, self.metrics_source, self.detail_source):
            close = getattr(source, "close", None)
            if close is not None and id(source) not in closed:
                closed.add(id(source))
                await close()
        await self.store.storage.close()


def build_orchestrator() -> Orchestrator:
    """Wire the configured HTTP source and storage backend."""
    from fleetview.ingest.sources import HttpFleetSource
    from fleetview.storage.backends import build_storage

    source = HttpFleetSource()
    return Orchestrator(source, SnapshotStore(build_storage()))
