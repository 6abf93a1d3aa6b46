"""Persist and restore the node/metric snapshot and user preferences."""

import logging
import time
from typing import Dict, Iterable, Mapping, Optional, Tuple

from pydantic import ValidationError

from fleetview import metrics
from fleetview.config import settings
from fleetview.models import (
    CHANNELS,
    FilterState,
    MetricSnapshot,
    MetricValue,
    Node,
    SortDirection,
    SortState,
    UserPreferences,
)
from fleetview.normalize.processor import NodeNormalizer
from fleetview.storage.backends import KeyValueStorage, StorageError
from fleetview.storage.schemas import (
    ChannelRecord,
    MetricRecord,
    PreferencesDocument,
    RawNodeRecord,
    SnapshotDocument,
    SortRecord,
)

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Snapshot and preference persistence over a key/value backend.

    Never raises past its boundary: failed writes are logged and dropped,
    failed or malformed reads return None.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        normalizer: Optional[NodeNormalizer] = None,
        snapshot_key: Optional[str] = None,
        preferences_key: Optional[str] = None,
    ):
        self.storage = storage
        self.normalizer = normalizer or NodeNormalizer()
        self.snapshot_key = snapshot_key or settings.snapshot_key
        self.preferences_key = preferences_key or settings.preferences_key

    async def _write(self, key: str, document) -> bool:
        try:
            await self.storage.set(key, document.model_dump_json())
            return True
        except StorageError as e:
            metrics.storage_failures_total.labels(operation="set").inc()
            logger.warning(f"Failed to persist {key}: {e}")
            return False

    async def _read(self, key: str, model):
        try:
            raw = await self.storage.get(key)
        except StorageError as e:
            metrics.storage_failures_total.labels(operation="get").inc()
            logger.warning(f"Failed to read {key}: {e}")
            return None
        if not raw:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding malformed {key}: {e.error_count()} validation errors")
            return None

    # ===== Snapshot =====

    async def save(self, nodes: Iterable[Node], metric_map: Mapping[str, MetricSnapshot]) -> bool:
        """
        Persist the full node + metric tables.

        Returns:
            True if the write went through
        """
        document = SnapshotDocument(
            timestamp=time.time(),
            nodes=[
                RawNodeRecord(sid=node.id, hostname=node.hostname, ip=node.ipv4, location=node.raw_location)
                for node in nodes
            ],
            metrics={
                node_id: MetricRecord(**{
                    channel: ChannelRecord(
                        value=snapshot.channel(channel).value,
                        text=snapshot.channel(channel).display_text,
                    )
                    for channel in CHANNELS
                })
                for node_id, snapshot in metric_map.items()
            },
        )
        return await self._write(self.snapshot_key, document)

    async def load(self) -> Optional[Tuple[list, Dict[str, MetricSnapshot]]]:
        """
        Restore the snapshot.

        Returns:
            ``(nodes, metrics)`` or None if missing or malformed
        """
        document = await self._read(self.snapshot_key, SnapshotDocument)
        if document is None:
            return None

        nodes = [
            self.normalizer.build_node(record.sid, record.hostname, record.ip, record.location)
            for record in document.nodes
        ]
        metric_map = {
            str(node_id): MetricSnapshot(
                node_id=str(node_id),
                **{
                    channel: MetricValue(
                        value=getattr(record, channel).value,
                        display_text=getattr(record, channel).text,
                    )
                    for channel in CHANNELS
                },
            )
            for node_id, record in document.metrics.items()
        }
        return nodes, metric_map

    # ===== Preferences =====

    async def save_preferences(self, prefs: UserPreferences) -> bool:
        filters = prefs.filters
        document = PreferencesDocument(
            lang=prefs.locale,
            location=filters.brand,
            keyword=filters.keyword,
            cpu_max=filters.cpu_max,
            io_max=filters.io_max,
            nic_max=filters.nic_max,
            congestion_max=filters.congestion_max,
            country_codes=sorted(filters.country_codes),
            sort=SortRecord(key=prefs.sort.key, direction=prefs.sort.direction.value),
        )
        return await self._write(self.preferences_key, document)

    async def load_preferences(self) -> Optional[UserPreferences]:
        document = await self._read(self.preferences_key, PreferencesDocument)
        if document is None:
            return None

        sort = document.sort.normalized()
        return UserPreferences(
            filters=FilterState(
                brand=document.location,
                keyword=document.keyword,
                cpu_max=document.cpu_max,
                io_max=document.io_max,
                nic_max=document.nic_max,
                congestion_max=document.congestion_max,
                country_codes=frozenset(document.country_codes),
            ),
            sort=SortState(key=sort.key, direction=SortDirection(sort.direction)),
            locale=document.lang,
        )
