"""Session cache for node detail records with in-flight request sharing."""

import asyncio
import logging
from typing import Dict, Optional

from fleetview import metrics
from fleetview.ingest.base import DetailFetchError, DetailSource
from fleetview.models import DetailRecord

logger = logging.getLogger(__name__)


class DetailCache:
    """
    On-demand detail store.

    - At most one fetch per node id is in flight; concurrent callers await
      the same task.
    - Successful results are kept for the rest of the session.
    - Failures are never cached: the pending marker is cleared, every waiter
      sees the error and the next call fetches again.
    """

    def __init__(self, source: DetailSource):
        self.source = source
        self._cache: Dict[str, DetailRecord] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    def peek(self, node_id: str) -> Optional[DetailRecord]:
        """Cached record without triggering a fetch."""
        return self._cache.get(str(node_id))

    def is_pending(self, node_id: str) -> bool:
        return str(node_id) in self._pending

    async def get_detail(self, node_id: str) -> DetailRecord:
        """
        Get the detail record for a node, fetching it if needed.

        Raises:
            DetailFetchError: If the fetch fails
        """
        node_id = str(node_id)

        cached = self._cache.get(node_id)
        if cached is not None:
            metrics.detail_cache_hits_total.labels(kind="cached").inc()
            return cached

        task = self._pending.get(node_id)
        if task is not None:
            metrics.detail_cache_hits_total.labels(kind="joined").inc()
        else:
            task = asyncio.ensure_future(self._fetch(node_id))
            task.add_done_callback(_consume_exception)
            self._pending[node_id] = task

        # A cancelled waiter must not cancel the fetch other waiters share
        return await asyncio.shield(task)

    async def _fetch(self, node_id: str) -> DetailRecord:
        try:
            detail = await self.source.fetch_detail(node_id)
        except DetailFetchError:
            metrics.detail_fetches_total.labels(status="error").inc()
            raise
        except Exception as e:
            metrics.detail_fetches_total.labels(status="error").inc()
            raise DetailFetchError(node_id, str(e)) from e
        else:
            metrics.detail_fetches_total.labels(status="success").inc()
            self._cache[node_id] = detail
            logger.debug(f"Cached detail for node {node_id}")
            return detail
        finally:
            self._pending.pop(node_id, None)


def _consume_exception(task: asyncio.Task) -> None:
    # Retrieve the exception so an unawaited failure is not reported as lost
    if not task.cancelled():
        task.exception()
