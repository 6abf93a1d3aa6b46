"""One-shot detail prefetch for rows entering the viewport."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Set

from fleetview.ingest.base import DetailFetchError
from fleetview.ingest.detail_cache import DetailCache
from fleetview.logging_config import get_logger
from fleetview.models import DetailRecord

logger = get_logger(__name__, component="visibility")

OnFetched = Callable[[DetailRecord], None]


class SubscriptionState(str, Enum):
    PENDING = "pending"
    FETCHED = "fetched"
    FAILED = "failed"


@dataclass(eq=False)
class Subscription:
    """Visibility subscription for one rendered row.

    ``active`` is True until the first visible transition or until the row
    unsubscribes; ``state`` tracks the prefetch that transition started.
    """

    row_id: str
    on_fetched: Optional[OnFetched] = None
    state: SubscriptionState = SubscriptionState.PENDING
    active: bool = True
    triggered: bool = False
    error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class VisibilityScheduler:
    """
    Observes row visibility and prefetches detail records.

    Each subscription fires at most once. Prefetch errors are logged and
    recorded on the subscription, never raised to the caller.
    """

    def __init__(self, detail_cache: DetailCache):
        self.detail_cache = detail_cache
        self._subscriptions: Dict[str, Subscription] = {}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, row_id: str, on_fetched: Optional[OnFetched] = None) -> Subscription:
        """Start observing a row, replacing any earlier subscription for it."""
        row_id = str(row_id)
        previous = self._subscriptions.get(row_id)
        if previous is not None:
            previous.active = False
        subscription = Subscription(row_id=row_id, on_fetched=on_fetched)
        self._subscriptions[row_id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop observing. A prefetch already started keeps running but its result is dropped."""
        subscription.active = False
        subscription.on_fetched = None
        if self._subscriptions.get(subscription.row_id) is subscription:
            del self._subscriptions[subscription.row_id]

    def get(self, row_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(str(row_id))

    def clear(self) -> None:
        for subscription in list(self._subscriptions.values()):
            self.unsubscribe(subscription)

    def notify_visible(self, row_id: str) -> Optional[asyncio.Task]:
        """
        Report that a row entered the viewport.

        Returns:
            The prefetch task on the first visible transition, else None
        """
        subscription = self._subscriptions.get(str(row_id))
        if subscription is None or not subscription.active:
            return None

        # One-shot: stop observing before the fetch starts
        subscription.triggered = True
        subscription.active = False
        del self._subscriptions[subscription.row_id]

        task = asyncio.ensure_future(self._prefetch(subscription))
        subscription.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _prefetch(self, subscription: Subscription) -> None:
        try:
            detail = await self.detail_cache.get_detail(subscription.row_id)
        except DetailFetchError as e:
            subscription.state = SubscriptionState.FAILED
            subscription.error = str(e)
            logger.info(f"Visibility prefetch failed for {subscription.row_id}: {e}")
            return

        subscription.state = SubscriptionState.FETCHED
        callback = subscription.on_fetched
        if callback is not None:
            callback(detail)

    async def drain(self) -> None:
        """Wait for every outstanding prefetch."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def observed_count(self) -> int:
        return len(self._subscriptions)
