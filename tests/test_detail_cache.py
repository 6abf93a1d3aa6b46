"""Tests for the detail cache and visibility-triggered prefetch."""

import asyncio

import pytest

from fleetview.ingest.base import DetailFetchError, DetailSource
from fleetview.ingest.detail_cache import DetailCache
from fleetview.view.visibility import SubscriptionState, VisibilityScheduler

from conftest import FakeFleetSource


class ExplodingSource(DetailSource):
    async def fetch_detail(self, node_id):
        raise RuntimeError("parser bug")


class TestDetailCache:
    """Tests for DetailCache."""

    def setup_method(self):
        self.source = FakeFleetSource()
        self.cache = DetailCache(self.source)

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_fetch(self):
        self.source.detail_gate = asyncio.Event()

        first = asyncio.ensure_future(self.cache.get_detail("7"))
        second = asyncio.ensure_future(self.cache.get_detail("7"))
        await asyncio.sleep(0)
        assert self.cache.is_pending("7")

        self.source.detail_gate.set()
        results = await asyncio.gather(first, second)

        assert results[0] is results[1]
        assert self.source.detail_calls == ["7"]
        assert not self.cache.is_pending("7")

    @pytest.mark.asyncio
    async def test_result_is_cached_for_the_session(self):
        detail = await self.cache.get_detail(7)
        again = await self.cache.get_detail("7")

        assert again is detail
        assert self.cache.peek("7") is detail
        assert self.source.detail_calls == ["7"]

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self):
        self.source.detail_failures["7"] = 1

        with pytest.raises(DetailFetchError):
            await self.cache.get_detail("7")
        assert self.cache.peek("7") is None
        assert not self.cache.is_pending("7")

        detail = await self.cache.get_detail("7")
        assert detail.node_id == "7"
        assert self.source.detail_calls == ["7", "7"]

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter(self):
        self.source.detail_gate = asyncio.Event()
        self.source.detail_failures["7"] = 1

        first = asyncio.ensure_future(self.cache.get_detail("7"))
        second = asyncio.ensure_future(self.cache.get_detail("7"))
        await asyncio.sleep(0)
        self.source.detail_gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert all(isinstance(result, DetailFetchError) for result in results)
        assert self.source.detail_calls == ["7"]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_fetch(self):
        self.source.detail_gate = asyncio.Event()

        first = asyncio.ensure_future(self.cache.get_detail("7"))
        second = asyncio.ensure_future(self.cache.get_detail("7"))
        await asyncio.sleep(0)
        first.cancel()
        self.source.detail_gate.set()

        detail = await second
        assert detail.node_id == "7"
        assert first.cancelled()

    @pytest.mark.asyncio
    async def test_unexpected_source_errors_become_detail_errors(self):
        cache = DetailCache(ExplodingSource())
        with pytest.raises(DetailFetchError) as exc_info:
            await cache.get_detail("3")
        assert exc_info.value.node_id == "3"


class TestVisibilityScheduler:
    """Tests for VisibilityScheduler."""

    def setup_method(self):
        self.source = FakeFleetSource()
        self.cache = DetailCache(self.source)
        self.scheduler = VisibilityScheduler(self.cache)

    @pytest.mark.asyncio
    async def test_first_visible_transition_prefetches_once(self):
        received = []
        subscription = self.scheduler.subscribe("1", on_fetched=received.append)

        task = self.scheduler.notify_visible("1")
        assert task is not None
        assert self.scheduler.notify_visible("1") is None

        await task
        assert subscription.triggered
        assert subscription.state == SubscriptionState.FETCHED
        assert [detail.node_id for detail in received] == ["1"]
        assert self.source.detail_calls == ["1"]
        assert self.scheduler.observed_count == 0

    @pytest.mark.asyncio
    async def test_prefetch_failure_is_swallowed(self):
        self.source.detail_failures["1"] = 1
        received = []
        subscription = self.scheduler.subscribe("1", on_fetched=received.append)

        await self.scheduler.notify_visible("1")

        assert subscription.state == SubscriptionState.FAILED
        assert "upstream unavailable" in subscription.error
        assert received == []

    @pytest.mark.asyncio
    async def test_unsubscribed_row_is_not_fetched(self):
        subscription = self.scheduler.subscribe("1")
        self.scheduler.unsubscribe(subscription)

        assert self.scheduler.notify_visible("1") is None
        assert self.source.detail_calls == []

    @pytest.mark.asyncio
    async def test_late_result_dropped_after_unsubscribe(self):
        self.source.detail_gate = asyncio.Event()
        received = []
        subscription = self.scheduler.subscribe("1", on_fetched=received.append)

        task = self.scheduler.notify_visible("1")
        await asyncio.sleep(0)
        self.scheduler.unsubscribe(subscription)
        self.source.detail_gate.set()
        await task

        assert received == []
        assert self.cache.peek("1") is not None

    @pytest.mark.asyncio
    async def test_failed_fetch_retried_by_later_visibility(self):
        """getDetail(7) fails once, then a fresh visibility trigger fetches again."""
        self.source.detail_failures["7"] = 1
        with pytest.raises(DetailFetchError):
            await self.cache.get_detail("7")
        assert self.cache.peek("7") is None

        self.scheduler.subscribe("7")
        await self.scheduler.notify_visible("7")

        assert self.source.detail_calls == ["7", "7"]
        assert self.cache.peek("7") is not None

    @pytest.mark.asyncio
    async def test_resubscribe_replaces_previous_subscription(self):
        old = self.scheduler.subscribe("1")
        new = self.scheduler.subscribe("1")

        assert not old.active
        assert self.scheduler.get("1") is new

    @pytest.mark.asyncio
    async def test_drain_waits_for_outstanding_prefetches(self):
        for row_id in ("1", "2", "3"):
            self.scheduler.subscribe(row_id)
            self.scheduler.notify_visible(row_id)

        await self.scheduler.drain()
        assert sorted(self.source.detail_calls) == ["1", "2", "3"]
