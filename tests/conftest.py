"""Shared fakes and fixtures."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from fleetview.ingest.base import (
    DetailFetchError,
    DetailSource,
    IngestionError,
    MetricsFeedSource,
    NodeFeedSource,
)
from fleetview.models import DetailRecord, MetricSnapshot, MetricValue, Node
from fleetview.normalize.processor import NodeNormalizer
from fleetview.storage.backends import MemoryStorage
from fleetview.storage.snapshot_store import SnapshotStore


def raw_node(sid, hostname: str, ip: str, location: str) -> dict:
    return {"sid": sid, "hostname": hostname, "ip": ip, "location": location}


def make_node(sid, hostname: str = "", ip: str = "", location: str = "") -> Node:
    return NodeNormalizer().build_node(
        sid,
        hostname or f"node-kr-{sid}",
        ip or f"10.0.0.{sid}",
        location or "Seoul (Google)",
    )


def _channel(value) -> MetricValue:
    if value is None:
        return MetricValue()
    return MetricValue(value=float(value), display_text=str(value))


def make_snapshot(node_id, cpu=None, io=None, nic=None, network=None, congestion=None) -> MetricSnapshot:
    return MetricSnapshot(
        node_id=str(node_id),
        cpu_load=_channel(cpu),
        io_wait=_channel(io),
        nic_error=_channel(nic),
        network=_channel(network),
        congestion=_channel(congestion),
    )


def make_detail(node_id, uptime: str = "12 days") -> DetailRecord:
    return DetailRecord(
        node_id=str(node_id),
        uptime=uptime,
        heartbeat="5 seconds ago",
        private_ip="192.168.0.2",
        price_policy_lines=("0.5 credit / GB",),
        charts=(),
        fetched_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
    )


class FakeFleetSource(NodeFeedSource, MetricsFeedSource, DetailSource):
    """In-memory stand-in for all three feeds.

    ``nodes_gate`` / ``detail_gate`` hold fetches until set, which lets
    tests interleave concurrent operations deterministically.
    """

    def __init__(self, nodes: Optional[List[dict]] = None, rows: Optional[List[list]] = None):
        self.nodes = list(nodes or [])
        self.rows = list(rows or [])
        self.node_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None
        self.nodes_gate: Optional[asyncio.Event] = None
        self.detail_gate: Optional[asyncio.Event] = None
        self.detail_failures: Dict[str, int] = {}
        self.detail_calls: List[str] = []
        self.node_calls = 0
        self.closed = False

    async def fetch_nodes(self):
        self.node_calls += 1
        nodes = list(self.nodes)
        error = self.node_error
        gate = self.nodes_gate
        if gate is not None:
            await gate.wait()
        if error is not None:
            raise error
        return {"staticnodes": nodes}

    async def fetch_status_rows(self):
        if self.status_error is not None:
            raise self.status_error
        return [list(row) for row in self.rows]

    async def fetch_detail(self, node_id: str) -> DetailRecord:
        node_id = str(node_id)
        self.detail_calls.append(node_id)
        if self.detail_gate is not None:
            await self.detail_gate.wait()
        remaining = self.detail_failures.get(node_id, 0)
        if remaining:
            self.detail_failures[node_id] = remaining - 1
            raise DetailFetchError(node_id, "upstream unavailable")
        return make_detail(node_id)

    async def close(self):
        self.closed = True


SEOUL_NODES = [
    raw_node(1, "node-kr-1", "1.1.1.1", "Seoul (Google)"),
    raw_node(2, "node-jp-2", "2.2.2.2", "JP Tokyo (Amazon)"),
    raw_node(3, "node-us-3", "3.3.3.3", "US Dallas (Foo-3)"),
]

STATUS_ROWS = [
    ["1", "0/0/0", "5", "0"],
    ["2", "12.5/0.4/0", "20.1", "1"],
    ["3", "3/1/2", "7", "0"],
]


@pytest.fixture
def source():
    return FakeFleetSource(nodes=SEOUL_NODES, rows=STATUS_ROWS)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return SnapshotStore(storage, NodeNormalizer())


@pytest.fixture
def failing_feed():
    return IngestionError("staticnodes", "fetch failed: connection refused")
