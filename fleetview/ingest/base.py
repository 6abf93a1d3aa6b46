"""Base source interfaces for the node, status and detail feeds."""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from fleetview.models import DetailRecord


class IngestionError(RuntimeError):
    """Raised when a whole feed is unreachable or garbled.

    The payload is rejected as a unit; nothing from it is applied.
    """

    def __init__(self, feed: str, message: str):
        super().__init__(f"{feed}: {message}")
        self.feed = feed


class DetailFetchError(RuntimeError):
    """Raised when the detail record for one node cannot be fetched."""

    def __init__(self, node_id: str, message: str):
        super().__init__(f"detail {node_id}: {message}")
        self.node_id = node_id


class NodeFeedSource(ABC):
    """Source of the raw node list."""

    @abstractmethod
    async def fetch_nodes(self) -> Any:
        """
        Fetch the raw node list payload.

        Returns:
            Either a list of ``{sid, hostname, ip, location}`` mappings or a
            mapping holding that list under ``staticnodes``

        Raises:
            IngestionError: If the feed cannot be fetched
        """
        pass


class MetricsFeedSource(ABC):
    """Source of the semi-structured status table."""

    @abstractmethod
    async def fetch_status_rows(self) -> Sequence[Sequence[str]]:
        """
        Fetch status table rows.

        Returns:
            Rows of ``[node_id, "cpu/io/nic", traffic, congestion]`` strings

        Raises:
            IngestionError: If the feed cannot be fetched or has no table
        """
        pass


class DetailSource(ABC):
    """Source of per-node detail records."""

    @abstractmethod
    async def fetch_detail(self, node_id: str) -> DetailRecord:
        """
        Fetch and parse the detail page for one node.

        Raises:
            DetailFetchError: If the page cannot be fetched or parsed
        """
        pass
