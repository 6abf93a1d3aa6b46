"""HTTP sources for the node list, the status table and node detail pages."""

import asyncio
import json
import logging
from typing import Any, List, Optional

import httpx

from fleetview.config import settings
from fleetview.ingest.base import (
    DetailFetchError,
    DetailSource,
    IngestionError,
    MetricsFeedSource,
    NodeFeedSource,
)
from fleetview.ingest.http_client import (
    PermanentURLError,
    RateLimitedError,
    TransientFetchError,
    build_policies,
    fetch_with_policy,
)
from fleetview.ingest.status_pages import PageParseError, parse_detail_page, parse_status_table
from fleetview.models import DetailRecord

logger = logging.getLogger(__name__)

FETCH_ERRORS = (PermanentURLError, RateLimitedError, TransientFetchError, httpx.HTTPError)


class HttpFleetSource(NodeFeedSource, MetricsFeedSource, DetailSource):
    """
    Fetches all three feeds from the status backend over one HTTP client.

    Transport failures are converted to IngestionError for the bulk feeds
    and DetailFetchError for detail pages.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_concurrent_details: Optional[int] = None,
    ):
        """
        Initialize the source.

        Args:
            base_url: Backend base URL (defaults to config)
            client: Pre-built client, mainly for tests with a mock transport
            max_concurrent_details: Cap on parallel detail page fetches
        """
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._http_client = client
        self._owns_client = client is None
        self._policies = build_policies()
        self._detail_semaphore = asyncio.Semaphore(
            max_concurrent_details or settings.max_concurrent_detail_fetches
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=settings.http_timeout_seconds,
                follow_redirects=True,
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def fetch_nodes(self) -> List[dict]:
        client = await self._get_client()
        url = self._url(settings.static_nodes_path)
        try:
            response = await fetch_with_policy(client, url, self._policies["staticnodes"])
            payload: Any = response.json()
        except FETCH_ERRORS as e:
            raise IngestionError("staticnodes", f"fetch failed: {e}") from e
        except (json.JSONDecodeError, ValueError) as e:
            raise IngestionError("staticnodes", f"invalid JSON: {e}") from e

        nodes = payload.get("staticnodes") if isinstance(payload, dict) else None
        if not isinstance(nodes, list):
            raise IngestionError("staticnodes", "payload has no staticnodes list")

        logger.debug(f"Fetched {len(nodes)} raw nodes from {url}")
        return nodes

    async def fetch_status_rows(self) -> List[List[str]]:
        client = await self._get_client()
        url = self._url(settings.server_status_path)
        try:
            response = await fetch_with_policy(client, url, self._policies["server-status"])
            rows = parse_status_table(response.text)
        except FETCH_ERRORS as e:
            raise IngestionError("server-status", f"fetch failed: {e}") from e
        except PageParseError as e:
            raise IngestionError("server-status", str(e)) from e

        logger.debug(f"Fetched {len(rows)} status rows from {url}")
        return rows

    async def fetch_detail(self, node_id: str) -> DetailRecord:
        client = await self._get_client()
        url = self._url(settings.node_detail_path.format(sid=node_id))
        async with self._detail_semaphore:
            try:
                response = await fetch_with_policy(client, url, self._policies["detail"])
                return parse_detail_page(response.text, node_id, base_url=url)
            except FETCH_ERRORS as e:
                raise DetailFetchError(node_id, f"fetch failed: {e}") from e
            except PageParseError as e:
                raise DetailFetchError(node_id, str(e)) from e
