"""Normalize raw feed payloads into typed Node and MetricSnapshot records."""

import logging
import math
import re
from collections.abc import Iterable, Mapping
from typing import Dict, List, Optional, Sequence, Tuple

from fleetview import metrics
from fleetview.config import settings
from fleetview.ingest.base import IngestionError
from fleetview.models import PLACEHOLDER_TEXT, MetricSnapshot, MetricValue, Node

logger = logging.getLogger(__name__)

LOCATION_RE = re.compile(r"^(.+?)\s*\((.+)\)\s*$")
REGION_COUNTRY_RE = re.compile(r"^([A-Z]{2})\s")
HOSTNAME_COUNTRY_RE = re.compile(r"^node-([a-z]{2})-", re.IGNORECASE)
NUMERIC_SUFFIX_RE = re.compile(r"[\s-]*\d+$")
NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")

UNKNOWN_COUNTRY = "??"


def split_location(raw_location: str) -> Tuple[str, str]:
    """Split ``"<region> (<provider>)"``; without a parenthetical the provider is empty."""
    text = raw_location or ""
    match = LOCATION_RE.match(text)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return text.strip(), ""


def derive_provider_brand(provider: str, brand_keywords: Mapping[str, Sequence[str]]) -> str:
    """
    Map a provider string to a brand.

    Known brands are matched in table order. Each keyword is a
    case-insensitive regular expression searched in the provider, so a plain
    word matches as a substring and ``\\bdo\\b`` matches only the whole word.
    Otherwise the trailing numeric suffix is dropped and the last ``-``
    segment is used, e.g. ``"Foo-3"`` -> ``"Foo"``.
    """
    raw = (provider or "").strip()
    if not raw:
        return ""
    for brand, keywords in brand_keywords.items():
        if any(keyword and re.search(keyword, raw, re.IGNORECASE) for keyword in keywords):
            return brand

    stripped = NUMERIC_SUFFIX_RE.sub("", raw).strip() or raw
    return stripped.split("-")[-1].strip()


def derive_country_code(region: str, hostname: str) -> str:
    """Two-letter region prefix, else the ``node-xx-`` hostname prefix, else ``??``."""
    match = REGION_COUNTRY_RE.match(region or "")
    if match:
        return match.group(1).upper()
    match = HOSTNAME_COUNTRY_RE.match(hostname or "")
    if match:
        return match.group(1).upper()
    return UNKNOWN_COUNTRY


def parse_metric_value(text: Optional[str]) -> Optional[float]:
    """Strip everything but digits, '.' and '-' and parse; unparseable is None, never 0."""
    if text is None:
        return None
    cleaned = NON_NUMERIC_RE.sub("", str(text))
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def _metric(text: Optional[str], placeholder: Optional[str] = None) -> MetricValue:
    cleaned = (text or "").strip()
    return MetricValue(
        value=parse_metric_value(cleaned),
        display_text=cleaned or placeholder,
    )


class NodeNormalizer:
    """Turn raw node and status payloads into typed records."""

    def __init__(self, brand_keywords: Optional[Mapping[str, Sequence[str]]] = None):
        """
        Args:
            brand_keywords: Ordered brand -> keyword table (defaults to config)
        """
        self.brand_keywords = dict(
            brand_keywords if brand_keywords is not None else settings.brand_keywords
        )

    def build_node(self, node_id, hostname: str, ipv4: str, raw_location: str) -> Node:
        """Build a Node, deriving every synthetic field from the raw ones."""
        region, provider = split_location(raw_location)
        return Node(
            id=str(node_id),
            hostname=hostname or "",
            ipv4=ipv4 or "",
            raw_location=raw_location or "",
            region=region,
            provider=provider,
            provider_brand=derive_provider_brand(provider, self.brand_keywords),
            country_code=derive_country_code(region, hostname),
        )

    def normalize_nodes(self, raw) -> List[Node]:
        """
        Normalize the raw node list.

        Args:
            raw: List of ``{sid, hostname, ip, location}`` mappings, or a
                 mapping holding it under ``staticnodes``

        Returns:
            Nodes in feed order; malformed and duplicate entries are skipped

        Raises:
            IngestionError: If the payload is missing or not a list
        """
        if isinstance(raw, Mapping):
            raw = raw.get("staticnodes")
        if raw is None or isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
            raise IngestionError("staticnodes", "node list missing or not a list")

        nodes: List[Node] = []
        seen = set()
        skipped = 0
        for entry in raw:
            if not isinstance(entry, Mapping):
                skipped += 1
                continue
            node_id = entry.get("sid", entry.get("id"))
            if node_id is None or str(node_id).strip() == "":
                skipped += 1
                continue
            node_id = str(node_id).strip()
            if node_id in seen:
                skipped += 1
                continue
            seen.add(node_id)
            location = entry.get("location", entry.get("rawLocation", ""))
            nodes.append(self.build_node(
                node_id,
                hostname=str(entry.get("hostname") or ""),
                ipv4=str(entry.get("ip") or entry.get("ipv4") or ""),
                raw_location=str(location or ""),
            ))

        if skipped:
            metrics.rows_skipped_total.labels(feed="staticnodes").inc(skipped)
            logger.debug(f"Skipped {skipped} malformed node entries")
        return nodes

    def normalize_metrics(self, raw) -> Dict[str, MetricSnapshot]:
        """
        Normalize status table rows.

        Args:
            raw: Rows of ``[node_id, "cpu/io/nic", traffic, congestion]``

        Returns:
            Map of node id -> MetricSnapshot; malformed rows are skipped

        Raises:
            IngestionError: If the payload is missing or not a row list
        """
        if raw is None or isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, Iterable):
            raise IngestionError("server-status", "status rows missing or not a list")

        snapshots: Dict[str, MetricSnapshot] = {}
        skipped = 0
        for row in raw:
            if isinstance(row, (str, bytes)) or not isinstance(row, Sequence) or len(row) < 4:
                skipped += 1
                continue
            node_id = str(row[0] or "").strip()
            if not node_id:
                skipped += 1
                continue

            triple = self._split_system_load(row[1])
            snapshots[node_id] = MetricSnapshot(
                node_id=node_id,
                cpu_load=triple[0],
                io_wait=triple[1],
                nic_error=triple[2],
                network=_metric(row[2]),
                congestion=_metric(row[3]),
            )

        if skipped:
            metrics.rows_skipped_total.labels(feed="server-status").inc(skipped)
            logger.debug(f"Skipped {skipped} malformed status rows")
        return snapshots

    def _split_system_load(self, text) -> List[MetricValue]:
        """Split ``"cpu/io/nic"``; missing parts are unknown, empty parts show a placeholder."""
        parts = str(text or "").split("/") if text else []
        values = [_metric(part, placeholder=PLACEHOLDER_TEXT) for part in parts[:3]]
        while len(values) < 3:
            values.append(MetricValue())
        return values
