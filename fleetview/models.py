"""Typed records shared by the ingest, storage and view layers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

PLACEHOLDER_TEXT = "—"

# Metric channels in status-table column order
CHANNELS = ("cpu_load", "io_wait", "nic_error", "network", "congestion")

# Channels that take a numeric ceiling in the filter panel
CEILING_CHANNELS = {
    "cpu_max": "cpu_load",
    "io_max": "io_wait",
    "nic_max": "nic_error",
    "congestion_max": "congestion",
}

SORT_KEYS = ("region", "provider", "ip", "sid") + CHANNELS
DEFAULT_SORT_KEY = "region"


@dataclass(frozen=True)
class Node:
    """One fleet entity.

    Derived fields (region, provider, provider_brand, country_code) are only
    ever produced by ``NodeNormalizer.build_node`` from the raw fields.
    """

    id: str
    hostname: str
    ipv4: str
    raw_location: str
    region: str
    provider: str
    provider_brand: str
    country_code: str


@dataclass(frozen=True)
class MetricValue:
    """One metric channel: parsed value plus the text the feed showed."""

    value: Optional[float] = None
    display_text: Optional[str] = None

    @property
    def known(self) -> bool:
        return self.value is not None and math.isfinite(self.value)


UNKNOWN = MetricValue()


@dataclass(frozen=True)
class MetricSnapshot:
    """Metric channels for one node. Missing channels are unknown, never zero."""

    node_id: str
    cpu_load: MetricValue = UNKNOWN
    io_wait: MetricValue = UNKNOWN
    nic_error: MetricValue = UNKNOWN
    network: MetricValue = UNKNOWN
    congestion: MetricValue = UNKNOWN

    def channel(self, name: str) -> MetricValue:
        if name not in CHANNELS:
            raise KeyError(name)
        return getattr(self, name)


@dataclass(frozen=True)
class ChartRef:
    """A chart image linked from a node's detail page."""

    kind: str  # "system_load", "network" or "congestion"
    url: str
    sort_score: int


@dataclass(frozen=True)
class DetailRecord:
    """Lazily fetched per-node detail. Immutable once fetched."""

    node_id: str
    uptime: str
    heartbeat: str
    private_ip: str
    price_policy_lines: tuple[str, ...]
    charts: tuple[ChartRef, ...]
    fetched_at: datetime

    def chart(self, kind: str) -> Optional[ChartRef]:
        for ref in self.charts:
            if ref.kind == kind:
                return ref
        return None


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortState:
    key: str = DEFAULT_SORT_KEY
    direction: SortDirection = SortDirection.ASC

    def toggled(self, key: str) -> "SortState":
        """Same key flips direction, a new key starts ascending."""
        if key == self.key:
            flipped = SortDirection.DESC if self.direction == SortDirection.ASC else SortDirection.ASC
            return SortState(key=key, direction=flipped)
        return SortState(key=key, direction=SortDirection.ASC)


def normalize_ceiling(value) -> Optional[float]:
    """Return a finite, non-negative ceiling or None when the ceiling is inactive.

    Accepts the raw form-field shapes too: '' and unparseable strings are
    inactive, as are negative markers such as -1.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


@dataclass(frozen=True)
class FilterState:
    brand: str = "all"
    keyword: str = ""
    cpu_max: Optional[float] = None
    io_max: Optional[float] = None
    nic_max: Optional[float] = None
    congestion_max: Optional[float] = None
    country_codes: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        for name in CEILING_CHANNELS:
            object.__setattr__(self, name, normalize_ceiling(getattr(self, name)))
        object.__setattr__(self, "country_codes", frozenset(self.country_codes))
        object.__setattr__(self, "brand", self.brand or "all")
        object.__setattr__(self, "keyword", self.keyword or "")

    def active_ceilings(self) -> dict[str, float]:
        """Map of channel name -> ceiling for every active ceiling."""
        return {
            channel: getattr(self, name)
            for name, channel in CEILING_CHANNELS.items()
            if getattr(self, name) is not None
        }


@dataclass(frozen=True)
class UserPreferences:
    filters: FilterState = field(default_factory=FilterState)
    sort: SortState = field(default_factory=SortState)
    locale: Optional[str] = None
