"""Filter and sort the committed node table into the desired view.

Everything here is pure: the same nodes, metrics and state always produce
the same ordered list.
"""

import locale
import unicodedata
from collections import Counter
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from fleetview.models import (
    CHANNELS,
    FilterState,
    MetricSnapshot,
    Node,
    SortDirection,
    SortState,
)

# Sort value for unknown metrics: after every known reading, however large
UNKNOWN_SORT_VALUE = (1, 0.0)

BEST_SERVER_CHANNELS = ("cpu_load", "io_wait", "nic_error", "congestion")

Extractor = Callable[[Node], object]


def text_sort_key(text: str) -> str:
    """Locale-aware, case-insensitive collation key."""
    folded = unicodedata.normalize("NFKC", text or "").casefold()
    # strxfrm rejects embedded NULs
    return locale.strxfrm(folded.replace("\x00", ""))


def metric_sort_value(
    metric_map: Mapping[str, MetricSnapshot], node_id: str, channel: str
) -> Tuple[int, float]:
    snapshot = metric_map.get(node_id)
    if snapshot is None:
        return UNKNOWN_SORT_VALUE
    metric = snapshot.channel(channel)
    return (0, metric.value) if metric.known else UNKNOWN_SORT_VALUE


def _sid_value(node: Node) -> Tuple[int, float, str]:
    try:
        return (0, float(node.id), "")
    except ValueError:
        return (1, 0.0, text_sort_key(node.id))


def build_extractors(metric_map: Mapping[str, MetricSnapshot]) -> Dict[str, Extractor]:
    """Sort-key name -> value extractor for the given metric table."""
    extractors: Dict[str, Extractor] = {
        "region": lambda node: text_sort_key(node.region or node.raw_location),
        "provider": lambda node: text_sort_key(node.provider_brand or node.provider),
        "ip": lambda node: node.ipv4,
        "sid": _sid_value,
    }
    for channel in CHANNELS:
        extractors[channel] = (
            lambda node, channel=channel: metric_sort_value(metric_map, node.id, channel)
        )
    return extractors


def _passes_ceilings(snapshot: Optional[MetricSnapshot], ceilings: Mapping[str, float]) -> bool:
    if not ceilings:
        return True
    if snapshot is None:
        return False
    for channel, ceiling in ceilings.items():
        metric = snapshot.channel(channel)
        if not (metric.known and metric.value <= ceiling):
            return False
    return True


def keyword_haystack(node: Node) -> str:
    return " ".join((
        node.hostname,
        node.ipv4,
        node.region or node.raw_location,
        node.provider,
        node.provider_brand,
    )).lower()


def filter_nodes(
    nodes: Sequence[Node],
    metric_map: Mapping[str, MetricSnapshot],
    filters: FilterState,
) -> List[Node]:
    """
    Keep the nodes passing every active predicate.

    - brand equals the selected brand (or the selection is "all")
    - country code is selected (or nothing is selected)
    - every active ceiling channel has a known value <= ceiling
    - the keyword is a substring of hostname, ip, region, provider and brand
    """
    keyword = filters.keyword.strip().lower()
    ceilings = filters.active_ceilings()
    selected = filters.country_codes

    result = []
    for node in nodes:
        if filters.brand != "all" and node.provider_brand != filters.brand:
            continue
        if selected and node.country_code not in selected:
            continue
        if not _passes_ceilings(metric_map.get(node.id), ceilings):
            continue
        if keyword and keyword not in keyword_haystack(node):
            continue
        result.append(node)
    return result


def sort_nodes(
    nodes: Sequence[Node],
    metric_map: Mapping[str, MetricSnapshot],
    sort: SortState,
) -> List[Node]:
    """
    Stable ascending sort by the key's extractor; descending reverses the
    ascending result, ties included.
    """
    extractors = build_extractors(metric_map)
    extractor = extractors.get(sort.key, extractors["region"])
    ordered = sorted(nodes, key=extractor)
    if sort.direction == SortDirection.DESC:
        ordered.reverse()
    return ordered


def build_view(
    nodes: Sequence[Node],
    metric_map: Mapping[str, MetricSnapshot],
    filters: FilterState,
    sort: SortState,
) -> List[Node]:
    """Filtered, then sorted: the desired view."""
    return sort_nodes(filter_nodes(nodes, metric_map, filters), metric_map, sort)


def best_server_view(
    nodes: Sequence[Node],
    metric_map: Mapping[str, MetricSnapshot],
    filters: FilterState,
) -> List[Node]:
    """Filtered nodes with zero cpu, io, nic and congestion, by network ascending."""
    subset = []
    for node in filter_nodes(nodes, metric_map, filters):
        snapshot = metric_map.get(node.id)
        if snapshot is None:
            continue
        if all(
            snapshot.channel(channel).known and snapshot.channel(channel).value == 0
            for channel in BEST_SERVER_CHANNELS
        ):
            subset.append(node)
    return sort_nodes(subset, metric_map, SortState(key="network"))


def default_order(nodes: Sequence[Node]) -> List[Node]:
    """Base table order: region, then hostname."""
    return sorted(
        nodes,
        key=lambda node: (text_sort_key(node.region or node.raw_location), text_sort_key(node.hostname)),
    )


def provider_options(nodes: Sequence[Node]) -> List[str]:
    """Distinct non-empty provider brands, sorted."""
    return sorted({node.provider_brand for node in nodes if node.provider_brand}, key=text_sort_key)


def country_options(nodes: Sequence[Node]) -> List[Tuple[str, int]]:
    """(country code, node count) pairs sorted by code."""
    counts = Counter(node.country_code for node in nodes)
    return sorted(counts.items())
