"""HTML parsers for the global status table and per-node status pages.

Both pages are loosely structured and partly localized, so parsing prefers
structure (row/cell positions, list positions) and only falls back to label
text where structure is ambiguous.
"""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser

from fleetview.models import ChartRef, DetailRecord

logger = logging.getLogger(__name__)

STATUS_WINDOW_RE = re.compile(r"openStatusWindow\((\d+)\)", re.IGNORECASE)
CHART_SCORE_RE = re.compile(r"/(\d+)_")
LABEL_RE = re.compile(r"^([^:：]+)[:：]")
SEPARATOR_RE = re.compile(r"[:：]")

# Label candidates per detail field (English and the site's Chinese labels)
DETAIL_LABELS = {
    "uptime": ("uptime", "運行時間"),
    "heartbeat": ("heartbeat", "心跳"),
    "private_ip": ("private ip", "內部地址"),
    "price_policy": ("price policy", "價格政策"),
}

CHART_TITLE_KEYWORDS = {
    "system_load": ("system load", "cpu"),
    "network": ("traffic", "network"),
    "congestion": ("congestion",),
}

UNSCORED_CHART = 2 ** 53 - 5


class PageParseError(ValueError):
    """Raised when a page is missing the structure it is parsed by."""
    pass


def normalize_text(text: Optional[str]) -> str:
    """Collapse whitespace runs and strip."""
    return " ".join((text or "").split())


# ===== Global status table =====

def parse_status_table(html: str) -> List[List[str]]:
    """
    Extract raw rows from the global status page.

    Every ``tbody`` row is returned, including malformed ones, so the
    normalizer can account for skipped rows. Rows with five or more cells
    become ``[node_id, system_load, traffic, congestion]``; ``node_id`` is ""
    when the second cell has no ``openStatusWindow(<id>)`` handler.

    Raises:
        PageParseError: If the page has no status table at all
    """
    parser = HTMLParser(html or "")
    table = parser.css_first("#staticnodes_table")
    if table is None:
        raise PageParseError("status table #staticnodes_table not found")

    rows: List[List[str]] = []
    for tr in table.css("tbody tr"):
        cells = tr.css("td")
        if len(cells) < 5:
            rows.append([normalize_text(cell.text()) for cell in cells])
            continue

        on_click = cells[1].attributes.get("onclick") or ""
        match = STATUS_WINDOW_RE.search(on_click)
        node_id = match.group(1) if match else ""

        system_load = "".join(normalize_text(cells[2].text()).split())
        traffic = normalize_text(cells[3].text())
        congestion = normalize_text(cells[4].text())
        rows.append([node_id, system_load, traffic, congestion])

    return rows


# ===== Per-node status page =====

def _children(node, tag: str) -> list:
    return [child for child in node.iter() if child.tag == tag]


def _own_text(node, skip=("ul", "ol", "img")) -> str:
    """Text of a node without the text of nested lists."""
    parts = []
    for child in node.iter(include_text=True):
        if child.tag in skip:
            continue
        parts.append(child.text(deep=True) or "")
    return normalize_text("".join(parts))


def _item_label(li) -> str:
    for child in li.iter():
        if child.tag in ("strong", "b"):
            strong_text = normalize_text(child.text())
            if strong_text:
                return strong_text
            break
    text = _own_text(li)
    match = LABEL_RE.match(text)
    if match:
        return normalize_text(match.group(1))
    return text.split(" ")[0] if text else ""


def _item_value(li) -> str:
    text = _own_text(li, skip=("ul", "ol"))
    match = SEPARATOR_RE.search(text)
    if match:
        return normalize_text(text[match.end():])
    for child in li.iter():
        if child.tag in ("strong", "b"):
            label = normalize_text(child.text())
            if label and text.startswith(label):
                return normalize_text(text[len(label):])
            break
    return text


def label_matches(label: str, candidates) -> bool:
    """Loose match: either string contains the other, case-insensitively."""
    lowered = normalize_text(label).lower()
    if not lowered:
        return False
    for candidate in candidates:
        cand = normalize_text(candidate).lower()
        if cand in lowered or lowered in cand:
            return True
    return False


def _chart_kind(src: str, title: str) -> Optional[str]:
    if re.search(r"loadavg", src, re.IGNORECASE):
        return "congestion"
    if re.search(r"eth0|traffic|io", src, re.IGNORECASE):
        return "network"
    if re.search(r"proc|system|cpu", src, re.IGNORECASE):
        return "system_load"
    lowered = title.lower()
    for kind, keywords in CHART_TITLE_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return kind
    return None


def _chart_score(url: str) -> int:
    match = CHART_SCORE_RE.search(url)
    if match:
        return int(match.group(1))
    return UNSCORED_CHART


def _collect_charts(panel, base_url: str) -> tuple:
    charts = {}
    for img in panel.css("img[src*='mongraph']"):
        src = img.attributes.get("src") or ""
        if not src:
            continue
        url = urljoin(base_url, src) if base_url else src
        if url.startswith("//"):
            url = f"https:{url}"
        container = img.parent
        while container is not None and container.tag != "li":
            container = container.parent
        title = _own_text(container, skip=("ul",)) if container is not None else ""
        kind = _chart_kind(url, title)
        if not kind:
            continue
        charts[kind] = ChartRef(kind=kind, url=url, sort_score=_chart_score(url))
    return tuple(sorted(charts.values(), key=lambda ref: ref.sort_score))


def parse_detail_page(
    html: str,
    node_id: str,
    base_url: str = "",
    fetched_at: Optional[datetime] = None,
) -> DetailRecord:
    """
    Parse a node's status page into a DetailRecord.

    Args:
        html: Page HTML
        node_id: Node the page belongs to
        base_url: Base URL for resolving relative chart links
        fetched_at: Fetch timestamp (defaults to now, UTC)

    Returns:
        DetailRecord

    Raises:
        PageParseError: If the status panel is missing
    """
    parser = HTMLParser(html or "")
    panel = parser.css_first(".panel.panel-info .panel-body")
    if panel is None:
        raise PageParseError("server status panel not found")

    items = []
    for ul in _children(panel, "ul"):
        items.extend(_children(ul, "li"))

    fields = {"uptime": "", "heartbeat": "", "private_ip": ""}
    price_policy: List[str] = []

    # Fixed positions first: 0 hostname, 1 ipv4, 2 private ip, 3 uptime, 4 heartbeat
    if len(items) >= 5:
        fields["private_ip"] = _item_value(items[2])
        fields["uptime"] = _item_value(items[3])
        fields["heartbeat"] = _item_value(items[4])

    for li in items:
        label = _item_label(li)
        if not label:
            continue
        if label_matches(label, DETAIL_LABELS["uptime"]):
            fields["uptime"] = _item_value(li)
        elif label_matches(label, DETAIL_LABELS["heartbeat"]):
            fields["heartbeat"] = _item_value(li)
        elif label_matches(label, DETAIL_LABELS["private_ip"]):
            fields["private_ip"] = _item_value(li)
        elif label_matches(label, DETAIL_LABELS["price_policy"]):
            lines = [normalize_text(sub.text()) for sub in li.css("ul li")]
            lines = [line for line in lines if line]
            if lines:
                price_policy = lines

    if not price_policy:
        lines = [normalize_text(sub.text()) for sub in panel.css("ul > li ul li")]
        price_policy = [
            line for line in lines
            if line and not line.lower().endswith(".png")
        ]

    return DetailRecord(
        node_id=str(node_id),
        uptime=fields["uptime"],
        heartbeat=fields["heartbeat"],
        private_ip=fields["private_ip"],
        price_policy_lines=tuple(price_policy),
        charts=_collect_charts(panel, base_url),
        fetched_at=fetched_at or datetime.now(timezone.utc),
    )
