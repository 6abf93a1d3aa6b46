"""Label lookup for user-facing text.

Only an English table ships; other locales resolve to it. Parsing logic
never goes through this module.
"""

from typing import Any, Dict, Mapping, Optional

from fleetview.config import settings

LABELS: Dict[str, Dict[str, Any]] = {
    "en": {
        "table": {
            "loading": "Loading data…",
            "empty": "No nodes match the current filters.",
        },
        "errors": {"loadFailed": "Unable to load server data, please try again later."},
        "country": {"all": "Country (all)", "selected": "Country ({count} selected)"},
        "hover": {
            "labels": {
                "ipv4": "IPv4",
                "sid": "Node SID",
                "status": "Status",
                "privateIp": "Private IP",
                "uptime": "Uptime",
                "heartbeat": "Heartbeat",
                "pricePolicy": "Price policy",
                "cpu": "CPU %",
                "ioWait": "IO wait %",
                "nicError": "NIC errors",
                "network": "Traffic (MB)",
                "congestion": "Congestion",
            },
            "fetching": "Fetching details…",
            "firstLoadHint": "First load takes about 1-2 seconds",
            "fetchTimePrefix": "Fetched at: ",
            "liveSource": "Live data source: Mudfish",
            "fetchFailed": "Unable to fetch details",
            "retryLater": "Please retry later or check your connection",
        },
        "metricImageLabels": {
            "system_load": "System load chart",
            "network": "Traffic chart",
            "congestion": "Congestion chart",
        },
    },
}

FALLBACK_LOCALE = "en"


class Translator:
    """``t(path, **vars)`` lookup over dotted label paths."""

    def __init__(self, locale: Optional[str] = None, labels: Optional[Mapping[str, Any]] = None):
        self.labels = labels or LABELS
        self.locale = FALLBACK_LOCALE
        self.set_language(locale or settings.default_locale)

    def set_language(self, locale: str) -> str:
        """Switch locale; unknown locales resolve to the fallback table."""
        self.locale = locale or FALLBACK_LOCALE
        return self.locale

    def _table(self) -> Mapping[str, Any]:
        return self.labels.get(self.locale) or self.labels[FALLBACK_LOCALE]

    def t(self, path: str, **variables) -> str:
        node: Any = self._table()
        for part in path.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return path
            node = node[part]
        if not isinstance(node, str):
            return path
        return node.format(**variables) if variables else node
