"""Indicator store: read-only lookup of known stalkerware endpoints.

Domains, URL schemes and package identifiers each map to the product label
of the stalkerware family they belong to. Lookups are plain dictionary
reads against an immutable table; a new table is swapped in whole.
"""

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ..utils.logging import get_logger

logger = get_logger("intel.indicator_store")


def normalize_domain(domain: str) -> str:
    """Lowercase, strip whitespace, a trailing root dot and any port."""
    value = (domain or "").strip().lower().rstrip(".")
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0]
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value


def normalize_scheme(scheme: str) -> str:
    """``mspy://`` and ``MSPY:`` both become ``mspy``."""
    value = (scheme or "").strip().lower()
    if value.endswith("://"):
        value = value[:-3]
    return value.rstrip(":/")


def _freeze(entries: Mapping[str, str], normalize) -> Mapping[str, str]:
    frozen = {}
    for key, label in entries.items():
        norm = normalize(key)
        if norm:
            frozen[norm] = label
    return MappingProxyType(frozen)


@dataclass(frozen=True)
class IndicatorTable:
    """Immutable indicator set. Keys are normalized on construction."""
    domains: Mapping[str, str] = field(default_factory=dict)
    schemes: Mapping[str, str] = field(default_factory=dict)
    packages: Mapping[str, str] = field(default_factory=dict)
    version: str = "builtin"

    def __post_init__(self):
        object.__setattr__(self, "domains", _freeze(self.domains, normalize_domain))
        object.__setattr__(self, "schemes", _freeze(self.schemes, normalize_scheme))
        object.__setattr__(self, "packages", _freeze(self.packages, lambda p: p.strip()))

    def counts(self) -> dict:
        return {
            "domains": len(self.domains),
            "schemes": len(self.schemes),
            "packages": len(self.packages),
        }


DEFAULT_TABLE = IndicatorTable(
    domains={
        "api.mspy.com": "mSpy",
        "cp.mspyonline.com": "mSpy",
        "api.flexispy.com": "FlexiSPY",
        "my.hoverwatch.com": "Hoverwatch",
        "dashboard.spyic.com": "Spyic",
        "api.thetruthspy.com": "TheTruthSpy",
        "cocospy.com": "Cocospy",
        "app.spyera.com": "Spyera",
        "api.ikeymonitor.com": "iKeyMonitor",
        "clevguard.net": "ClevGuard",
    },
    schemes={
        "mspy://": "mSpy",
        "flexispy://": "FlexiSPY",
        "hoverwatch://": "Hoverwatch",
        "thetruthspy://": "TheTruthSpy",
        "spyera://": "Spyera",
    },
    packages={
        "com.mspy.android": "mSpy",
        "com.flexispy": "FlexiSPY",
        "com.hoverwatch.app": "Hoverwatch",
        "com.thetruthspy.app": "TheTruthSpy",
        "com.spyera.android": "Spyera",
        "com.hidden.tracker": "Hidden Tracker",
        "com.system.monitor": "System Monitor",
        "com.phone.guardian": "Phone Guardian",
        "com.family.locator.pro": "Family Locator Pro",
    },
)


class IndicatorStore:
    """Membership tests against the current indicator table.

    Domain matching is case-insensitive and also matches subdomains of a
    listed domain (``x.api.mspy.com`` hits ``api.mspy.com``). Safe to call
    from any thread.
    """

    def __init__(self, table: IndicatorTable = DEFAULT_TABLE):
        self._table = table
        self._swap_lock = threading.Lock()

    @property
    def table(self) -> IndicatorTable:
        return self._table

    def replace_table(self, table: IndicatorTable) -> None:
        """Swap in a new table. Readers see either the old or the new one."""
        with self._swap_lock:
            previous = self._table
            self._table = table
        logger.info(
            "indicator_table_replaced",
            previous_version=previous.version,
            version=table.version,
            **table.counts(),
        )

    def label_for_domain(self, domain: str) -> Optional[str]:
        """Return the product label for ``domain`` or one of its parents."""
        table = self._table
        candidate = normalize_domain(domain)
        while candidate:
            label = table.domains.get(candidate)
            if label is not None:
                return label
            if "." not in candidate:
                break
            candidate = candidate.split(".", 1)[1]
        return None

    def label_for_scheme(self, scheme: str) -> Optional[str]:
        return self._table.schemes.get(normalize_scheme(scheme))

    def label_for_package(self, package: str) -> Optional[str]:
        if not package:
            return None
        return self._table.packages.get(package.strip())

    def is_known_indicator_domain(self, domain: str) -> bool:
        return self.label_for_domain(domain) is not None

    def is_known_indicator_scheme(self, scheme: str) -> bool:
        return self.label_for_scheme(scheme) is not None

    def is_known_indicator_package(self, package: str) -> bool:
        return self.label_for_package(package) is not None

    def get_stats(self) -> dict:
        table = self._table
        return {"version": table.version, **table.counts()}


def _strings(values) -> Iterable[str]:
    if not isinstance(values, list):
        return []
    return [v for v in values if isinstance(v, str) and v.strip()]


def _section(parent: dict, key: str) -> dict:
    """Nested feed object; anything other than a mapping reads as empty."""
    value = parent.get(key)
    return value if isinstance(value, dict) else {}


def table_from_feed(data: dict) -> IndicatorTable:
    """Build a table from an ``All_IOCs.json``-shaped document.

    Each entry of ``apps`` contributes its ``websites``,
    ``network.c2.domains``, ``platforms.android.packages`` and
    ``platforms.ios.bundles`` under the app's ``name``.
    """
    apps = data.get("apps") if isinstance(data, dict) else None
    if not isinstance(apps, list):
        raise ValueError("Invalid indicator feed: 'apps' must be a list")

    domains: dict[str, str] = {}
    packages: dict[str, str] = {}
    for app in apps:
        if not isinstance(app, dict):
            continue
        label = str(app.get("name") or "unknown")
        network = _section(app, "network")
        c2 = _section(network, "c2")
        platforms = _section(app, "platforms")
        android = _section(platforms, "android")
        ios = _section(platforms, "ios")

        for domain in [*_strings(app.get("websites")), *_strings(c2.get("domains"))]:
            domains.setdefault(domain, label)
        for package in [*_strings(android.get("packages")), *_strings(ios.get("bundles"))]:
            packages.setdefault(package, label)

    return IndicatorTable(
        domains=domains,
        # Feeds carry no URL schemes; keep the app-scanner list
        schemes=DEFAULT_TABLE.schemes,
        packages=packages,
        version=str(data.get("generated_at") or "feed"),
    )


def load_indicator_table(path: str | Path) -> IndicatorTable:
    """Read an indicator feed from disk."""
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    table = table_from_feed(data)
    logger.info("indicator_feed_loaded", path=str(path), version=table.version, **table.counts())
    return table
