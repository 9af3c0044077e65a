"""Traffic Monitor: classifies intercepted DNS traffic against indicators.

Subscribes to the capture service's event stream, keeps a bounded window of
recent DNS events and detected threats, and aggregates network statistics
for the dashboard.
"""

import itertools
from collections import deque
from typing import Optional

from ..intel.indicator_store import IndicatorStore
from ..utils.event_bus import Subscription
from ..vpn.events import (
    ConnectionEvent,
    DnsRequestEvent,
    EventName,
    StateChangeEvent,
    VpnState,
)
from ..vpn.service import VpnService
from .base_module import BaseModule


class TrafficMonitor(BaseModule):
    """Flags DNS lookups and connections that belong to known stalkerware.

    A DNS event is a threat when its domain (or a parent domain) is a known
    indicator, or failing that when its source app is a known package.
    """

    def __init__(
        self,
        service: VpnService,
        store: IndicatorStore,
        config: dict | None = None,
    ):
        super().__init__(name="traffic_monitor", config=config)
        self._service = service
        self._store = store
        self._max_events = self.config.get("max_events", 100)
        self._max_threats = self.config.get("max_threats", 50)
        self._subscriptions: list[Subscription] = []
        self._ids = itertools.count(1)

        self._recent_events: deque[dict] = deque(maxlen=self._max_events)
        self._threats: deque[dict] = deque(maxlen=self._max_threats)
        self._stats = self._empty_stats()
        self._vpn_state: str = VpnState.DISCONNECTED.value
        self._last_error: Optional[str] = None

    @staticmethod
    def _empty_stats() -> dict:
        return {
            "dns_queries_total": 0,
            "threats_detected": 0,
            "total_connections": 0,
            "suspicious_connections": 0,
            "bytes_in": 0,
            "bytes_out": 0,
        }

    async def start(self) -> None:
        if self.running:
            return
        self._subscriptions = [
            self._service.subscribe(EventName.DNS_REQUEST, self.handle_dns_request),
            self._service.subscribe(EventName.CONNECTION_EVENT, self.handle_connection),
            self._service.subscribe(EventName.VPN_STATE_CHANGE, self.handle_state_change),
        ]
        self.running = True
        self.health_status = "running"
        self.heartbeat()
        self.logger.info("traffic_monitor_started")

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.remove()
        self._subscriptions = []
        self.running = False
        self.health_status = "stopped"
        self.logger.info("traffic_monitor_stopped")

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "details": {
                "running": self.running,
                "vpn_state": self._vpn_state,
                "subscriptions": sum(1 for s in self._subscriptions if s.active),
                "indicators": self._store.get_stats(),
                "dns_queries_total": self._stats["dns_queries_total"],
                "threats_detected": self._stats["threats_detected"],
            },
        }

    # --- Event handlers ---

    def classify(self, event: DnsRequestEvent) -> Optional[dict]:
        """Return threat info for ``event`` or None when it looks benign."""
        label = self._store.label_for_domain(event.domain)
        if label is not None:
            return {
                "appName": label,
                "category": "stalkerware",
                "matchedOn": "domain",
                "description": f"DNS lookup of known {label} endpoint",
            }
        label = self._store.label_for_package(event.source_app or "")
        if label is not None:
            return {
                "appName": label,
                "category": "stalkerware",
                "matchedOn": "package",
                "description": f"DNS lookup from known {label} package",
            }
        return None

    def handle_dns_request(self, event: DnsRequestEvent) -> None:
        threat_info = self.classify(event)
        record = {
            **event.to_dict(),
            "id": f"dns_{next(self._ids)}",
            "isThreat": threat_info is not None,
        }
        if threat_info is not None:
            record["threatInfo"] = threat_info

        self._recent_events.appendleft(record)
        self._stats["dns_queries_total"] += 1
        if threat_info is not None:
            self._threats.appendleft(record)
            self._stats["threats_detected"] += 1
            self.logger.warning(
                "stalkerware_dns_detected",
                domain=event.domain,
                app_name=threat_info["appName"],
                source_app=event.source_app,
            )

    def handle_connection(self, event: ConnectionEvent) -> None:
        self._stats["total_connections"] += 1
        self._stats["bytes_in"] += event.bytes_in
        self._stats["bytes_out"] += event.bytes_out
        if event.source_app and self._store.is_known_indicator_package(event.source_app):
            self._stats["suspicious_connections"] += 1

    def handle_state_change(self, event: StateChangeEvent) -> None:
        self._vpn_state = event.state.value
        if event.state is VpnState.ERROR:
            self._last_error = event.error_message
        elif event.state is VpnState.CONNECTED:
            self._last_error = None

    # --- Queries ---

    def get_stats(self) -> dict:
        return {
            **self._stats,
            "vpn_state": self._vpn_state,
            "last_error": self._last_error,
        }

    def get_recent_events(self, limit: int = 50) -> list[dict]:
        return list(itertools.islice(self._recent_events, limit))

    def get_threats(self, limit: int = 50) -> list[dict]:
        return list(itertools.islice(self._threats, limit))

    def clear(self) -> None:
        self._recent_events.clear()
        self._threats.clear()
        self._stats = self._empty_stats()
