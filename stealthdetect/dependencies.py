"""FastAPI dependency injection providers."""

from typing import Optional

from .config import StealthDetectConfig, get_config
from .intel.indicator_store import IndicatorStore, load_indicator_table
from .utils.logging import get_logger
from .vpn.sources.native import CaptureFacility

_dep_logger = get_logger("dependencies")

_config_instance: StealthDetectConfig | None = None
_capture_facility: Optional[CaptureFacility] = None
_indicator_store = None
_vpn_service = None
_traffic_monitor = None


def get_app_config() -> StealthDetectConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


def set_capture_facility(facility: Optional[CaptureFacility]) -> None:
    """Install the platform interception facility.

    Must be called before the VPN service is first requested; without a
    facility the service always runs on synthetic traffic.
    """
    global _capture_facility
    if _vpn_service is not None:
        _dep_logger.warning("capture_facility_set_after_service_created")
    _capture_facility = facility


def get_indicator_store() -> IndicatorStore:
    """Get the indicator store singleton."""
    global _indicator_store
    if _indicator_store is None:
        _indicator_store = IndicatorStore()
        path = get_app_config().indicator_feed_path
        if path:
            try:
                _indicator_store.replace_table(load_indicator_table(path))
            except (OSError, ValueError) as e:
                _dep_logger.error("indicator_feed_load_failed", path=path, error=str(e))
    return _indicator_store


def get_vpn_service():
    """Get the VPN capture service singleton."""
    global _vpn_service
    if _vpn_service is None:
        from .vpn.service import VpnService
        _vpn_service = VpnService.from_config(get_app_config(), facility=_capture_facility)
    return _vpn_service


def get_traffic_monitor():
    """Get the Traffic Monitor module singleton."""
    global _traffic_monitor
    if _traffic_monitor is None:
        from .modules.traffic_monitor import TrafficMonitor
        config = get_app_config()
        _traffic_monitor = TrafficMonitor(
            service=get_vpn_service(),
            store=get_indicator_store(),
            config={
                "max_events": config.monitor_max_events,
                "max_threats": config.monitor_max_threats,
            },
        )
    return _traffic_monitor
