"""Capability selection between native capture and the synthetic generator.

The choice is made once, at construction, from the declared platform. When
native capture is selected every operation still tries it first; a failure
is logged and that single call is served by a lazily created synthetic
generator. The next call goes back to native capture.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from ..utils.logging import get_logger
from .errors import AlreadyRunning, AlreadyStopped
from .events import utcnow
from .session import SourceStatus
from .sources.base import EventSink, TrafficSource
from .sources.native import CaptureFacility, NativeCaptureSource
from .sources.synthetic import SyntheticTrafficSource

logger = get_logger("vpn.selector")


@dataclass(frozen=True)
class Failover:
    """Record of a native call that was served by the synthetic generator."""
    operation: str
    error: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class CapabilitySelector:
    """Routes traffic-source operations to native capture or the fallback."""

    def __init__(
        self,
        platform: str,
        native_platform: str = "android",
        native: Optional[NativeCaptureSource] = None,
        synthetic_factory: Callable[[], SyntheticTrafficSource] = SyntheticTrafficSource,
    ):
        self.platform = platform
        self._native = native
        self._synthetic_factory = synthetic_factory
        self._synthetic: Optional[SyntheticTrafficSource] = None
        self._use_native = native is not None and platform == native_platform
        self.last_failover: Optional[Failover] = None
        self.failover_count = 0

        logger.info(
            "capture_backend_selected",
            backend="native" if self._use_native else "synthetic",
            platform=platform,
            native_platform=native_platform,
            facility_available=native is not None,
        )

    @classmethod
    def from_config(
        cls,
        config,
        facility: Optional[CaptureFacility] = None,
        rng=None,
    ) -> "CapabilitySelector":
        native = None
        if facility is not None:
            native = NativeCaptureSource(facility, dedup_window=config.dns_dedup_window)
        return cls(
            platform=config.platform,
            native_platform=config.native_platform,
            native=native,
            synthetic_factory=lambda: SyntheticTrafficSource.from_config(config, rng=rng),
        )

    def is_using_native(self) -> bool:
        """Whether native capture was selected for this process."""
        return self._use_native

    @property
    def synthetic(self) -> SyntheticTrafficSource:
        """The fallback generator, created on first use."""
        if self._synthetic is None:
            self._synthetic = self._synthetic_factory()
            logger.debug("synthetic_fallback_created")
        return self._synthetic

    @property
    def active_source(self) -> Optional[TrafficSource]:
        """The source currently producing events, if any."""
        if self._native is not None and self._native.running:
            return self._native
        if self._synthetic is not None and self._synthetic.running:
            return self._synthetic
        return None

    def is_backed_by_native(self) -> bool:
        """Whether the running session is fed by native capture."""
        source = self.active_source
        return source is not None and source.is_native

    def _record_failover(self, operation: str, error: Exception) -> None:
        self.last_failover = Failover(operation=operation, error=str(error))
        self.failover_count += 1
        logger.error(f"native_{operation}_failed", error=str(error), fallback="synthetic")

    async def start(self, sink: EventSink) -> TrafficSource:
        """Start capture and return the source that actually started."""
        if self._use_native:
            try:
                await self._native.start(sink)
                return self._native
            except (AlreadyRunning, AlreadyStopped):
                raise
            except Exception as e:
                self._record_failover("start", e)
        source = self.synthetic
        await source.start(sink)
        return source

    async def stop(self) -> None:
        if self._use_native:
            try:
                await self._native.stop()
            except Exception as e:
                self._record_failover("stop", e)
        # A fallback generator started by an earlier call must never outlive stop
        if self._synthetic is not None:
            await self._synthetic.stop()

    async def status(self) -> SourceStatus:
        if self._use_native:
            try:
                platform_running = await self._native.platform_running()
                base = self._native.status()
                return SourceStatus(
                    running=base.running,
                    native=True,
                    details={**base.details, "platform_running": platform_running},
                )
            except Exception as e:
                self._record_failover("status", e)
        return self.synthetic.status()

    async def check_permission(self) -> bool:
        if self._use_native:
            try:
                return await self._native.check_permission()
            except Exception as e:
                logger.error("native_check_permission_failed", error=str(e))
                return False
        return await self.synthetic.check_permission()

    async def request_permission(self) -> bool:
        if self._use_native:
            try:
                return await self._native.request_permission()
            except Exception as e:
                logger.error("native_request_permission_failed", error=str(e))
                return False
        return await self.synthetic.request_permission()

    def diagnostics(self) -> dict:
        source = self.active_source
        return {
            "platform": self.platform,
            "using_native": self._use_native,
            "backed_by_native": self.is_backed_by_native(),
            "active_source": source.name if source else None,
            "failover_count": self.failover_count,
            "last_failover": self.last_failover.to_dict() if self.last_failover else None,
        }
