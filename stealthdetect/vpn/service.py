"""VPN capture service: session controller for DNS/connection interception.

Owns the session state machine, the permission handshake and the counters,
drives the traffic source picked by the capability selector, and forwards
every captured event to the event bus.

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED   (stop_vpn)
                                     |
                                     +-----> ERROR            (source failure)
    ERROR -> CONNECTING                                        (start_vpn retry)
"""

import threading
from typing import Any, Callable, Optional

from ..utils.event_bus import EventBus, Subscription
from ..utils.logging import get_logger
from .errors import AlreadyRunning, AlreadyStopped, PermissionDenied
from .events import (
    ConnectionEvent,
    DnsRequestEvent,
    EventName,
    StateChangeEvent,
    VpnState,
    utcnow,
)
from .selector import CapabilitySelector
from .session import (
    PermissionResult,
    Session,
    SessionState,
    StartVpnResult,
    StopVpnResult,
    VpnStatus,
)

logger = get_logger("vpn.service")


class VpnService:
    """Session controller exposed to the presentation layer.

    All public operations return result values; they never raise for
    platform or handler failures.
    """

    def __init__(self, selector: CapabilitySelector, bus: EventBus | None = None):
        self._selector = selector
        self._bus = bus or EventBus(name.value for name in EventName)
        self._session = Session()
        # Guards session state + counters; platform callbacks may arrive on other threads
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config, facility=None, rng=None) -> "VpnService":
        return cls(CapabilitySelector.from_config(config, facility=facility, rng=rng))

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._session.state

    def is_using_native(self) -> bool:
        return self._selector.is_using_native()

    # --- Public operations ---

    async def start_vpn(self) -> StartVpnResult:
        """Start capture. Idempotent while connected."""
        with self._lock:
            if self._session.state is SessionState.CONNECTED:
                return StartVpnResult(success=True, requires_permission=False)

        try:
            await self._ensure_permission()
        except PermissionDenied as e:
            logger.warning("vpn_start_permission_required")
            return StartVpnResult(
                success=False,
                requires_permission=True,
                error_message=str(e),
            )

        if self.state is SessionState.ERROR:
            # A failed source may still hold platform resources
            await self._release_source()

        with self._lock:
            if self._session.state is SessionState.CONNECTED:
                return StartVpnResult(success=True, requires_permission=False)
            session = self._session
            session.transition(SessionState.CONNECTING)
            session.reset_counters()
            session.start_time = started_at = utcnow()
            session.last_error = None
            session.transition(SessionState.CONNECTED)
            self._publish_state(VpnState.CONNECTED)

        try:
            source = await self._selector.start(self)
        except AlreadyRunning:
            source = self._selector.active_source
        except AlreadyStopped:
            source = None
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error("vpn_start_failed", error=message)
            self._fail(message)
            return StartVpnResult(success=False, requires_permission=False, error_message=message)

        with self._lock:
            state = self._session.state
            superseded = (
                state is SessionState.CONNECTED and self._session.start_time is not started_at
            )
        if state is SessionState.DISCONNECTED or superseded:
            # stop_vpn ran while the source was starting
            if not superseded:
                await self._release_source()
            logger.warning("vpn_stopped_while_starting")
            return StartVpnResult(
                success=False,
                requires_permission=False,
                error_message="VPN stopped while starting",
            )

        logger.info(
            "vpn_started",
            source=source.name if source else None,
            native=self._selector.is_backed_by_native(),
        )
        return StartVpnResult(success=True, requires_permission=False)

    async def stop_vpn(self) -> StopVpnResult:
        """Stop capture. Succeeds immediately when not connected."""
        try:
            snapshot = await self._leave_connected()
        except AlreadyStopped as e:
            logger.debug("vpn_stop_noop", reason=str(e))
            return StopVpnResult(success=True)

        error_message = None
        try:
            await self._selector.stop()
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            logger.error("vpn_stop_failed", error=error_message)

        with self._lock:
            self._session.start_time = None
            self._publish_state(VpnState.DISCONNECTED)

        logger.info(
            "vpn_stopped",
            packets_processed=snapshot.packets_processed,
            dns_queries_intercepted=snapshot.dns_queries_intercepted,
        )
        if error_message is not None:
            return StopVpnResult(success=False, error_message=error_message)
        return StopVpnResult(success=True)

    async def get_vpn_status(self) -> VpnStatus:
        with self._lock:
            return self._session.snapshot()

    async def check_permission(self) -> PermissionResult:
        return PermissionResult(granted=await self._selector.check_permission())

    async def request_permission(self) -> PermissionResult:
        """May open the platform consent UI."""
        granted = await self._selector.request_permission()
        logger.info("vpn_permission_requested", granted=granted)
        return PermissionResult(granted=granted)

    def subscribe(self, event_name: str, handler: Callable[[Any], Any]) -> Subscription:
        return self._bus.subscribe(event_name, handler)

    def unsubscribe_all(self) -> None:
        self._bus.unsubscribe_all()

    async def close(self) -> None:
        """Stop the session and drop every listener."""
        await self.stop_vpn()
        self._bus.unsubscribe_all()

    async def diagnostics(self) -> dict:
        with self._lock:
            status = self._session.snapshot()
            last_error = self._session.last_error
        source_status = await self._selector.status()
        return {
            "state": status.state.value,
            "last_error": last_error,
            "status": status.to_dict(),
            "selector": self._selector.diagnostics(),
            "source": {
                "running": source_status.running,
                "native": source_status.native,
                "details": source_status.details,
            },
            "bus": self._bus.get_stats(),
        }

    # --- EventSink (called by traffic sources) ---

    def on_dns_request(self, event: DnsRequestEvent) -> None:
        with self._lock:
            if self._session.state is not SessionState.CONNECTED:
                return
            self._session.packets_processed += 1
            self._session.dns_queries_intercepted += 1
            self._bus.publish(EventName.DNS_REQUEST.value, event)

    def on_connection(self, event: ConnectionEvent) -> None:
        with self._lock:
            if self._session.state is not SessionState.CONNECTED:
                return
            self._session.packets_processed += 1
            self._bus.publish(EventName.CONNECTION_EVENT.value, event)

    def on_failure(self, message: str) -> None:
        logger.error("traffic_source_failed", error=message)
        self._fail(message)

    # --- Internals ---

    def _fail(self, message: str) -> None:
        with self._lock:
            if self._session.state is not SessionState.CONNECTED:
                return
            self._session.transition(SessionState.ERROR)
            self._session.last_error = message
            self._publish_state(VpnState.ERROR, error_message=message)

    async def _ensure_permission(self) -> None:
        if not await self._selector.check_permission():
            raise PermissionDenied("VPN permission not granted")

    async def _leave_connected(self) -> VpnStatus:
        """Move out of CONNECTED and return the final counters.

        Raises ``AlreadyStopped`` when there is no live session. A failed
        session is cleaned up to DISCONNECTED first.
        """
        with self._lock:
            state = self._session.state
            if state is SessionState.CONNECTED:
                # Leave CONNECTED first so nothing in flight is forwarded afterwards
                snapshot = self._session.snapshot()
                self._session.transition(SessionState.DISCONNECTED)
                return snapshot

        if state is SessionState.ERROR:
            await self._release_source()
            with self._lock:
                if self._session.state is SessionState.ERROR:
                    self._session.transition(SessionState.DISCONNECTED)
                    self._session.start_time = None
        raise AlreadyStopped(f"session is {state.value}")

    async def _release_source(self) -> None:
        try:
            await self._selector.stop()
        except Exception as e:
            logger.warning("vpn_source_release_failed", error=str(e))

    def _publish_state(self, state: VpnState, error_message: Optional[str] = None) -> None:
        self._bus.publish(
            EventName.VPN_STATE_CHANGE.value,
            StateChangeEvent(state=state, error_message=error_message),
        )
