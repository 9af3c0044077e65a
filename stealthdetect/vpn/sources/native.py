"""Native capture adapter.

Delegates interception to a platform facility (the OS-level VPN/packet
service) and translates its callbacks into capture events. Any facility
error surfaces as ``PlatformCaptureFailure`` so the selector can fail over.
"""

import inspect
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

from ..errors import AlreadyRunning, AlreadyStopped, PlatformCaptureFailure
from ..events import (
    ConnectionEvent,
    DnsRequestEvent,
    QueryType,
    query_type_from_code,
    utcnow,
)
from ..session import SourceStatus
from .base import EventSink, TrafficSource


@dataclass(frozen=True)
class CaptureCallbacks:
    """Callbacks handed to the platform facility. May be invoked from any thread."""
    on_dns: Callable[[dict], None]
    on_connection: Callable[[dict], None]
    on_state: Callable[[str, Optional[str]], None]


class CaptureFacility(Protocol):
    """Platform interception service (VpnService bridge or equivalent).

    Methods may be plain or coroutine functions.
    """

    def has_permission(self) -> Any: ...

    def request_permission(self) -> Any: ...

    def start(self, callbacks: CaptureCallbacks) -> Any: ...

    def stop(self) -> Any: ...

    def is_running(self) -> Any: ...


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


def parse_timestamp(value) -> datetime:
    """Accept ISO-8601 strings, epoch milliseconds or datetimes."""
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_query_type(value) -> QueryType:
    if isinstance(value, int):
        return query_type_from_code(value)
    try:
        return QueryType(str(value).upper())
    except ValueError:
        return QueryType.OTHER


def dns_event_from_platform(record: dict) -> DnsRequestEvent:
    """Build a DnsRequestEvent from a platform record (camelCase wire keys)."""
    return DnsRequestEvent(
        timestamp=parse_timestamp(record.get("timestamp")),
        domain=str(record["domain"]).rstrip(".").lower(),
        query_type=parse_query_type(record.get("queryType", "OTHER")),
        source_app=record.get("sourceApp"),
        source_port=int(record.get("sourcePort", 0)),
        destination_ip=str(record.get("destinationIp", "")),
        blocked=bool(record.get("blocked", False)),
    )


def connection_event_from_platform(record: dict) -> ConnectionEvent:
    return ConnectionEvent(
        timestamp=parse_timestamp(record.get("timestamp")),
        protocol=str(record.get("protocol", "TCP")).upper(),
        source_ip=str(record.get("sourceIp", "")),
        source_port=int(record.get("sourcePort", 0)),
        dest_ip=str(record.get("destIp", "")),
        dest_port=int(record.get("destPort", 0)),
        source_app=record.get("sourceApp"),
        bytes_in=int(record.get("bytesIn", 0)),
        bytes_out=int(record.get("bytesOut", 0)),
    )


class NativeCaptureSource(TrafficSource):
    """Traffic source backed by the platform interception facility."""

    is_native = True

    def __init__(self, facility: CaptureFacility, dedup_window: float = 5.0):
        super().__init__(name="native")
        self._facility = facility
        self._dedup_window = dedup_window
        self._sink: EventSink | None = None
        self._recent_domains: dict[str, float] = {}
        self._lock = threading.Lock()
        self._suppressed = 0
        self._dropped_records = 0

    @property
    def running(self) -> bool:
        return self._sink is not None

    async def _invoke(self, operation: str, fn, *args):
        try:
            return await _maybe_await(fn(*args))
        except PlatformCaptureFailure:
            raise
        except Exception as e:
            raise PlatformCaptureFailure(operation, e) from e

    async def check_permission(self) -> bool:
        return bool(await self._invoke("check_permission", self._facility.has_permission))

    async def request_permission(self) -> bool:
        return bool(await self._invoke("request_permission", self._facility.request_permission))

    async def start(self, sink: EventSink) -> None:
        if self.running:
            raise AlreadyRunning("native capture already running")
        callbacks = CaptureCallbacks(
            on_dns=self._on_dns,
            on_connection=self._on_connection,
            on_state=self._on_state,
        )
        # Attach before starting so early platform callbacks are not lost
        self._sink = sink
        self._recent_domains.clear()
        try:
            await self._invoke("start", self._facility.start, callbacks)
        except PlatformCaptureFailure:
            if self._sink is sink:
                self._sink = None
            raise
        if self._sink is not sink:
            # stop() detached us while the platform was still starting
            self.logger.warning("native_capture_stopped_while_starting")
            await self._invoke("stop", self._facility.stop)
            raise AlreadyStopped("native capture stopped while starting")
        self.logger.info("native_capture_started")

    async def stop(self) -> None:
        # Detach first: late platform callbacks are dropped
        was_running = self._sink is not None
        self._sink = None
        await self._invoke("stop", self._facility.stop)
        if was_running:
            self.logger.info(
                "native_capture_stopped",
                suppressed_duplicates=self._suppressed,
            )

    def status(self) -> SourceStatus:
        return SourceStatus(
            running=self.running,
            native=True,
            details={
                "suppressed_duplicates": self._suppressed,
                "dropped_records": self._dropped_records,
            },
        )

    async def platform_running(self) -> bool:
        return bool(await self._invoke("status", self._facility.is_running))

    def _is_duplicate(self, domain: str) -> bool:
        if self._dedup_window <= 0:
            return False
        now = time.monotonic()
        with self._lock:
            last = self._recent_domains.get(domain)
            if last is not None and now - last < self._dedup_window:
                return True
            self._recent_domains[domain] = now
            if len(self._recent_domains) > 4096:
                cutoff = now - self._dedup_window
                self._recent_domains = {
                    d: ts for d, ts in self._recent_domains.items() if ts >= cutoff
                }
        return False

    def _on_dns(self, record: dict) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            event = dns_event_from_platform(record)
        except (KeyError, TypeError, ValueError) as e:
            self._dropped_records += 1
            self.logger.warning("native_dns_record_invalid", error=str(e))
            return
        if self._is_duplicate(event.domain):
            self._suppressed += 1
            return
        sink.on_dns_request(event)

    def _on_connection(self, record: dict) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            event = connection_event_from_platform(record)
        except (KeyError, TypeError, ValueError) as e:
            self._dropped_records += 1
            self.logger.warning("native_connection_record_invalid", error=str(e))
            return
        sink.on_connection(event)

    def _on_state(self, state: str, error_message: Optional[str] = None) -> None:
        sink = self._sink
        if sink is None:
            return
        if state == "error":
            sink.on_failure(error_message or "native capture reported an error")
        elif state == "disconnected":
            sink.on_failure(error_message or "native capture stopped unexpectedly")
