"""Shared test fixtures."""

import asyncio
import os
import random
import tempfile
import time
from typing import Optional

import pytest
import pytest_asyncio

# Keep log files out of the working tree
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="stealthdetect-logs-"))
os.environ.setdefault("PLATFORM", "linux")

from stealthdetect.vpn.events import EventName
from stealthdetect.vpn.selector import CapabilitySelector
from stealthdetect.vpn.service import VpnService
from stealthdetect.vpn.sources.native import CaptureCallbacks, NativeCaptureSource
from stealthdetect.vpn.sources.synthetic import SyntheticTrafficSource


class FakeCaptureFacility:
    """In-memory stand-in for the platform interception service."""

    def __init__(self, permission: bool = True):
        self.permission = permission
        self.callbacks: Optional[CaptureCallbacks] = None
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0
        self.fail_on: set[str] = set()

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise RuntimeError(f"{operation} unavailable")

    def has_permission(self):
        self._maybe_fail("has_permission")
        return self.permission

    def request_permission(self):
        self._maybe_fail("request_permission")
        self.permission = True
        return True

    def start(self, callbacks: CaptureCallbacks):
        self.start_calls += 1
        self._maybe_fail("start")
        self.callbacks = callbacks
        self.running = True

    def stop(self):
        self.stop_calls += 1
        self._maybe_fail("stop")
        self.running = False

    def is_running(self):
        self._maybe_fail("is_running")
        return self.running

    # Helpers that play the platform side

    def emit_dns(self, domain: str, **fields) -> None:
        record = {
            "domain": domain,
            "queryType": "A",
            "sourcePort": 53000,
            "destinationIp": "8.8.8.8",
            **fields,
        }
        self.callbacks.on_dns(record)

    def emit_connection(self, **fields) -> None:
        record = {
            "protocol": "TCP",
            "sourceIp": "10.0.0.2",
            "sourcePort": 41000,
            "destIp": "93.184.216.34",
            "destPort": 443,
            **fields,
        }
        self.callbacks.on_connection(record)

    def emit_state(self, state: str, error_message: Optional[str] = None) -> None:
        self.callbacks.on_state(state, error_message)


class RecordingSink:
    """EventSink that keeps everything it receives."""

    def __init__(self):
        self.dns = []
        self.connections = []
        self.failures = []
        self.first_dns = asyncio.Event()

    def on_dns_request(self, event) -> None:
        self.dns.append(event)
        self.first_dns.set()

    def on_connection(self, event) -> None:
        self.connections.append(event)

    def on_failure(self, message: str) -> None:
        self.failures.append(message)


class EventRecorder:
    """Subscribes to every channel of a service and records (name, event)."""

    def __init__(self, service: VpnService):
        self.events = []
        for name in EventName:
            service.subscribe(name.value, self._handler(name.value))

    def _handler(self, name):
        def record(event):
            self.events.append((name, event))
        return record

    def of(self, name: EventName) -> list:
        return [e for n, e in self.events if n == name.value]

    def states(self) -> list[str]:
        return [e.state.value for e in self.of(EventName.VPN_STATE_CHANGE)]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def fast_synthetic(seed: int = 7) -> SyntheticTrafficSource:
    return SyntheticTrafficSource(min_delay=0.005, max_delay=0.01, rng=random.Random(seed))


@pytest.fixture
def facility():
    return FakeCaptureFacility()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest_asyncio.fixture
async def service():
    """Desktop-style service fed by a fast synthetic generator."""
    selector = CapabilitySelector(platform="linux", synthetic_factory=fast_synthetic)
    svc = VpnService(selector)
    yield svc
    await svc.close()


@pytest_asyncio.fixture
async def slow_service():
    """Service with the production generator timing (1-3 s between events)."""
    selector = CapabilitySelector(
        platform="linux",
        synthetic_factory=lambda: SyntheticTrafficSource(rng=random.Random(3)),
    )
    svc = VpnService(selector)
    yield svc
    await svc.close()


@pytest_asyncio.fixture
async def native_service(facility):
    """Android-style service backed by the fake capture facility."""
    selector = CapabilitySelector(
        platform="android",
        native=NativeCaptureSource(facility, dedup_window=0),
        synthetic_factory=fast_synthetic,
    )
    svc = VpnService(selector)
    yield svc
    await svc.close()


@pytest.fixture
def record_events():
    """Factory: attach an EventRecorder to a service."""
    return EventRecorder


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    return wait_until
