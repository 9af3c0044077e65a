"""Synthetic traffic generator for environments without native capture.

Produces structurally valid DNS and connection events on a randomized
schedule, mixing a benign pool with known stalkerware endpoints.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Optional

from ..errors import AlreadyRunning
from ..events import ConnectionEvent, DnsRequestEvent, Protocol, QueryType
from ..session import SourceStatus
from .base import EventSink, TrafficSource

STALKERWARE_DOMAINS = [
    "api.mspy.com",
    "cp.mspyonline.com",
    "api.flexispy.com",
    "my.hoverwatch.com",
    "dashboard.spyic.com",
    "api.thetruthspy.com",
    "cocospy.com",
    "app.spyera.com",
    "api.ikeymonitor.com",
    "clevguard.net",
]

NORMAL_DOMAINS = [
    "www.google.com",
    "api.github.com",
    "cdn.cloudflare.com",
    "www.apple.com",
    "update.microsoft.com",
    "api.stripe.com",
    "fonts.googleapis.com",
    "www.facebook.com",
    "api.twitter.com",
    "www.amazon.com",
]

NORMAL_APPS = [
    "com.android.chrome",
    "com.google.android.apps.maps",
    "com.whatsapp",
    "com.instagram.android",
    "com.spotify.music",
]

STALKERWARE_APPS = [
    "com.hidden.tracker",
    "com.system.monitor",
    "com.phone.guardian",
    "com.family.locator.pro",
]

SYNTHETIC_QUERY_TYPES = (QueryType.A, QueryType.AAAA, QueryType.CNAME)
CONNECTION_PORTS = (80, 443, 8080)


@dataclass(frozen=True)
class GeneratedTraffic:
    """One tick of generator output."""
    dns: DnsRequestEvent
    connection: Optional[ConnectionEvent]
    from_indicator_pool: bool


class SyntheticTrafficSource(TrafficSource):
    """In-process simulated event producer.

    Runs as an asyncio task: sleep a uniform delay in [min_delay, max_delay),
    emit one tick, repeat. ``stop`` cancels the task before returning, so a
    pending emission can never fire afterwards.
    """

    is_native = False

    def __init__(
        self,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
        indicator_ratio: float = 0.15,
        connection_ratio: float = 0.3,
        tcp_ratio: float = 0.8,
        dns_server: str = "8.8.8.8",
        rng: random.Random | None = None,
    ):
        super().__init__(name="synthetic")
        if min_delay > max_delay:
            raise ValueError("min_delay must not exceed max_delay")
        self._min_delay = min_delay
        self._max_delay = max_delay
        self._indicator_ratio = indicator_ratio
        self._connection_ratio = connection_ratio
        self._tcp_ratio = tcp_ratio
        self._dns_server = dns_server
        self._rng = rng or random.Random()
        self._task: asyncio.Task | None = None
        self._sink: EventSink | None = None
        self._ticks = 0

    @classmethod
    def from_config(cls, config, rng: random.Random | None = None) -> "SyntheticTrafficSource":
        return cls(
            min_delay=config.synthetic_min_delay,
            max_delay=config.synthetic_max_delay,
            indicator_ratio=config.synthetic_indicator_ratio,
            connection_ratio=config.synthetic_connection_ratio,
            tcp_ratio=config.synthetic_tcp_ratio,
            dns_server=config.dns_server,
            rng=rng,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, sink: EventSink) -> None:
        if self.running:
            raise AlreadyRunning("synthetic generator already running")
        self._sink = sink
        self._task = asyncio.create_task(self._run(), name="synthetic-traffic")
        self.logger.info(
            "synthetic_generator_started",
            min_delay=self._min_delay,
            max_delay=self._max_delay,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        self._sink = None
        if task is None:
            return
        # cancel() lands before any further tick can run
        task.cancel()
        if task is asyncio.current_task():
            # stopped from a subscriber running inside the tick
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("synthetic_generator_stopped", ticks=self._ticks)

    def status(self) -> SourceStatus:
        return SourceStatus(
            running=self.running,
            native=False,
            details={"ticks": self._ticks},
        )

    def next_delay(self) -> float:
        """Seconds until the next tick, uniform in [min_delay, max_delay)."""
        if self._max_delay == self._min_delay:
            return self._min_delay
        delay = self._rng.uniform(self._min_delay, self._max_delay)
        # uniform() may return the upper bound
        return min(delay, self._max_delay - 1e-9)

    def generate(self) -> GeneratedTraffic:
        """Draw one DNS event and, sometimes, its follow-up connection."""
        rng = self._rng
        from_indicators = rng.random() < self._indicator_ratio
        domains = STALKERWARE_DOMAINS if from_indicators else NORMAL_DOMAINS
        apps = STALKERWARE_APPS if from_indicators else NORMAL_APPS

        domain = rng.choice(domains)
        source_app = rng.choice(apps)

        dns = DnsRequestEvent(
            domain=domain,
            query_type=rng.choice(SYNTHETIC_QUERY_TYPES),
            source_app=source_app,
            source_port=10000 + rng.randrange(50000),
            destination_ip=self._dns_server,
            blocked=False,
        )

        connection = None
        if rng.random() < self._connection_ratio:
            connection = ConnectionEvent(
                protocol=Protocol.TCP if rng.random() < self._tcp_ratio else Protocol.UDP,
                source_ip=f"192.168.1.{rng.randrange(255)}",
                source_port=10000 + rng.randrange(50000),
                dest_ip=".".join(str(rng.randrange(255)) for _ in range(4)),
                dest_port=rng.choice(CONNECTION_PORTS),
                source_app=source_app,
                bytes_in=rng.randrange(10000),
                bytes_out=rng.randrange(5000),
            )

        return GeneratedTraffic(dns=dns, connection=connection, from_indicator_pool=from_indicators)

    def _emit(self, traffic: GeneratedTraffic) -> None:
        sink = self._sink
        if sink is None:
            return
        self._ticks += 1
        sink.on_dns_request(traffic.dns)
        if traffic.connection is not None:
            sink.on_connection(traffic.connection)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.next_delay())
            try:
                self._emit(self.generate())
            except Exception as e:
                self.logger.error("synthetic_tick_failed", error=str(e))
