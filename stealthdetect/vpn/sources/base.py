"""Abstract base class for traffic sources."""

from abc import ABC, abstractmethod
from typing import Protocol

from ..events import ConnectionEvent, DnsRequestEvent
from ..session import SourceStatus
from ...utils.logging import get_logger


class EventSink(Protocol):
    """Receiver for everything a traffic source produces."""

    def on_dns_request(self, event: DnsRequestEvent) -> None: ...

    def on_connection(self, event: ConnectionEvent) -> None: ...

    def on_failure(self, message: str) -> None: ...


class TrafficSource(ABC):
    """Base class for components that produce DNS/connection events.

    Events are never returned to the caller; they go to the sink handed to
    ``start``. ``start`` raises ``AlreadyRunning`` when the source is already
    producing; ``stop`` is idempotent.
    """

    is_native: bool = False

    def __init__(self, name: str):
        self.name = name
        self.logger = get_logger(f"source.{name}")

    @property
    @abstractmethod
    def running(self) -> bool:
        ...

    @abstractmethod
    async def start(self, sink: EventSink) -> None:
        """Begin producing events into ``sink``."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop producing events. Nothing reaches the sink after this returns."""
        ...

    @abstractmethod
    def status(self) -> SourceStatus:
        ...

    async def check_permission(self) -> bool:
        return True

    async def request_permission(self) -> bool:
        return True
