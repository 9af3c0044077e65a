"""EventBus: in-process fan-out of capture events to subscribers.

One channel per event name. Handlers run in registration order, each one
isolated from the others and from the publisher.
"""

import asyncio
import inspect
import itertools
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable

from .logging import get_logger

logger = get_logger("utils.event_bus")


def _key(event_name) -> str:
    # Enum members (EventName) key by their value
    return str(getattr(event_name, "value", event_name))


@dataclass(frozen=True)
class HandlerFailure:
    """A subscriber that raised while handling a published event."""
    event_name: str
    handler: Any
    error: BaseException

    def describe(self) -> str:
        name = getattr(self.handler, "__qualname__", repr(self.handler))
        return f"{name}: {self.error!r}"


class Subscription:
    """Opaque handle returned by ``EventBus.subscribe``."""

    def __init__(self, bus: "EventBus", event_name: str, token: int, handler: Callable):
        self._bus = bus
        self.event_name = event_name
        self.token = token
        self.handler = handler

    @property
    def active(self) -> bool:
        return self._bus._has(self.event_name, self.token)

    def remove(self) -> None:
        """Deregister the handler. Removing twice is a no-op."""
        self._bus._remove(self.event_name, self.token)

    def __repr__(self) -> str:
        return f"<Subscription {self.event_name}#{self.token}>"


class EventBus:
    """Synchronous publish/subscribe hub.

    Event names are fixed at construction; subscribing to anything else is a
    programming error and raises ``ValueError``. ``publish`` never raises on
    behalf of a handler: failures are logged and returned to the caller as
    ``HandlerFailure`` records.

    Coroutine handlers are scheduled on the running loop; their outcome is
    logged when they finish.
    """

    def __init__(self, event_names: Iterable[str]):
        self._channels: dict[str, dict[int, Callable[[Any], Any]]] = {
            _key(name): {} for name in event_names
        }
        self._tokens = itertools.count(1)
        self._lock = threading.RLock()
        self._pending: set[asyncio.Task] = set()
        self._total_published: int = 0
        self._total_delivered: int = 0
        self._total_failed: int = 0

    @property
    def event_names(self) -> list[str]:
        return list(self._channels)

    def _channel(self, event_name: str) -> dict[int, Callable[[Any], Any]]:
        try:
            return self._channels[_key(event_name)]
        except KeyError:
            raise ValueError(
                f"Unknown event name {event_name!r}; expected one of {sorted(self._channels)}"
            ) from None

    def subscribe(self, event_name: str, handler: Callable[[Any], Any]) -> Subscription:
        """Register ``handler`` for ``event_name`` and return its handle."""
        if not callable(handler):
            raise ValueError(f"handler must be callable, got {handler!r}")
        name = _key(event_name)
        with self._lock:
            channel = self._channel(name)
            token = next(self._tokens)
            channel[token] = handler
        logger.debug("event_bus_subscriber_added", event_name=name, token=token)
        return Subscription(self, name, token, handler)

    def _has(self, event_name: str, token: int) -> bool:
        with self._lock:
            return token in self._channels.get(event_name, {})

    def _remove(self, event_name: str, token: int) -> None:
        with self._lock:
            self._channels.get(event_name, {}).pop(token, None)

    def unsubscribe_all(self) -> None:
        """Remove every handler from every channel."""
        with self._lock:
            removed = sum(len(c) for c in self._channels.values())
            for channel in self._channels.values():
                channel.clear()
        logger.info("event_bus_cleared", removed=removed)

    def subscriber_count(self, event_name: str | None = None) -> int:
        with self._lock:
            if event_name is not None:
                return len(self._channel(event_name))
            return sum(len(c) for c in self._channels.values())

    def publish(self, event_name: str, payload: Any) -> list[HandlerFailure]:
        """Deliver ``payload`` to every current handler of ``event_name``."""
        name = _key(event_name)
        with self._lock:
            # Snapshot so handlers may (un)subscribe while being called
            handlers = list(self._channel(name).values())
            self._total_published += 1

        failures: list[HandlerFailure] = []
        delivered = 0
        for handler in handlers:
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    self._schedule(name, handler, result)
                delivered += 1
            except Exception as e:
                failures.append(HandlerFailure(event_name=name, handler=handler, error=e))
                logger.error(
                    "event_bus_handler_error",
                    event_name=name,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )

        with self._lock:
            self._total_delivered += delivered
            self._total_failed += len(failures)
        if failures:
            logger.warning(
                "event_bus_handler_failures",
                event_name=name,
                failed=len(failures),
                delivered=delivered,
            )
        return failures

    def _schedule(self, event_name: str, handler: Callable, awaitable) -> None:
        try:
            task = asyncio.ensure_future(awaitable)
        except RuntimeError:
            # No running loop (e.g. a platform callback thread)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError("coroutine handlers need a running event loop") from None
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                with self._lock:
                    self._total_failed += 1
                logger.error(
                    "event_bus_async_handler_error",
                    event_name=event_name,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )

        task.add_done_callback(_done)

    def get_stats(self) -> dict:
        """Return bus statistics."""
        with self._lock:
            subscribers = {name: len(c) for name, c in self._channels.items()}
            totals = {
                "total_published": self._total_published,
                "total_delivered": self._total_delivered,
                "total_failed": self._total_failed,
            }
        return {
            **totals,
            "pending_async": len(self._pending),
            "subscriber_count": sum(subscribers.values()),
            "subscribers": subscribers,
        }
