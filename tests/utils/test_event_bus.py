"""Tests for the in-process event bus."""

import asyncio
import threading

import pytest

from stealthdetect.utils.event_bus import EventBus
from stealthdetect.vpn.events import EventName


class TestEventBus:
    def setup_method(self):
        self.bus = EventBus(name.value for name in EventName)

    def test_delivery_in_registration_order(self):
        calls = []
        self.bus.subscribe("dnsRequest", lambda p: calls.append(("first", p)))
        self.bus.subscribe("dnsRequest", lambda p: calls.append(("second", p)))

        failures = self.bus.publish("dnsRequest", "payload")

        assert failures == []
        assert calls == [("first", "payload"), ("second", "payload")]

    def test_channels_are_separate(self):
        calls = []
        self.bus.subscribe("dnsRequest", calls.append)

        self.bus.publish("connectionEvent", "conn")

        assert calls == []

    def test_failing_handler_isolated(self):
        """A raising handler is reported, later handlers still run."""
        calls = []

        def broken(payload):
            raise RuntimeError("boom")

        self.bus.subscribe("dnsRequest", broken)
        self.bus.subscribe("dnsRequest", calls.append)

        failures = self.bus.publish("dnsRequest", 1)

        assert calls == [1]
        assert len(failures) == 1
        assert failures[0].event_name == "dnsRequest"
        assert isinstance(failures[0].error, RuntimeError)
        assert "boom" in failures[0].describe()

    def test_unknown_event_name(self):
        with pytest.raises(ValueError):
            self.bus.subscribe("dnsResponse", lambda p: None)
        with pytest.raises(ValueError):
            self.bus.publish("dnsResponse", None)

    def test_handler_must_be_callable(self):
        with pytest.raises(ValueError):
            self.bus.subscribe("dnsRequest", "not callable")

    def test_enum_names_accepted(self):
        calls = []
        self.bus.subscribe(EventName.DNS_REQUEST, calls.append)
        self.bus.publish(EventName.DNS_REQUEST, "x")
        assert calls == ["x"]

    def test_subscription_remove(self):
        calls = []
        sub = self.bus.subscribe("vpnStateChange", calls.append)
        assert sub.active is True

        sub.remove()
        sub.remove()
        self.bus.publish("vpnStateChange", "x")

        assert sub.active is False
        assert calls == []

    def test_unsubscribe_all(self):
        for name in EventName:
            self.bus.subscribe(name.value, lambda p: None)
        assert self.bus.subscriber_count() == 3

        self.bus.unsubscribe_all()

        assert self.bus.subscriber_count() == 0
        assert self.bus.subscriber_count("dnsRequest") == 0

    def test_unsubscribe_during_publish(self):
        """Handlers see the subscriber list as it was when publishing began."""
        calls = []
        subs = []

        def first(payload):
            calls.append("first")
            subs[1].remove()

        subs.append(self.bus.subscribe("dnsRequest", first))
        subs.append(self.bus.subscribe("dnsRequest", lambda p: calls.append("second")))

        self.bus.publish("dnsRequest", None)
        self.bus.publish("dnsRequest", None)

        assert calls == ["first", "second", "first"]

    def test_stats(self):
        self.bus.subscribe("dnsRequest", lambda p: None)
        self.bus.subscribe("dnsRequest", lambda p: 1 / 0)

        self.bus.publish("dnsRequest", None)
        stats = self.bus.get_stats()

        assert stats["total_published"] == 1
        assert stats["total_delivered"] == 1
        assert stats["total_failed"] == 1
        assert stats["subscribers"]["dnsRequest"] == 2

    @pytest.mark.asyncio
    async def test_coroutine_handler_scheduled(self):
        received = asyncio.Event()

        async def handler(payload):
            received.set()

        self.bus.subscribe("dnsRequest", handler)
        self.bus.publish("dnsRequest", None)

        await asyncio.wait_for(received.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_coroutine_handler_failure_counted(self):
        async def handler(payload):
            raise RuntimeError("async boom")

        self.bus.subscribe("dnsRequest", handler)
        failures = self.bus.publish("dnsRequest", None)
        for _ in range(5):
            await asyncio.sleep(0)

        assert failures == []
        assert self.bus.get_stats()["total_failed"] == 1
        assert self.bus.get_stats()["pending_async"] == 0

    def test_totals_exact_under_concurrent_publish(self):
        """Publishing from several threads loses no delivered or failed counts."""
        threads, per_thread = 8, 200
        received = []

        def broken(payload):
            raise RuntimeError("subscriber bug")

        self.bus.subscribe("dnsRequest", received.append)
        self.bus.subscribe("dnsRequest", broken)

        def publish_many():
            for i in range(per_thread):
                self.bus.publish("dnsRequest", i)

        workers = [threading.Thread(target=publish_many) for _ in range(threads)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        stats = self.bus.get_stats()
        assert stats["total_published"] == threads * per_thread
        assert stats["total_delivered"] == threads * per_thread
        assert stats["total_failed"] == threads * per_thread
        assert len(received) == threads * per_thread
