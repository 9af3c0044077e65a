"""Tests for the native capture adapter."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from stealthdetect.vpn.errors import AlreadyRunning, AlreadyStopped, PlatformCaptureFailure
from stealthdetect.vpn.events import Protocol, QueryType
from stealthdetect.vpn.sources.native import (
    NativeCaptureSource,
    connection_event_from_platform,
    dns_event_from_platform,
    parse_query_type,
    parse_timestamp,
)


class TestRecordParsing:
    def test_dns_record(self):
        event = dns_event_from_platform({
            "timestamp": "2024-05-01T10:00:00Z",
            "domain": "API.mSpy.com.",
            "queryType": "AAAA",
            "sourceApp": "com.mspy.android",
            "sourcePort": 40123,
            "destinationIp": "8.8.8.8",
            "blocked": True,
        })

        assert event.domain == "api.mspy.com"
        assert event.query_type is QueryType.AAAA
        assert event.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
        assert event.blocked is True

    def test_dns_record_missing_domain(self):
        with pytest.raises(KeyError):
            dns_event_from_platform({"queryType": "A"})

    def test_connection_record(self):
        event = connection_event_from_platform({
            "protocol": "udp",
            "sourceIp": "10.0.0.2",
            "sourcePort": 5000,
            "destIp": "1.1.1.1",
            "destPort": 53,
            "bytesIn": 120,
            "bytesOut": 60,
        })

        assert event.protocol is Protocol.UDP
        assert event.bytes_in == 120
        assert event.source_app is None

    def test_parse_timestamp_epoch_millis(self):
        ts = parse_timestamp(1714557600000)
        assert ts == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_query_type(self):
        assert parse_query_type(28) is QueryType.AAAA
        assert parse_query_type(15) is QueryType.MX
        assert parse_query_type(255) is QueryType.OTHER
        assert parse_query_type("txt") is QueryType.TXT
        assert parse_query_type("SRV") is QueryType.OTHER


class TestNativeCaptureSource:
    @pytest.mark.asyncio
    async def test_callbacks_reach_sink(self, facility, recording_sink):
        source = NativeCaptureSource(facility, dedup_window=0)
        await source.start(recording_sink)

        facility.emit_dns("example.com")
        facility.emit_connection(bytesIn=5)

        assert [e.domain for e in recording_sink.dns] == ["example.com"]
        assert recording_sink.connections[0].bytes_in == 5
        assert source.running is True

    @pytest.mark.asyncio
    async def test_duplicate_domains_suppressed(self, facility, recording_sink):
        """Repeat lookups of one domain inside the window are dropped."""
        source = NativeCaptureSource(facility, dedup_window=5.0)
        await source.start(recording_sink)

        facility.emit_dns("api.mspy.com")
        facility.emit_dns("API.MSPY.COM.")
        facility.emit_dns("www.google.com")

        assert [e.domain for e in recording_sink.dns] == ["api.mspy.com", "www.google.com"]
        assert source.status().details["suppressed_duplicates"] == 1

    @pytest.mark.asyncio
    async def test_invalid_records_dropped(self, facility, recording_sink):
        source = NativeCaptureSource(facility, dedup_window=0)
        await source.start(recording_sink)

        facility.callbacks.on_dns({"queryType": "A"})
        facility.emit_connection(destPort=70000)

        assert recording_sink.dns == []
        assert recording_sink.connections == []
        assert source.status().details["dropped_records"] == 2

    @pytest.mark.asyncio
    async def test_facility_errors_wrapped(self, facility, recording_sink):
        facility.fail_on.add("start")
        source = NativeCaptureSource(facility)

        with pytest.raises(PlatformCaptureFailure) as exc_info:
            await source.start(recording_sink)

        assert exc_info.value.operation == "start"
        assert "start unavailable" in str(exc_info.value)
        assert source.running is False

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, facility, recording_sink):
        source = NativeCaptureSource(facility)
        await source.start(recording_sink)
        with pytest.raises(AlreadyRunning):
            await source.start(recording_sink)

    @pytest.mark.asyncio
    async def test_callbacks_after_stop_ignored(self, facility, recording_sink):
        source = NativeCaptureSource(facility, dedup_window=0)
        await source.start(recording_sink)
        callbacks = facility.callbacks

        await source.stop()
        callbacks.on_dns({"domain": "late.example.com"})
        callbacks.on_state("error", "late")

        assert recording_sink.dns == []
        assert recording_sink.failures == []
        assert facility.stop_calls == 1

    @pytest.mark.asyncio
    async def test_platform_state_reported_as_failure(self, facility, recording_sink):
        source = NativeCaptureSource(facility)
        await source.start(recording_sink)

        facility.emit_state("connected")
        facility.emit_state("disconnected")

        assert recording_sink.failures == ["native capture stopped unexpectedly"]

    @pytest.mark.asyncio
    async def test_async_facility(self, recording_sink):
        """Facility methods may be coroutines."""
        facility = MagicMock()
        facility.has_permission = AsyncMock(return_value=True)
        facility.start = AsyncMock(return_value=None)
        facility.stop = AsyncMock(return_value=None)
        facility.is_running = AsyncMock(return_value=True)
        source = NativeCaptureSource(facility)

        assert await source.check_permission() is True
        await source.start(recording_sink)
        assert await source.platform_running() is True
        await source.stop()

        facility.start.assert_awaited_once()
        facility.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_during_start_stops_platform(self, recording_sink):
        """A stop issued while the facility is starting undoes that start."""
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_start(callbacks):
            entered.set()
            await release.wait()

        facility = MagicMock()
        facility.start = AsyncMock(side_effect=slow_start)
        facility.stop = AsyncMock(return_value=None)
        source = NativeCaptureSource(facility)

        starting = asyncio.create_task(source.start(recording_sink))
        await entered.wait()
        await source.stop()
        release.set()

        with pytest.raises(AlreadyStopped):
            await starting
        assert source.running is False
        assert facility.stop.await_count == 2
