"""Tests for the capture event model."""

import dataclasses
from datetime import datetime, timezone

import pytest

from stealthdetect.vpn.events import (
    ConnectionEvent,
    DnsRequestEvent,
    Protocol,
    QueryType,
    StateChangeEvent,
    VpnState,
    query_type_from_code,
)

TS = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class TestDnsRequestEvent:
    def test_to_dict(self):
        event = DnsRequestEvent(
            domain="api.mspy.com",
            query_type=QueryType.A,
            source_port=53001,
            destination_ip="8.8.8.8",
            source_app="com.mspy.android",
            timestamp=TS,
        )

        assert event.to_dict() == {
            "timestamp": "2024-01-02T03:04:05+00:00",
            "domain": "api.mspy.com",
            "queryType": "A",
            "sourceApp": "com.mspy.android",
            "sourcePort": 53001,
            "destinationIp": "8.8.8.8",
            "blocked": False,
        }

    def test_string_query_type_coerced(self):
        event = DnsRequestEvent(domain="a.com", query_type="CNAME", source_port=1, destination_ip="1.1.1.1")
        assert event.query_type is QueryType.CNAME

    @pytest.mark.parametrize("port", [-1, 65536])
    def test_port_out_of_range(self, port):
        with pytest.raises(ValueError):
            DnsRequestEvent(domain="a.com", query_type="A", source_port=port, destination_ip="1.1.1.1")

    def test_empty_domain(self):
        with pytest.raises(ValueError):
            DnsRequestEvent(domain="", query_type="A", source_port=1, destination_ip="1.1.1.1")

    def test_immutable(self):
        event = DnsRequestEvent(domain="a.com", query_type="A", source_port=1, destination_ip="1.1.1.1")
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.domain = "b.com"


class TestConnectionEvent:
    def test_to_dict(self):
        event = ConnectionEvent(
            protocol=Protocol.TCP,
            source_ip="192.168.1.4",
            source_port=40000,
            dest_ip="1.2.3.4",
            dest_port=443,
            bytes_in=10,
            bytes_out=20,
            timestamp=TS,
        )
        data = event.to_dict()

        assert data["protocol"] == "TCP"
        assert data["destPort"] == 443
        assert data["bytesIn"] == 10
        assert data["bytesOut"] == 20
        assert data["sourceApp"] is None

    def test_negative_bytes(self):
        with pytest.raises(ValueError):
            ConnectionEvent(
                protocol="TCP", source_ip="a", source_port=1, dest_ip="b", dest_port=2, bytes_in=-1,
            )

    def test_unknown_protocol(self):
        with pytest.raises(ValueError):
            ConnectionEvent(protocol="ICMP", source_ip="a", source_port=1, dest_ip="b", dest_port=2)


class TestStateChangeEvent:
    def test_error_requires_message(self):
        with pytest.raises(ValueError):
            StateChangeEvent(state=VpnState.ERROR)

    def test_message_only_serialized_when_set(self):
        assert "errorMessage" not in StateChangeEvent(state="connected").to_dict()
        data = StateChangeEvent(state="error", error_message="revoked").to_dict()
        assert data["state"] == "error"
        assert data["errorMessage"] == "revoked"


def test_query_type_codes():
    assert query_type_from_code(1) is QueryType.A
    assert query_type_from_code(5) is QueryType.CNAME
    assert query_type_from_code(12) is QueryType.PTR
    assert query_type_from_code(16) is QueryType.TXT
    assert query_type_from_code(28) is QueryType.AAAA
    assert query_type_from_code(33) is QueryType.OTHER
