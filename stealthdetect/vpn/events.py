"""Traffic event model shared by capture sources, the session controller and subscribers.

Events are immutable once emitted. ``to_dict()`` produces the wire shape
consumed by the presentation layer: camelCase keys and ISO-8601 UTC
timestamps.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class EventName(str, Enum):
    """Channels published by the capture core."""
    DNS_REQUEST = "dnsRequest"
    VPN_STATE_CHANGE = "vpnStateChange"
    CONNECTION_EVENT = "connectionEvent"


class QueryType(str, Enum):
    A = "A"
    AAAA = "AAAA"
    CNAME = "CNAME"
    MX = "MX"
    TXT = "TXT"
    PTR = "PTR"
    OTHER = "OTHER"


class Protocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"


class VpnState(str, Enum):
    """State reported on the vpnStateChange channel."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ERROR = "error"


# DNS QTYPE codes (RFC 1035 / RFC 3596)
QTYPE_CODES = {
    1: QueryType.A,
    5: QueryType.CNAME,
    12: QueryType.PTR,
    15: QueryType.MX,
    16: QueryType.TXT,
    28: QueryType.AAAA,
}


def query_type_from_code(code: int) -> QueryType:
    """Map a numeric DNS QTYPE to a QueryType, OTHER when unsupported."""
    return QTYPE_CODES.get(code, QueryType.OTHER)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.isoformat()


def _check_port(name: str, value: int) -> None:
    if not isinstance(value, int) or not 0 <= value <= 65535:
        raise ValueError(f"{name} must be an integer between 0 and 65535, got: {value!r}")


@dataclass(frozen=True)
class DnsRequestEvent:
    """A DNS query observed leaving the device."""
    domain: str
    query_type: QueryType
    source_port: int
    destination_ip: str
    source_app: Optional[str] = None
    blocked: bool = False
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.domain:
            raise ValueError("domain must not be empty")
        _check_port("source_port", self.source_port)
        object.__setattr__(self, "query_type", QueryType(self.query_type))

    def to_dict(self) -> dict:
        return {
            "timestamp": _iso(self.timestamp),
            "domain": self.domain,
            "queryType": self.query_type.value,
            "sourceApp": self.source_app,
            "sourcePort": self.source_port,
            "destinationIp": self.destination_ip,
            "blocked": self.blocked,
        }


@dataclass(frozen=True)
class ConnectionEvent:
    """A TCP/UDP flow attributed (when possible) to a source application."""
    protocol: Protocol
    source_ip: str
    source_port: int
    dest_ip: str
    dest_port: int
    source_app: Optional[str] = None
    bytes_in: int = 0
    bytes_out: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        _check_port("source_port", self.source_port)
        _check_port("dest_port", self.dest_port)
        if self.bytes_in < 0 or self.bytes_out < 0:
            raise ValueError("byte counts must not be negative")
        object.__setattr__(self, "protocol", Protocol(self.protocol))

    def to_dict(self) -> dict:
        return {
            "timestamp": _iso(self.timestamp),
            "protocol": self.protocol.value,
            "sourceIp": self.source_ip,
            "sourcePort": self.source_port,
            "destIp": self.dest_ip,
            "destPort": self.dest_port,
            "sourceApp": self.source_app,
            "bytesIn": self.bytes_in,
            "bytesOut": self.bytes_out,
        }


@dataclass(frozen=True)
class StateChangeEvent:
    state: VpnState
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        object.__setattr__(self, "state", VpnState(self.state))
        if self.state is VpnState.ERROR and not self.error_message:
            raise ValueError("error_message is required for the error state")

    def to_dict(self) -> dict:
        data = {
            "state": self.state.value,
            "timestamp": _iso(self.timestamp),
        }
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data
