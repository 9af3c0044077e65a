"""Session state and the result values returned by the capture service."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


# Allowed transitions of the session state machine
TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.DISCONNECTED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset({SessionState.CONNECTED, SessionState.ERROR}),
    SessionState.CONNECTED: frozenset({SessionState.DISCONNECTED, SessionState.ERROR}),
    SessionState.ERROR: frozenset({SessionState.CONNECTING, SessionState.DISCONNECTED}),
}


@dataclass
class Session:
    """The single logical capture run. Mutated only by ``VpnService``."""
    state: SessionState = SessionState.DISCONNECTED
    start_time: Optional[datetime] = None
    packets_processed: int = 0
    dns_queries_intercepted: int = 0
    last_error: Optional[str] = None

    def transition(self, new_state: SessionState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal session transition {self.state.value} -> {new_state.value}")
        self.state = new_state

    def reset_counters(self) -> None:
        self.packets_processed = 0
        self.dns_queries_intercepted = 0

    def snapshot(self) -> "VpnStatus":
        return VpnStatus(
            connected=self.state is SessionState.CONNECTED,
            start_time=self.start_time,
            packets_processed=self.packets_processed,
            dns_queries_intercepted=self.dns_queries_intercepted,
            state=self.state,
        )


@dataclass(frozen=True)
class VpnStatus:
    connected: bool
    start_time: Optional[datetime]
    packets_processed: int
    dns_queries_intercepted: int
    state: SessionState = SessionState.DISCONNECTED

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "packetsProcessed": self.packets_processed,
            "dnsQueriesIntercepted": self.dns_queries_intercepted,
        }


@dataclass(frozen=True)
class StartVpnResult:
    success: bool
    requires_permission: bool = False
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "requiresPermission": self.requires_permission}
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data


@dataclass(frozen=True)
class StopVpnResult:
    success: bool
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"success": self.success}
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data


@dataclass(frozen=True)
class PermissionResult:
    granted: bool

    def to_dict(self) -> dict:
        return {"granted": self.granted}


@dataclass(frozen=True)
class SourceStatus:
    """What a traffic source reports about itself."""
    running: bool
    native: bool
    details: dict = field(default_factory=dict)
