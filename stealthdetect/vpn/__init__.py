"""VPN-style traffic interception and event distribution."""

from .events import (
    ConnectionEvent,
    DnsRequestEvent,
    EventName,
    Protocol,
    QueryType,
    StateChangeEvent,
    VpnState,
)
from .errors import (
    AlreadyRunning,
    AlreadyStopped,
    HandlerFailure,
    PermissionDenied,
    PlatformCaptureFailure,
    VpnServiceError,
)
from .selector import CapabilitySelector
from .service import VpnService
from .session import (
    PermissionResult,
    SessionState,
    StartVpnResult,
    StopVpnResult,
    VpnStatus,
)

__all__ = [
    "ConnectionEvent",
    "DnsRequestEvent",
    "EventName",
    "Protocol",
    "QueryType",
    "StateChangeEvent",
    "VpnState",
    "AlreadyRunning",
    "AlreadyStopped",
    "HandlerFailure",
    "PermissionDenied",
    "PlatformCaptureFailure",
    "VpnServiceError",
    "CapabilitySelector",
    "VpnService",
    "PermissionResult",
    "SessionState",
    "StartVpnResult",
    "StopVpnResult",
    "VpnStatus",
]
