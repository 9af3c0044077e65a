"""Error taxonomy for the capture core.

Only contract violations propagate to callers. Everything else is folded
into result values by the session controller.
"""

from ..utils.event_bus import HandlerFailure


class VpnServiceError(Exception):
    """Base class for capture core errors."""


class PermissionDenied(VpnServiceError):
    """The platform refused (or has not yet granted) capture consent."""


class AlreadyRunning(VpnServiceError):
    """Raised by a traffic source asked to start twice. Callers treat it as success."""


class AlreadyStopped(VpnServiceError):
    """There is no live session or capture to act on.

    Raised by ``VpnService._leave_connected`` when ``stop_vpn`` finds no live
    session, and by the native source when ``stop`` lands while the platform
    is still starting. Both callers treat it as a completed stop.
    """


class PlatformCaptureFailure(VpnServiceError):
    """The native interception facility failed (permission revoked, crash, unsupported OS)."""

    def __init__(self, operation: str, cause: BaseException | str):
        self.operation = operation
        self.cause = cause
        super().__init__(f"native {operation} failed: {cause}")


__all__ = [
    "VpnServiceError",
    "PermissionDenied",
    "AlreadyRunning",
    "AlreadyStopped",
    "PlatformCaptureFailure",
    "HandlerFailure",
]
