"""Traffic sources: native platform capture and the synthetic generator."""

from .base import EventSink, TrafficSource
from .native import CaptureCallbacks, CaptureFacility, NativeCaptureSource
from .synthetic import GeneratedTraffic, SyntheticTrafficSource

__all__ = [
    "EventSink",
    "TrafficSource",
    "CaptureCallbacks",
    "CaptureFacility",
    "NativeCaptureSource",
    "GeneratedTraffic",
    "SyntheticTrafficSource",
]
