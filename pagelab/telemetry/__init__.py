"""Telemetry capture, batching, and delivery."""

from .events import EventType, TelemetryEvent
from .pipeline import TelemetryPipeline
from .sink import HttpEventSink
from .trackers import Analytics, ScrollDepthTracker, TimeOnPageTracker, scroll_percent

__all__ = [
    "Analytics",
    "EventType",
    "HttpEventSink",
    "ScrollDepthTracker",
    "TelemetryEvent",
    "TelemetryPipeline",
    "TimeOnPageTracker",
    "scroll_percent",
]
