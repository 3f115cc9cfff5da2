"""
Package: mindtrack
Description: Client-side telemetry delivery agent.

Captures behavioural events and quiz results, buffers them durably
across restarts and network outages, and delivers them to a collector
with batch-to-legacy fallback, bounded backoff retry and unload-safe
transmission.

Example:
    >>> tracker = Tracker.from_settings()
    >>> tracker.init()
    >>> tracker.track_page_view("/quiz")
"""

from mindtrack.config.settings import TrackerConfig, TrackerSettings, merge_config
from mindtrack.context import StaticContextProvider
from mindtrack.delivery.strategy import FlushResult
from mindtrack.models.event import EventContext, EventRecord
from mindtrack.tracker import Tracker

__version__ = "0.3.0"

__all__ = [
    "EventContext",
    "EventRecord",
    "FlushResult",
    "StaticContextProvider",
    "Tracker",
    "TrackerConfig",
    "TrackerSettings",
    "merge_config",
]
