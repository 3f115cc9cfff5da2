"""
Module: models
Description: Package initialization for Pydantic data models.

This package contains all data models used by the mindtrack agent:
- EventRecord: One captured occurrence, immutable once built
- EventContext: Environment snapshot attached to every record
- BatchPayload / ResultPayload: Outbound collector payloads

All models are exported here for convenient importing.
"""

from .event import EventContext, EventRecord, ScreenInfo, Viewport, normalize_properties
from .payload import BatchPayload, ResultPayload

__all__ = [
    "BatchPayload",
    "EventContext",
    "EventRecord",
    "ResultPayload",
    "ScreenInfo",
    "Viewport",
    "normalize_properties",
]
