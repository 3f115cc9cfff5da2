"""
Module: event.py
Description: Event data models for the mindtrack agent.

Defines the EventRecord model captured by Tracker.track() and the
environment snapshot attached to it. Records are frozen: a retry sends
the very record that was captured, never a recomputed one.

Key Components:
- EventRecord: Core event model with wire (camelCase) aliases
- EventContext: Page, URL, referrer, user agent, screen, viewport, UTM
- normalize_properties(): Restricts property values to JSON-safe types

Dependencies: pydantic, datetime, typing
"""

import copy
from datetime import datetime
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return str(value)


def normalize_properties(properties: Any) -> Dict[str, Any]:
    """
    Copy a property mapping, restricting values to JSON-safe types.

    Allowed values are str, int, float, bool, None, nested mappings and
    lists of those. Anything else is converted with str().

    Args:
        properties: Caller-supplied mapping (None is treated as empty)

    Returns:
        A new, deep-copied dictionary

    Raises:
        ValueError: If properties is not a mapping
    """
    if properties is None:
        return {}
    if not isinstance(properties, Mapping):
        raise ValueError("properties must be a mapping")
    return _normalize_value(properties)


class ScreenInfo(BaseModel):
    """Physical screen size and device pixel ratio."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    pixel_ratio: float = Field(default=1.0, gt=0, alias="pixelRatio")


class Viewport(BaseModel):
    """Visible area of the page."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)


class EventContext(BaseModel):
    """
    Environment snapshot taken when an event is captured.

    Attributes:
        page: Path component of the current URL
        url: Full current URL
        referrer: Referring URL, empty when unknown
        user_agent: Client user agent string
        screen: Screen dimensions
        viewport: Viewport dimensions
        utm: Campaign parameters parsed from the URL query
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    page: str = ""
    url: str = ""
    referrer: str = ""
    user_agent: str = Field(default="", alias="userAgent")
    screen: ScreenInfo = Field(default_factory=ScreenInfo)
    viewport: Viewport = Field(default_factory=Viewport)
    utm: Dict[str, str] = Field(default_factory=dict)


class EventRecord(BaseModel):
    """
    One captured occurrence.

    Field aliases are the collector's wire names, so
    EventRecord.model_validate() accepts both Python and wire keys.
    Mapping fields are deep-copied on construction; later mutation of
    the caller's dictionaries cannot change a queued record.

    Attributes:
        event_name: Semantic event type (e.g. 'page_view')
        timestamp: Capture time, ISO-8601 UTC (client clock)
        user_id: Long-lived pseudonymous user identifier
        session_id: Identifier of the current session
        context: Environment snapshot
        user_attributes: Persisted user attributes at capture time
        properties: Event-specific payload
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_name: str = Field(..., min_length=1, max_length=200, alias="event")
    timestamp: str = Field(..., alias="ts")
    user_id: str = Field(..., min_length=1, alias="userId")
    session_id: str = Field(..., min_length=1, alias="sessionId")
    context: EventContext = Field(default_factory=EventContext)
    user_attributes: Dict[str, Any] = Field(default_factory=dict, alias="userAttributes")
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        """Validate timestamp is ISO-8601."""
        try:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("timestamp must be an ISO-8601 string")
        return v

    @field_validator("properties", "user_attributes", mode="before")
    @classmethod
    def validate_mapping(cls, v: Any) -> Dict[str, Any]:
        """Copy and normalize mapping values."""
        return normalize_properties(v)

    def to_batch_item(self) -> Dict[str, Any]:
        """Serialize to the primary endpoint's per-item shape."""
        ctx = self.context
        return {
            "event": self.event_name,
            "ts": self.timestamp,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "page": ctx.page,
            "url": ctx.url,
            "referrer": ctx.referrer,
            "userAgent": ctx.user_agent,
            "screen": ctx.screen.model_dump(by_alias=True),
            "viewport": ctx.viewport.model_dump(),
            "utm": dict(ctx.utm),
            "userAttributes": copy.deepcopy(self.user_attributes),
            "properties": copy.deepcopy(self.properties),
        }

    @classmethod
    def from_batch_item(cls, item: Mapping[str, Any]) -> "EventRecord":
        """
        Parse a record from its primary wire shape.

        Raises:
            pydantic.ValidationError: If the item is not a valid record
            ValueError: If item is not a mapping
        """
        if not isinstance(item, Mapping):
            raise ValueError("item must be a mapping")
        return cls.model_validate({
            "event": item.get("event"),
            "ts": item.get("ts"),
            "userId": item.get("userId"),
            "sessionId": item.get("sessionId"),
            "context": {
                "page": item.get("page") or "",
                "url": item.get("url") or "",
                "referrer": item.get("referrer") or "",
                "userAgent": item.get("userAgent") or "",
                "screen": item.get("screen") or {},
                "viewport": item.get("viewport") or {},
                "utm": item.get("utm") or {},
            },
            "userAttributes": item.get("userAttributes") or {},
            "properties": item.get("properties") or {},
        })

    def to_legacy_payload(self) -> Dict[str, Any]:
        """
        Serialize to the legacy endpoint's flat shape.

        Context fields are folded into properties; they win over caller
        properties with the same name.
        """
        item = self.to_batch_item()
        properties = dict(item["properties"])
        properties.update({
            "timestamp": item["ts"],
            "userId": item["userId"],
            "sessionId": item["sessionId"],
            "page": item["page"],
            "referrer": item["referrer"],
            "userAgent": item["userAgent"],
            "screen": item["screen"],
            "viewport": item["viewport"],
            "url": item["url"],
            "utm": item["utm"],
            "userAttributes": item["userAttributes"],
        })
        return {"event": item["event"], "properties": properties}
