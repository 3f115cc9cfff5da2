"""
Module: clock.py
Description: Capture-time helpers.

Timestamps use the same shape a browser produces with
Date.prototype.toISOString(): UTC, millisecond precision, Z suffix.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def now_iso(now: Optional[datetime] = None) -> str:
    """Return an ISO-8601 UTC timestamp with millisecond precision."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_millis() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)
