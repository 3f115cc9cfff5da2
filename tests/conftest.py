"""
Module: conftest.py
Description: Shared pytest fixtures for mindtrack tests.

Provides in-memory stores, scripted transports, a fixed clock and a
Tracker factory whose timers are shut down after each test.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from mindtrack.config.settings import TrackerConfig
from mindtrack.errors import DeliveryError
from mindtrack.models.event import EventContext, EventRecord, ScreenInfo, Viewport
from mindtrack.storage.kv import MemoryStore
from mindtrack.tracker import Tracker

BASE_URL = "http://collector.test"
EVENTS_URL = BASE_URL + "/api/events"
RESULTS_URL = BASE_URL + "/api/results"
TRACK_URL = BASE_URL + "/api/track"

FIXED_NOW = datetime(2024, 1, 15, 10, 30, 0, 123000, tzinfo=timezone.utc)


class ScriptedRequestTransport:
    """
    Request transport whose outcomes are scripted per URL.

    Scripted outcomes are consumed in order; once exhausted the URL's
    default applies (True unless changed). Every send is recorded.
    """

    def __init__(self):
        self.outcomes: Dict[str, List[bool]] = {}
        self.defaults: Dict[str, bool] = {}
        self.sent: List[tuple] = []
        self.posted: List[tuple] = []
        self.post_headers: List[dict] = []
        self.results_ok = True
        self.gate: Optional[asyncio.Event] = None

    def script(self, url: str, *outcomes: bool) -> None:
        self.outcomes.setdefault(url, []).extend(outcomes)

    def set_default(self, url: str, outcome: bool) -> None:
        self.defaults[url] = outcome

    def sent_to(self, url: str) -> List[dict]:
        return [payload for sent_url, payload, _ in self.sent if sent_url == url]

    async def send(self, url: str, body: str, keepalive: bool = False) -> bool:
        self.sent.append((url, json.loads(body), keepalive))
        if self.gate is not None:
            await self.gate.wait()
        pending = self.outcomes.get(url)
        if pending:
            return pending.pop(0)
        return self.defaults.get(url, True)

    async def post_json(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        self.posted.append((url, payload))
        self.post_headers.append(dict(headers or {}))
        if not self.results_ok:
            raise DeliveryError("HTTP 404", status_code=404)
        return {"ok": True, "count": 1}


class ScriptedBeaconTransport:
    """One-way transport with scripted hand-off results."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.outcomes: Dict[str, List[bool]] = {}
        self.sent: List[tuple] = []
        self.drained: List[Optional[float]] = []

    def script(self, url: str, *outcomes: bool) -> None:
        self.outcomes.setdefault(url, []).extend(outcomes)

    def drain(self, timeout: Optional[float] = None) -> bool:
        self.drained.append(timeout)
        return True

    def send(self, url: str, body: str) -> bool:
        self.sent.append((url, json.loads(body)))
        pending = self.outcomes.get(url)
        if pending:
            return pending.pop(0)
        return self.accept


class RecordingSleep:
    """Sleep replacement recording requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def store():
    """Long-lived store."""
    return MemoryStore()


@pytest.fixture
def session_store():
    """Session-scoped store."""
    return MemoryStore()


@pytest.fixture
def config():
    """Configuration pointing at the test collector."""
    return TrackerConfig.from_base_url(
        BASE_URL,
        flush_interval_ms=60_000,
        max_batch_size=20,
        max_retries=5,
        backoff_base_ms=1000,
    )


@pytest.fixture
def request_transport():
    return ScriptedRequestTransport()


@pytest.fixture
def beacon_transport():
    return ScriptedBeaconTransport()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def sample_context():
    """Environment snapshot of a quiz page."""
    return EventContext(
        page="/quiz",
        url="https://quiz.example.com/quiz?utm_source=ads",
        referrer="https://search.example.com/",
        user_agent="test-agent/1.0",
        screen=ScreenInfo(width=1920, height=1080, pixel_ratio=2),
        viewport=Viewport(width=1280, height=720),
        utm={"utm_source": "ads"},
    )


@pytest.fixture
def make_record(sample_context):
    """Factory for EventRecord instances."""

    def factory(event_name: str = "page_view", **properties) -> EventRecord:
        return EventRecord(
            event_name=event_name,
            timestamp="2024-01-15T10:30:00.123Z",
            user_id="user_1705314600000_a1b2c3d4",
            session_id="sess_1705314600000_e5f6a7",
            context=sample_context,
            user_attributes={"plan": "free"},
            properties=properties,
        )

    return factory


@pytest_asyncio.fixture
async def make_tracker(config, store, session_store, request_transport, recording_sleep, sample_context):
    """
    Factory for Tracker instances sharing the test's stores and transports.

    Keyword overrides replace configuration fields; beacon_transport and
    session_store may be passed explicitly.
    """
    created: List[Tracker] = []

    def factory(beacon_transport=None, session_store_override=None, **overrides) -> Tracker:
        tracker = Tracker(
            config.model_copy(update=overrides) if overrides else config,
            store,
            session_store=session_store_override or session_store,
            request_transport=request_transport,
            beacon_transport=beacon_transport,
            context_provider=lambda: sample_context,
            clock=lambda: FIXED_NOW,
            sleep=recording_sleep,
        )
        created.append(tracker)
        return tracker

    yield factory

    for tracker in created:
        tracker._stop_periodic_flush()
        tracker.retry.cancel()
        for task in list(tracker._tasks):
            task.cancel()
    await asyncio.sleep(0)
