"""
Module: test_context.py
Description: Tests for environment snapshots and global error hooks.
"""

import asyncio
import sys

import pytest

from mindtrack.context import StaticContextProvider, page_from_url, parse_utm
from mindtrack.instrumentation import install_exception_hook, install_loop_exception_handler
from mindtrack.models.event import ScreenInfo


class TestContext:
    """Test cases for StaticContextProvider and URL helpers."""

    def test_parse_utm_keeps_known_non_empty_keys(self):
        url = "https://quiz.example.com/?utm_source=ads&utm_medium=&utm_campaign=spring&ref=x"
        assert parse_utm(url) == {"utm_source": "ads", "utm_campaign": "spring"}

    def test_parse_utm_without_query(self):
        assert parse_utm("") == {}
        assert parse_utm("https://quiz.example.com/quiz") == {}

    def test_page_from_url(self):
        assert page_from_url("https://quiz.example.com/quiz/3?x=1") == "/quiz/3"
        assert page_from_url("https://quiz.example.com") == "/"
        assert page_from_url("") == ""

    def test_snapshot(self):
        provider = StaticContextProvider(
            url="https://quiz.example.com/quiz?utm_source=ads",
            referrer="https://search.example.com/",
            user_agent="test-agent/1.0",
            screen=ScreenInfo(width=1920, height=1080, pixel_ratio=2),
        )
        provider.resize(1280, 720)

        context = provider()

        assert context.page == "/quiz"
        assert context.utm == {"utm_source": "ads"}
        assert context.user_agent == "test-agent/1.0"
        assert context.screen.pixel_ratio == 2.0
        assert (context.viewport.width, context.viewport.height) == (1280, 720)

    def test_navigate_moves_url_to_referrer(self):
        provider = StaticContextProvider(url="https://quiz.example.com/")
        provider.navigate("https://quiz.example.com/quiz")

        context = provider()

        assert context.referrer == "https://quiz.example.com/"
        assert context.page == "/quiz"

    def test_default_user_agent(self):
        assert StaticContextProvider()().user_agent.startswith("mindtrack ")


class TestInstrumentation:
    """Test cases for the global error hooks."""

    @pytest.mark.asyncio
    async def test_exception_hook_tracks_and_chains(self, make_tracker, beacon_transport, monkeypatch):
        chained = []
        monkeypatch.setattr(sys, "excepthook", lambda *args: chained.append(args[0]))
        tracker = make_tracker(beacon_transport=beacon_transport)
        uninstall = install_exception_hook(tracker)

        try:
            raise KeyError("missing")
        except KeyError:
            sys.excepthook(*sys.exc_info())

        uninstall()

        assert chained == [KeyError]
        [(_, payload)] = beacon_transport.sent
        [item] = payload["batch"]
        assert item["event"] == "error"
        assert item["properties"]["error_type"] == "KeyError"
        assert item["properties"]["function"] == "test_exception_hook_tracks_and_chains"
        assert tracker.queue.is_empty()
        assert beacon_transport.drained == [tracker.exit_timeout]

    @pytest.mark.asyncio
    async def test_exception_hook_uninstall(self, make_tracker, monkeypatch):
        original = sys.excepthook
        uninstall = install_exception_hook(make_tracker())
        assert sys.excepthook is not original

        uninstall()

        assert sys.excepthook is original

    @pytest.mark.asyncio
    async def test_loop_exception_handler(self, make_tracker):
        tracker = make_tracker()
        loop = asyncio.get_running_loop()
        seen = []
        loop.set_exception_handler(lambda _, context: seen.append(context["message"]))
        uninstall = install_loop_exception_handler(tracker)

        loop.call_exception_handler({"message": "Task exception was never retrieved",
                                     "exception": RuntimeError("boom")})
        uninstall()

        [record] = tracker.queue.snapshot()
        assert record.event_name == "error"
        assert record.properties == {"error_message": "Unhandled task exception", "reason": "boom"}
        assert seen == ["Task exception was never retrieved"]
        loop.set_exception_handler(None)
