"""
Module: test_retry.py
Description: Unit tests for the retry scheduler.

Checks the single-timer rule, the backoff sequence and the bounded
number of ticks per cycle.
"""

import asyncio

import pytest

from mindtrack.delivery.retry import RetryScheduler, RetryState
from mindtrack.delivery.strategy import FlushResult

FAILED = FlushResult(taken=1, requeued=1, via="request")
DELIVERED = FlushResult(taken=1, delivered_primary=1, via="request")


class ScriptedFlush:
    """Flush returning scripted results, then DELIVERED."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.results:
            return self.results.pop(0)
        return DELIVERED


class TestRetryScheduler:
    """Test cases for RetryScheduler."""

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            RetryScheduler(ScriptedFlush(), max_retries=0)
        with pytest.raises(ValueError):
            RetryScheduler(ScriptedFlush(), backoff_base_ms=0)

    def test_delay_for(self):
        scheduler = RetryScheduler(ScriptedFlush(), backoff_base_ms=1200)
        assert [scheduler.delay_for(a) for a in range(4)] == [1.2, 2.4, 4.8, 9.6]

    @pytest.mark.asyncio
    async def test_first_tick_after_base_delay(self, recording_sleep):
        flush = ScriptedFlush()
        scheduler = RetryScheduler(flush, max_retries=3, backoff_base_ms=1000, sleep=recording_sleep)

        assert scheduler.arm() is True
        assert scheduler.state == RetryState.ARMED
        await scheduler.wait()

        assert recording_sleep.delays == [1.0]
        assert flush.calls == 1
        assert scheduler.attempt == 1
        assert scheduler.state == RetryState.IDLE

    @pytest.mark.asyncio
    async def test_only_one_timer(self, recording_sleep):
        """Test arming while armed relies on the existing tick."""
        flush = ScriptedFlush()
        scheduler = RetryScheduler(flush, max_retries=3, backoff_base_ms=1000, sleep=recording_sleep)

        assert scheduler.arm() is True
        assert scheduler.arm() is False
        await scheduler.wait()

        assert flush.calls == 1

    @pytest.mark.asyncio
    async def test_backoff_grows_and_stops_at_max_retries(self, recording_sleep):
        """Test delays follow base * 2**attempt and ticks stop at max_retries."""
        flush = ScriptedFlush(*[FAILED] * 10)
        scheduler = RetryScheduler(flush, max_retries=4, backoff_base_ms=1000, sleep=recording_sleep)

        scheduler.arm()
        await scheduler.wait()

        assert recording_sleep.delays == [1.0, 2.0, 4.0, 8.0]
        assert all(a < b for a, b in zip(recording_sleep.delays, recording_sleep.delays[1:]))
        assert flush.calls == 4
        assert scheduler.attempt == 4
        assert scheduler.state == RetryState.IDLE

    @pytest.mark.asyncio
    async def test_success_returns_to_idle(self, recording_sleep):
        flush = ScriptedFlush(FAILED, FAILED)
        scheduler = RetryScheduler(flush, max_retries=5, backoff_base_ms=500, sleep=recording_sleep)

        scheduler.arm()
        await scheduler.wait()

        assert recording_sleep.delays == [0.5, 1.0, 2.0]
        assert flush.calls == 3
        assert scheduler.state == RetryState.IDLE

    @pytest.mark.asyncio
    async def test_new_cycle_resets_attempts(self, recording_sleep):
        flush = ScriptedFlush(FAILED)
        scheduler = RetryScheduler(flush, max_retries=5, backoff_base_ms=1000, sleep=recording_sleep)

        scheduler.arm()
        await scheduler.wait()
        assert scheduler.attempt == 2

        assert scheduler.arm() is True
        await scheduler.wait()
        assert scheduler.attempt == 1
        assert scheduler.delays == [1.0]

    @pytest.mark.asyncio
    async def test_cancel(self):
        flush = ScriptedFlush()
        scheduler = RetryScheduler(flush, max_retries=3, backoff_base_ms=60_000)

        scheduler.arm()
        await asyncio.sleep(0)
        scheduler.cancel()
        await asyncio.sleep(0)

        assert scheduler.state == RetryState.IDLE
        assert flush.calls == 0
        assert scheduler.arm() is True
        scheduler.cancel()

    @pytest.mark.asyncio
    async def test_flush_exception_ends_cycle(self, recording_sleep):
        async def broken_flush():
            raise RuntimeError("unexpected")

        scheduler = RetryScheduler(broken_flush, max_retries=3, backoff_base_ms=1000, sleep=recording_sleep)
        scheduler.arm()
        await scheduler.wait()

        assert scheduler.state == RetryState.IDLE
        assert scheduler.attempt == 1
