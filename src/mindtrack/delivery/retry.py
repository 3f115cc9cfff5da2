"""
Module: delivery/retry.py
Description: Bounded exponential backoff for failed flushes.

One scheduler per engine. The first failure arms a single retry task;
failures while armed rely on that task. Each tick re-runs a flush. The
delay before tick n+1 is backoff_base * 2**n, and the cycle stops after
max_retries ticks. Records still pending after that stay in the
persisted queue for the periodic flush.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_exponential

from mindtrack.delivery.strategy import FlushResult
from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)


class RetryState(str, Enum):
    """Scheduler states."""

    IDLE = "idle"
    ARMED = "armed"


def _has_failures(result: FlushResult) -> bool:
    return result is not None and result.requeued > 0


class RetryScheduler:
    """
    Drives retry ticks with tenacity.

    Attributes:
        state: IDLE or ARMED
        attempt: Ticks run in the current cycle
        delays: Seconds slept in the current cycle, in order
    """

    def __init__(
        self,
        flush: Callable[[], Awaitable[FlushResult]],
        max_retries: int = 5,
        backoff_base_ms: int = 1200,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if backoff_base_ms <= 0:
            raise ValueError("backoff_base_ms must be positive")

        self._flush = flush
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self._sleep = sleep
        self.state = RetryState.IDLE
        self.attempt = 0
        self.delays: List[float] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def backoff_base(self) -> float:
        return self.backoff_base_ms / 1000.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given number of ticks."""
        return self.backoff_base * (2 ** attempt)

    def arm(self) -> bool:
        """
        Start a retry cycle unless one is already running.

        Must be called from a running event loop.

        Returns:
            True if a new cycle was started
        """
        if self._task is not None and not self._task.done():
            return False

        self.attempt = 0
        self.delays = []
        self.state = RetryState.ARMED
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Retry scheduled", delay_ms=self.backoff_base_ms)
        return True

    def cancel(self) -> None:
        """Stop a pending cycle."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.state = RetryState.IDLE
        self.attempt = 0

    async def wait(self) -> None:
        """Wait for the current cycle to finish."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _sleep_for(self, seconds: float) -> None:
        self.delays.append(seconds)
        await self._sleep(seconds)

    async def _tick(self) -> FlushResult:
        self.attempt += 1
        result = await self._flush()
        logger.info(
            "Retry tick",
            attempt=self.attempt,
            requeued=result.requeued,
            delivered=result.delivered
        )
        return result

    async def _run(self) -> None:
        try:
            await self._sleep_for(self.backoff_base)
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                # attempt n waits multiplier * 2**(n-1), i.e. base * 2**n
                wait=wait_exponential(multiplier=2 * self.backoff_base),
                retry=retry_if_result(_has_failures),
                sleep=self._sleep_for,
                retry_error_callback=lambda retry_state: retry_state.outcome.result(),
            )
            result = await retrying(self._tick)
            if _has_failures(result):
                logger.warning(
                    "Retry cycle exhausted, records stay queued",
                    attempts=self.attempt,
                    requeued=result.requeued
                )
            else:
                logger.info("Retry cycle succeeded", attempts=self.attempt)

        except Exception as e:
            logger.error(
                "Retry cycle failed",
                attempt=self.attempt,
                error=str(e),
                error_type=type(e).__name__
            )

        finally:
            if self._task is asyncio.current_task():
                self.state = RetryState.IDLE
                self._task = None
