"""
Module: tracker.py
Description: The delivery engine and its public contract.

A Tracker is constructed once by the host and passed to every call
site. track() never raises and never waits: it builds an immutable
EventRecord, appends it to the persisted queue and returns. Delivery
happens on flushes triggered by the periodic task, the batch size
threshold, connectivity and lifecycle signals, and the retry scheduler.

Key Components:
- Tracker: init/configure/track/flush/save_result and lifecycle signals
- Tracker.from_settings(): Wiring from environment settings

Dependencies: asyncio, atexit, pydantic, config, delivery, storage
"""

import asyncio
import atexit
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Set

from pydantic import ValidationError

from mindtrack.config.settings import TrackerConfig, TrackerSettings, get_settings, merge_config
from mindtrack.context import StaticContextProvider
from mindtrack.delivery.retry import RetryScheduler
from mindtrack.delivery.strategy import VIA_BEACON, FlushResult, TransmissionStrategy
from mindtrack.delivery.transport import (
    BeaconTransport,
    HttpRequestTransport,
    RequestTransport,
    ThreadBeaconTransport,
)
from mindtrack.errors import DeliveryError
from mindtrack.event_queue.queue import EventQueue
from mindtrack.identity.manager import IdentityManager
from mindtrack.models.event import EventContext, EventRecord
from mindtrack.models.payload import ResultPayload
from mindtrack.storage.kv import JsonFileStore, KeyValueStore, MemoryStore, StorageKeys
from mindtrack.utils.clock import now_iso
from mindtrack.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

STATE_FILE_NAME = "state.json"
SESSION_HEADER = "X-Session-Id"


class Tracker:
    """
    Client-side event delivery engine.

    Attributes:
        config: Current TrackerConfig
        queue: Persisted queue of pending records
        identity: User and session identifiers
        strategy: Transmission strategy
        retry: Retry scheduler
        is_initialized: Whether init() has run
    """

    def __init__(
        self,
        config: TrackerConfig,
        store: KeyValueStore,
        session_store: Optional[KeyValueStore] = None,
        request_transport: Optional[RequestTransport] = None,
        beacon_transport: Optional[BeaconTransport] = None,
        context_provider: Optional[Callable[[], EventContext]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Any] = asyncio.sleep,
        register_atexit: bool = False,
        exit_timeout: float = 10.0,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration
            store: Long-lived store (user id, queue, attributes)
            session_store: Session-scoped store (session id)
            request_transport: Awaitable transport, httpx by default
            beacon_transport: Optional one-way transport for teardown
            context_provider: Returns the environment snapshot
            clock: Capture-time clock
            sleep: Sleep used by the retry scheduler
            register_atexit: Run teardown_at_exit() at interpreter exit
            exit_timeout: Seconds the exit teardown waits for handed-off
                beacons
        """
        self.config = config
        self.store = store
        self.session_store = session_store if session_store is not None else MemoryStore()
        self.request_transport = request_transport or HttpRequestTransport()
        self.beacon_transport = beacon_transport
        self.context_provider = context_provider or StaticContextProvider()
        self._clock = clock
        self._register_atexit = register_atexit
        self.exit_timeout = exit_timeout

        self.identity = IdentityManager(store, self.session_store)
        self.queue = EventQueue(store)
        self.strategy = TransmissionStrategy(
            self.queue, self.request_transport, self.beacon_transport
        )
        self.retry = RetryScheduler(
            self.flush,
            max_retries=config.max_retries,
            backoff_base_ms=config.backoff_base_ms,
            sleep=sleep,
        )

        self.user_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.is_initialized = False
        self._user_attrs: Dict[str, Any] = {}
        self._flush_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._atexit_registered = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[TrackerSettings] = None,
        **kwargs: Any,
    ) -> "Tracker":
        """
        Build a Tracker wired for production from settings.

        Uses a JSON file under settings.storage_dir as the long-lived
        store, httpx for requests and a thread-backed beacon for
        teardown flushes.
        """
        settings = settings or get_settings()
        configure_logging(settings.log_level)

        kwargs.setdefault(
            "request_transport",
            HttpRequestTransport(timeout_seconds=settings.request_timeout_seconds),
        )
        kwargs.setdefault(
            "beacon_transport",
            ThreadBeaconTransport(
                timeout_seconds=settings.request_timeout_seconds,
                max_bytes=settings.beacon_max_bytes,
            ),
        )
        kwargs.setdefault("register_atexit", True)
        kwargs.setdefault("exit_timeout", settings.request_timeout_seconds)

        return cls(
            TrackerConfig.from_settings(settings),
            JsonFileStore(settings.storage_dir / STATE_FILE_NAME),
            **kwargs,
        )

    # Lifecycle

    def configure(self, **options: Any) -> TrackerConfig:
        """
        Override configuration fields.

        Raises:
            ValueError: If an option is not a configuration field
            pydantic.ValidationError: If a value is invalid
        """
        previous = self.config
        self.config = merge_config(self.config, options)
        self.retry.max_retries = self.config.max_retries
        self.retry.backoff_base_ms = self.config.backoff_base_ms

        if (
            self._flush_task is not None
            and self.config.flush_interval_ms != previous.flush_interval_ms
        ):
            self._stop_periodic_flush()
            self._start_periodic_flush()

        logger.info("Tracker configured", **{k: v for k, v in options.items() if v is not None})
        return self.config

    def init(self) -> None:
        """
        Resolve identifiers, rehydrate the queue and start the periodic flush.

        Idempotent. Without a running event loop the periodic flush is
        started by the first flush() call instead.
        """
        if self.is_initialized:
            return

        self.user_id = self.identity.ensure_user_id()
        self.session_id = self.identity.ensure_session_id()
        self._user_attrs = self._load_user_attrs()
        self.queue.rehydrate()
        self.is_initialized = True

        self._start_periodic_flush()

        if self._register_atexit and not self._atexit_registered:
            atexit.register(self.teardown_at_exit)
            self._atexit_registered = True

        logger.info(
            "Tracker initialized",
            user_id=self.user_id,
            session_id=self.session_id,
            pending=len(self.queue)
        )

    async def shutdown(self) -> FlushResult:
        """Stop timers and make a final teardown flush."""
        self._stop_periodic_flush()
        self.retry.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._atexit_registered:
            atexit.unregister(self.teardown_at_exit)
            self._atexit_registered = False

        if not self.is_initialized:
            return FlushResult()

        if self.beacon_transport is not None:
            result = self._flush_all_beacon()
            await asyncio.to_thread(self._wait_for_beacons, self.exit_timeout)
            return result

        return await self._flush_all_request()

    def _start_periodic_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, periodic flush deferred")
            return
        self._flush_task = loop.create_task(self._periodic_flush())

    def _stop_periodic_flush(self) -> None:
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None

    async def _periodic_flush(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval_ms / 1000.0)
            try:
                await self.flush()
            except Exception as e:
                logger.error(
                    "Periodic flush failed",
                    error=str(e),
                    error_type=type(e).__name__
                )

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # Identity and attributes

    def get_user_id(self) -> str:
        if not self.is_initialized:
            self.init()
        return self.user_id

    def get_session_id(self) -> str:
        if not self.is_initialized:
            self.init()
        return self.session_id

    def _load_user_attrs(self) -> Dict[str, Any]:
        try:
            raw = self.store.get(StorageKeys.USER_ATTRIBUTES)
        except Exception as e:
            logger.warning("Failed to read user attributes", error=str(e))
            return {}
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding malformed user attributes")
            return {}
        return data if isinstance(data, dict) else {}

    def get_user_attributes(self) -> Dict[str, Any]:
        """Copy of the current user attributes."""
        return dict(self._user_attrs)

    def set_user_attributes(self, attributes: Optional[Mapping[str, Any]] = None) -> None:
        """
        Merge attributes into the persisted set and track the change.

        Later keys replace earlier ones; the merged set is attached to
        every record captured afterwards.
        """
        if not self.is_initialized:
            self.init()

        if attributes is not None and not isinstance(attributes, Mapping):
            logger.warning(
                "Dropping invalid user attributes",
                attributes_type=type(attributes).__name__
            )
            return

        attributes = dict(attributes or {})
        self._user_attrs = {**self._user_attrs, **attributes}
        try:
            self.store.set(StorageKeys.USER_ATTRIBUTES, json.dumps(self._user_attrs, default=str))
        except Exception as e:
            logger.warning(
                "Failed to persist user attributes",
                error=str(e),
                error_type=type(e).__name__
            )

        self.track("user_attributes", {"attributes": attributes})

    # Capture

    def _context(self) -> EventContext:
        try:
            return self.context_provider()
        except Exception as e:
            logger.warning("Context provider failed", error=str(e))
            return EventContext()

    def track(
        self, event_name: str, properties: Optional[Mapping[str, Any]] = None
    ) -> Optional[EventRecord]:
        """
        Capture an event.

        Never raises. Invalid input is logged and dropped.

        Args:
            event_name: Semantic event type
            properties: Event-specific payload

        Returns:
            The queued record, or None if it was dropped
        """
        if not self.is_initialized:
            self.init()

        try:
            record = EventRecord(
                event_name=event_name,
                timestamp=now_iso(self._clock()),
                user_id=self.user_id,
                session_id=self.session_id,
                context=self._context(),
                user_attributes=self._user_attrs,
                properties=properties or {},
            )
        except (ValidationError, ValueError) as e:
            logger.warning("Dropping invalid event", event_name=event_name, error=str(e))
            return None

        self.queue.enqueue(record)
        logger.debug("Event tracked", event_name=event_name, queue_length=len(self.queue))

        if len(self.queue) >= self.config.max_batch_size:
            self._spawn(self.flush())

        return record

    def track_page_view(self, page: Optional[str] = None, properties: Optional[Mapping[str, Any]] = None):
        return self.track("page_view", {"page": page, **(properties or {})})

    def track_button_click(self, name: str, properties: Optional[Mapping[str, Any]] = None):
        return self.track("button_click", {"button": name, **(properties or {})})

    def track_form_submit(self, name: str, properties: Optional[Mapping[str, Any]] = None):
        return self.track("form_submit", {"form": name, **(properties or {})})

    def track_error(self, message: str, properties: Optional[Mapping[str, Any]] = None):
        return self.track("error", {"error_message": message, **(properties or {})})

    def track_custom_event(self, name: str, properties: Optional[Mapping[str, Any]] = None):
        return self.track(name, properties)

    async def save_result(
        self, result_name: str, scores: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """
        Post a quiz result to the results endpoint.

        On any failure the result is tracked as a 'quiz_result' event
        instead, for collectors without a results route.

        Returns:
            True if the results endpoint accepted it
        """
        if not self.is_initialized:
            self.init()

        scores = dict(scores or {})
        try:
            payload = ResultPayload(result_name=result_name, scores=scores)
            await self.request_transport.post_json(
                self.config.result_endpoint,
                payload.model_dump(),
                headers={SESSION_HEADER: self.session_id},
            )
            logger.info("Result saved", result_name=result_name)
            return True
        except (DeliveryError, ValidationError, ValueError) as e:
            logger.warning(
                "Result save failed, tracking as event",
                result_name=result_name,
                error=str(e)
            )
            self.track("quiz_result", {"result": result_name, "scores": scores})
            return False

    # Delivery

    async def flush(self, on_unload: bool = False) -> FlushResult:
        """
        Deliver one batch from the head of the queue.

        Records that every endpoint rejected are requeued and, outside
        teardown, arm the retry scheduler.

        Args:
            on_unload: Teardown flush; prefer the one-way transport
        """
        if not self.is_initialized:
            self.init()
        self._start_periodic_flush()

        if self.queue.is_empty():
            return FlushResult()

        result = await self.strategy.flush(self.config, on_unload=on_unload)
        if result.requeued and not on_unload:
            self.retry.arm()
        return result

    def _pending_rounds(self) -> int:
        return -(-len(self.queue) // self.config.max_batch_size)

    def _flush_all_beacon(self) -> FlushResult:
        # Stops at the first batch the transport refuses
        total = FlushResult(via=VIA_BEACON)
        for _ in range(self._pending_rounds()):
            result = self.strategy.flush_beacon(self.config)
            total = total.combine(result)
            if result.requeued or not result.taken:
                break
        return total

    async def _flush_all_request(self) -> FlushResult:
        total = FlushResult()
        for _ in range(self._pending_rounds()):
            result = await self.strategy.flush(self.config, on_unload=True)
            total = total.combine(result)
            if result.requeued or not result.taken:
                break
        return total

    def _wait_for_beacons(self, timeout: float) -> bool:
        if self.beacon_transport.drain(timeout):
            return True
        logger.warning("Beacons still in flight after teardown", timeout_seconds=timeout)
        return False

    def teardown(self, wait: Optional[float] = None) -> Optional[FlushResult]:
        """
        Final flush for page teardown.

        With a one-way transport every pending batch is handed off before
        returning, stopping at the first batch the transport refuses.
        Otherwise keepalive flushes are started on the running loop and
        None is returned; without a loop records stay queued.

        Args:
            wait: Seconds to wait for handed-off beacons to finish. None
                returns as soon as they are handed off.
        """
        if not self.is_initialized or self.queue.is_empty():
            return None

        if self.beacon_transport is not None:
            result = self._flush_all_beacon()
            if wait is not None and result.taken:
                self._wait_for_beacons(wait)
            return result

        if self._spawn(self._flush_all_request()) is None:
            logger.warning("No event loop for teardown flush, records stay queued",
                           pending=len(self.queue))
        return None

    def teardown_at_exit(self) -> Optional[FlushResult]:
        """
        Teardown for interpreter exit or a fatal error.

        Beacon threads do not outlive the interpreter, so this waits up
        to exit_timeout for them to finish.
        """
        return self.teardown(wait=self.exit_timeout)

    # Environment signals

    def notify_online(self) -> None:
        """Connectivity restored."""
        self._spawn(self.flush())

    def notify_visibility_change(self, hidden: bool) -> None:
        """Page visibility changed."""
        if hidden:
            self.teardown()

    def notify_page_hide(self) -> None:
        self.teardown()

    def notify_before_unload(self) -> None:
        self.teardown()
