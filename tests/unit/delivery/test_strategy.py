"""
Module: test_strategy.py
Description: Unit tests for the transmission strategy.

Covers the primary batch send, the per-record legacy fallback, tail
requeue of failures, teardown transports and disjoint flush slices.
"""

import asyncio
import json

import pytest

from mindtrack.delivery.strategy import TransmissionStrategy, encode_body
from mindtrack.event_queue.queue import EventQueue
from mindtrack.storage.kv import StorageKeys

EVENTS_URL = "http://collector.test/api/events"
TRACK_URL = "http://collector.test/api/track"


def names(records):
    return [record.event_name for record in records]


@pytest.fixture
def queue(store):
    return EventQueue(store)


@pytest.fixture
def fill(queue, make_record):
    def factory(*event_names):
        for name in event_names:
            queue.enqueue(make_record(name))
    return factory


class TestEncodeBody:
    """Test cases for payload serialization."""

    def test_compact_json(self):
        assert encode_body({"a": [1, 2]}) == '{"a":[1,2]}'

    def test_non_finite_number_rejected(self):
        assert encode_body({"score": float("nan")}) is None


class TestTransmissionStrategy:
    """Test cases for TransmissionStrategy.flush."""

    @pytest.mark.asyncio
    async def test_primary_success(self, queue, fill, config, request_transport):
        fill("a", "b")
        strategy = TransmissionStrategy(queue, request_transport)

        result = await strategy.flush(config)

        assert (result.taken, result.delivered_primary, result.requeued) == (2, 2, 0)
        assert result.via == "request"
        assert queue.is_empty()
        [payload] = request_transport.sent_to(EVENTS_URL)
        assert [item["event"] for item in payload["batch"]] == ["a", "b"]
        assert request_transport.sent_to(TRACK_URL) == []

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue, config, request_transport):
        result = await TransmissionStrategy(queue, request_transport).flush(config)

        assert result.taken == 0
        assert result.via is None
        assert request_transport.sent == []

    @pytest.mark.asyncio
    async def test_batch_size_limits_slice(self, queue, fill, config, request_transport):
        fill("a", "b", "c")
        config = config.model_copy(update={"max_batch_size": 2})

        await TransmissionStrategy(queue, request_transport).flush(config)

        assert names(queue.snapshot()) == ["c"]

    @pytest.mark.asyncio
    async def test_fallback_all_succeed(self, queue, fill, config, request_transport):
        fill("a", "b")
        request_transport.script(EVENTS_URL, False)

        result = await TransmissionStrategy(queue, request_transport).flush(config)

        assert (result.delivered_primary, result.delivered_fallback, result.requeued) == (0, 2, 0)
        legacy = request_transport.sent_to(TRACK_URL)
        assert [payload["event"] for payload in legacy] == ["a", "b"]
        assert legacy[0]["properties"]["sessionId"] == "sess_1705314600000_e5f6a7"
        assert queue.is_empty()

    @pytest.mark.asyncio
    async def test_fallback_partial_requeues_at_tail(self, queue, fill, config, request_transport, store):
        """Test a record failing both endpoints goes behind untaken records."""
        fill("a", "b", "c")
        config = config.model_copy(update={"max_batch_size": 2})
        request_transport.script(EVENTS_URL, False)
        request_transport.script(TRACK_URL, True, False)

        result = await TransmissionStrategy(queue, request_transport).flush(config)

        assert (result.taken, result.delivered_fallback, result.requeued) == (2, 1, 1)
        assert result.failed == 1
        assert names(queue.snapshot()) == ["c", "b"]
        persisted = json.loads(store.get(StorageKeys.PENDING_EVENTS))
        assert [item["event"] for item in persisted] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_requeued_record_is_identical(self, queue, fill, config, request_transport):
        fill("a")
        original = queue.snapshot()[0]
        request_transport.set_default(EVENTS_URL, False)
        request_transport.set_default(TRACK_URL, False)

        await TransmissionStrategy(queue, request_transport).flush(config)

        assert queue.snapshot()[0] is original

    @pytest.mark.asyncio
    async def test_serialization_failure_is_transport_failure(self, queue, make_record, config, request_transport):
        queue.enqueue(make_record("bad", score=float("inf")))

        result = await TransmissionStrategy(queue, request_transport).flush(config)

        assert result.requeued == 1
        assert request_transport.sent == []
        assert names(queue.snapshot()) == ["bad"]

    @pytest.mark.asyncio
    async def test_transport_exception_is_failure(self, queue, fill, config):
        class ExplodingTransport:
            async def send(self, url, body, keepalive=False):
                raise RuntimeError("bug in transport")

        fill("a")
        result = await TransmissionStrategy(queue, ExplodingTransport()).flush(config)

        assert result.requeued == 1
        assert names(queue.snapshot()) == ["a"]

    @pytest.mark.asyncio
    async def test_unload_without_beacon_uses_keepalive(self, queue, fill, config, request_transport):
        fill("a")

        result = await TransmissionStrategy(queue, request_transport).flush(config, on_unload=True)

        assert result.via == "request"
        [(url, _, keepalive)] = request_transport.sent
        assert url == EVENTS_URL
        assert keepalive is True

    @pytest.mark.asyncio
    async def test_overlapping_flushes_take_disjoint_slices(self, queue, fill, config, request_transport):
        """Test a flush started while another awaits the network sees only the rest."""
        fill("a", "b", "c", "d")
        config = config.model_copy(update={"max_batch_size": 2})
        request_transport.gate = asyncio.Event()
        strategy = TransmissionStrategy(queue, request_transport)

        first = asyncio.ensure_future(strategy.flush(config))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(strategy.flush(config))
        await asyncio.sleep(0)
        request_transport.gate.set()
        await asyncio.gather(first, second)

        batches = [[item["event"] for item in p["batch"]] for p in request_transport.sent_to(EVENTS_URL)]
        assert batches == [["a", "b"], ["c", "d"]]
        assert queue.is_empty()

    @pytest.mark.asyncio
    async def test_cancelled_flush_requeues_batch(self, queue, fill, config, request_transport):
        fill("a", "b")
        request_transport.gate = asyncio.Event()
        task = asyncio.ensure_future(TransmissionStrategy(queue, request_transport).flush(config))
        await asyncio.sleep(0)
        assert queue.is_empty()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert names(queue.snapshot()) == ["a", "b"]


class TestBeaconFlush:
    """Test cases for teardown flushes over the one-way transport."""

    @pytest.mark.asyncio
    async def test_unload_prefers_beacon(self, queue, fill, config, request_transport, beacon_transport):
        fill("a", "b")
        strategy = TransmissionStrategy(queue, request_transport, beacon_transport)

        result = await strategy.flush(config, on_unload=True)

        assert result.via == "beacon"
        assert result.delivered_primary == 2
        assert request_transport.sent == []
        [(url, payload)] = beacon_transport.sent
        assert url == EVENTS_URL
        assert [item["event"] for item in payload["batch"]] == ["a", "b"]

    def test_beacon_flush_is_synchronous(self, queue, fill, config, request_transport, beacon_transport):
        fill("a")
        result = TransmissionStrategy(queue, request_transport, beacon_transport).flush_beacon(config)

        assert result.delivered_primary == 1
        assert queue.is_empty()

    def test_beacon_falls_back_per_record(self, queue, fill, config, request_transport, beacon_transport):
        fill("a", "b")
        beacon_transport.script(EVENTS_URL, False)
        beacon_transport.script(TRACK_URL, True, False)

        result = TransmissionStrategy(queue, request_transport, beacon_transport).flush_beacon(config)

        assert (result.delivered_fallback, result.requeued) == (1, 1)
        assert names(queue.snapshot()) == ["b"]

    def test_refused_beacon_keeps_records(self, queue, fill, config, request_transport, beacon_transport, store):
        fill("a", "b")
        beacon_transport.accept = False

        result = TransmissionStrategy(queue, request_transport, beacon_transport).flush_beacon(config)

        assert result.requeued == 2
        persisted = json.loads(store.get(StorageKeys.PENDING_EVENTS))
        assert [item["event"] for item in persisted] == ["a", "b"]

    def test_beacon_flush_requires_transport(self, queue, config, request_transport):
        with pytest.raises(ValueError, match="no beacon transport configured"):
            TransmissionStrategy(queue, request_transport).flush_beacon(config)
