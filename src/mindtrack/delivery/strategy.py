"""
Module: strategy.py
Description: Transmission strategy for pending event records.

A flush takes one batch off the queue before its first network call,
so overlapping flushes always work on disjoint slices. Delivery then
degrades step by step:

1. The whole batch to the primary events endpoint as {"batch": [...]}.
2. Each record on its own to the legacy endpoint in its flat shape.
3. Records the legacy endpoint also rejects go back to the queue tail.

Teardown flushes use the one-way transport when one is configured and
never wait for a response.
"""

import asyncio
import json
from typing import Any, List, Optional

from pydantic import BaseModel

from mindtrack.config.settings import TrackerConfig
from mindtrack.delivery.transport import BeaconTransport, RequestTransport
from mindtrack.event_queue.queue import EventQueue
from mindtrack.models.event import EventRecord
from mindtrack.models.payload import BatchPayload
from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)

VIA_REQUEST = "request"
VIA_BEACON = "beacon"


class FlushResult(BaseModel):
    """
    Outcome of one flush.

    Attributes:
        taken: Records removed from the queue by this flush
        delivered_primary: Records accepted by the batched endpoint
        delivered_fallback: Records accepted by the legacy endpoint
        requeued: Records pushed back to the queue tail
        via: Transport used ('request', 'beacon'), None for an empty flush
    """

    taken: int = 0
    delivered_primary: int = 0
    delivered_fallback: int = 0
    requeued: int = 0
    via: Optional[str] = None

    @property
    def failed(self) -> int:
        return self.requeued

    @property
    def delivered(self) -> int:
        return self.delivered_primary + self.delivered_fallback

    def combine(self, other: "FlushResult") -> "FlushResult":
        """Totals of two consecutive flushes."""
        return FlushResult(
            taken=self.taken + other.taken,
            delivered_primary=self.delivered_primary + other.delivered_primary,
            delivered_fallback=self.delivered_fallback + other.delivered_fallback,
            requeued=self.requeued + other.requeued,
            via=other.via or self.via,
        )


def encode_body(payload: Any) -> Optional[str]:
    """
    Serialize a payload to strict JSON.

    Returns:
        The JSON document, or None when the payload cannot be encoded
    """
    try:
        return json.dumps(payload, allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        logger.warning("Payload serialization failed", error=str(e))
        return None


class TransmissionStrategy:
    """Delivers batches taken from an EventQueue."""

    def __init__(
        self,
        queue: EventQueue,
        request_transport: RequestTransport,
        beacon_transport: Optional[BeaconTransport] = None,
    ):
        self.queue = queue
        self.request_transport = request_transport
        self.beacon_transport = beacon_transport

    async def _send(self, url: str, body: str, keepalive: bool) -> bool:
        try:
            return await self.request_transport.send(url, body, keepalive=keepalive)
        except Exception as e:
            logger.error(
                "Transport raised",
                url=url,
                error=str(e),
                error_type=type(e).__name__
            )
            return False

    def _beacon(self, url: str, body: str) -> bool:
        try:
            return self.beacon_transport.send(url, body)
        except Exception as e:
            logger.error(
                "Beacon transport raised",
                url=url,
                error=str(e),
                error_type=type(e).__name__
            )
            return False

    async def flush(self, config: TrackerConfig, on_unload: bool = False) -> FlushResult:
        """
        Deliver one batch from the head of the queue.

        Args:
            config: Endpoints and batch size
            on_unload: Teardown flush; prefer the one-way transport

        Returns:
            FlushResult for the batch
        """
        if on_unload and self.beacon_transport is not None:
            return self.flush_beacon(config)

        batch = self.queue.take_batch(config.max_batch_size)
        if not batch:
            return FlushResult()

        try:
            body = encode_body(BatchPayload.from_records(batch).model_dump())
            if body is not None and await self._send(
                config.events_endpoint, body, on_unload
            ):
                logger.info("Batch delivered", batch_size=len(batch), via=VIA_REQUEST)
                return FlushResult(
                    taken=len(batch), delivered_primary=len(batch), via=VIA_REQUEST
                )
        except asyncio.CancelledError:
            self.queue.requeue(batch)
            raise

        logger.warning(
            "Primary endpoint rejected batch, falling back",
            batch_size=len(batch),
            endpoint=config.events_endpoint
        )

        delivered = 0
        failed: List[EventRecord] = []
        for index, record in enumerate(batch):
            try:
                body = encode_body(record.to_legacy_payload())
                ok = body is not None and await self._send(
                    config.fallback_endpoint, body, on_unload
                )
            except asyncio.CancelledError:
                self.queue.requeue(batch[index:])
                raise

            if ok:
                delivered += 1
            else:
                failed.append(record)
                self.queue.requeue([record])
                logger.warning(
                    "Record requeued",
                    event_name=record.event_name,
                    queue_length=len(self.queue)
                )

        return FlushResult(
            taken=len(batch),
            delivered_fallback=delivered,
            requeued=len(failed),
            via=VIA_REQUEST,
        )

    def flush_beacon(self, config: TrackerConfig) -> FlushResult:
        """
        Deliver one batch through the one-way transport without waiting.

        Records the transport refuses stay queued for the next start.

        Raises:
            ValueError: If no one-way transport is configured
        """
        if self.beacon_transport is None:
            raise ValueError("no beacon transport configured")

        batch = self.queue.take_batch(config.max_batch_size)
        if not batch:
            return FlushResult()

        body = encode_body(BatchPayload.from_records(batch).model_dump())
        if body is not None and self._beacon(config.events_endpoint, body):
            logger.info("Batch handed off", batch_size=len(batch), via=VIA_BEACON)
            return FlushResult(taken=len(batch), delivered_primary=len(batch), via=VIA_BEACON)

        delivered = 0
        failed: List[EventRecord] = []
        for record in batch:
            body = encode_body(record.to_legacy_payload())
            if body is not None and self._beacon(config.fallback_endpoint, body):
                delivered += 1
            else:
                failed.append(record)

        self.queue.requeue(failed)
        if failed:
            logger.warning("Beacon refused records, kept queued", requeued=len(failed))

        return FlushResult(
            taken=len(batch),
            delivered_fallback=delivered,
            requeued=len(failed),
            via=VIA_BEACON,
        )
