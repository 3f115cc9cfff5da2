"""
Module: queue.py
Description: Persisted FIFO of pending event records.

Every mutation rewrites the full snapshot in the long-lived store before
returning, so a restart recovers exactly the unsent tail. Mutations
never suspend: with a single event loop, take_batch() hands a flush a
slice no other flush can see.
"""

import json
from typing import Iterable, List

from pydantic import ValidationError

from mindtrack.models.event import EventRecord
from mindtrack.storage.kv import KeyValueStore, StorageKeys
from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)


class EventQueue:
    """
    FIFO of EventRecord mirrored to a key-value store.

    Persistence is best effort: a failing store is logged and the queue
    keeps working in memory.
    """

    def __init__(self, store: KeyValueStore, key: str = StorageKeys.PENDING_EVENTS):
        self.store = store
        self.key = key
        self._items: List[EventRecord] = []

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def snapshot(self) -> List[EventRecord]:
        """Pending records, head first."""
        return list(self._items)

    def _persist(self) -> bool:
        try:
            body = json.dumps([record.to_batch_item() for record in self._items])
            self.store.set(self.key, body)
            return True
        except Exception as e:
            logger.warning(
                "Failed to persist pending queue",
                queue_length=len(self._items),
                error=str(e),
                error_type=type(e).__name__
            )
            return False

    def rehydrate(self) -> int:
        """
        Replace the in-memory queue with the persisted snapshot.

        Unreadable snapshots count as empty; entries that are not valid
        records are dropped.

        Returns:
            Number of records recovered
        """
        try:
            raw = self.store.get(self.key)
        except Exception as e:
            logger.warning("Failed to read pending queue", error=str(e))
            raw = None

        items: List[EventRecord] = []
        if raw:
            try:
                data = json.loads(raw)
            except ValueError:
                logger.warning("Discarding malformed pending queue", size=len(raw))
                data = []

            if not isinstance(data, list):
                logger.warning("Discarding pending queue that is not a list")
                data = []

            for position, item in enumerate(data):
                try:
                    items.append(EventRecord.from_batch_item(item))
                except (ValidationError, ValueError) as e:
                    logger.warning(
                        "Dropping malformed pending record",
                        position=position,
                        error=str(e)
                    )

        self._items = items
        if items:
            logger.info("Pending queue rehydrated", queue_length=len(items))
        return len(items)

    def enqueue(self, record: EventRecord) -> None:
        """Append a record to the tail."""
        if not isinstance(record, EventRecord):
            raise ValueError("record must be an EventRecord instance")
        self._items.append(record)
        self._persist()

    def take_batch(self, max_size: int) -> List[EventRecord]:
        """
        Remove and return up to max_size records from the head.

        Raises:
            ValueError: If max_size is not positive
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if not self._items:
            return []

        batch = self._items[:max_size]
        del self._items[:len(batch)]
        self._persist()
        return batch

    def requeue(self, records: Iterable[EventRecord]) -> None:
        """Append records that failed delivery to the tail."""
        records = list(records)
        if not records:
            return
        self._items.extend(records)
        self._persist()
