"""
Module: store.py
Description: In-memory event and result store for the reference collector.

Rows mirror the collector's relational layout: events carry
(id, ts, session_id, ip, page, type, payload), results carry
(id, ts, session_id, result_name, scores). Queries return newest first.
"""

import threading
import uuid
from typing import Any, Dict, List, Optional

from mindtrack.collector.schemas import StoredEvent, StoredResult
from mindtrack.utils.clock import now_iso


def _in_range(ts: str, start: Optional[str], end: Optional[str]) -> bool:
    # ISO-8601 UTC strings of the same shape order lexicographically
    if start is not None and ts < start:
        return False
    if end is not None and ts > end:
        return False
    return True


class CollectorStore:
    """Thread-safe in-memory store."""

    def __init__(self):
        self._events: List[StoredEvent] = []
        self._results: List[StoredResult] = []
        self._lock = threading.Lock()

    def insert_event(
        self,
        event_type: str,
        payload: Dict[str, Any],
        ts: Optional[str] = None,
        session_id: Optional[str] = None,
        ip: Optional[str] = None,
        page: Optional[str] = None,
    ) -> StoredEvent:
        row = StoredEvent(
            id=uuid.uuid4().hex,
            ts=ts or now_iso(),
            session_id=session_id,
            ip=ip,
            page=page,
            type=event_type,
            payload=payload,
        )
        with self._lock:
            self._events.append(row)
        return row

    def _filter_events(self, event_type: str, start: Optional[str], end: Optional[str]) -> List[StoredEvent]:
        with self._lock:
            rows = list(self._events)
        return [
            row for row in rows
            if (event_type == "all" or row.type == event_type) and _in_range(row.ts, start, end)
        ]

    def query_events(
        self,
        event_type: str = "all",
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[StoredEvent]:
        rows = sorted(self._filter_events(event_type, start, end), key=lambda r: r.ts, reverse=True)
        return rows[offset:offset + limit]

    def count_events(
        self, event_type: str = "all", start: Optional[str] = None, end: Optional[str] = None
    ) -> int:
        return len(self._filter_events(event_type, start, end))

    def insert_result(
        self,
        result_name: str,
        scores: Dict[str, Any],
        ts: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> StoredResult:
        row = StoredResult(
            id=uuid.uuid4().hex,
            ts=ts or now_iso(),
            session_id=session_id,
            result_name=result_name,
            scores=scores,
        )
        with self._lock:
            self._results.append(row)
        return row

    def query_results(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[StoredResult]:
        with self._lock:
            rows = [row for row in self._results if _in_range(row.ts, start, end)]
        rows.sort(key=lambda r: r.ts, reverse=True)
        return rows[offset:offset + limit]

    def count_results(self, start: Optional[str] = None, end: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for row in self._results if _in_range(row.ts, start, end))
