"""
Module: schemas.py
Description: Request and response models for the reference collector.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BatchItem(BaseModel):
    """One record of a batched events request; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    event: str = Field(..., min_length=1, max_length=200)
    ts: Optional[str] = None
    sessionId: Optional[str] = None
    page: Optional[str] = None


class BatchRequest(BaseModel):
    batch: List[BatchItem] = Field(..., min_length=1)


class TrackRequest(BaseModel):
    """Legacy single-event request."""

    event: str = Field(..., min_length=1, max_length=200)
    properties: Dict[str, Any] = Field(default_factory=dict)


class ResultRequest(BaseModel):
    result_name: str = Field(..., min_length=1, max_length=200)
    scores: Dict[str, Any] = Field(default_factory=dict)


class StoredEvent(BaseModel):
    id: str
    ts: str
    session_id: Optional[str] = None
    ip: Optional[str] = None
    page: Optional[str] = None
    type: str
    payload: Dict[str, Any]


class StoredResult(BaseModel):
    id: str
    ts: str
    session_id: Optional[str] = None
    result_name: str
    scores: Dict[str, Any]


class IngestResponse(BaseModel):
    ok: bool = True
    count: int


class EventListResponse(BaseModel):
    items: List[StoredEvent]
    total: int


class ResultListResponse(BaseModel):
    items: List[StoredResult]
    total: int
