"""
Module: payload.py
Description: Outbound payload models for the collector endpoints.

Key Components:
- BatchPayload: Body of the primary events endpoint, always wrapped
  as {"batch": [...]}
- ResultPayload: Body of the dedicated results endpoint

Dependencies: pydantic, typing
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator

from .event import EventRecord, normalize_properties


class BatchPayload(BaseModel):
    """Batched events payload for the primary endpoint."""

    batch: List[Dict[str, Any]] = Field(..., min_length=1)

    @classmethod
    def from_records(cls, records: List[EventRecord]) -> "BatchPayload":
        """Build the payload from records, preserving their order."""
        return cls(batch=[record.to_batch_item() for record in records])


class ResultPayload(BaseModel):
    """Quiz result payload for the results endpoint."""

    result_name: str = Field(..., min_length=1, max_length=200)
    scores: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("scores", mode="before")
    @classmethod
    def validate_scores(cls, v: Any) -> Dict[str, Any]:
        """Copy and normalize score values."""
        return normalize_properties(v)
