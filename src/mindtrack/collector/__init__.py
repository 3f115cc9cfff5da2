"""
Package: collector
Description: Reference collector for local development and testing.

Accepts the agent's batched, legacy and result payloads and keeps them
in an in-memory store with filtered queries.
"""

from .app import create_app
from .store import CollectorStore

__all__ = ["CollectorStore", "create_app"]
