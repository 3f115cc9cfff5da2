"""
Package: storage
Description: Key-value persistence for the mindtrack agent.

Provides the long-lived store (identity, pending queue, user attributes)
and the session-scoped store (session identifier).
"""

from .kv import JsonFileStore, KeyValueStore, MemoryStore, StorageKeys

__all__ = [
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "StorageKeys",
]
