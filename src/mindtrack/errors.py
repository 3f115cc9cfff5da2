"""
Module: errors.py
Description: Exception hierarchy for the mindtrack agent.

None of these ever reach an instrumentation call site: the engine
catches them at the seams where a failure is recovered locally
(requeue, in-memory fallback, generic event path).
"""


class TrackerError(Exception):
    """Base class for all mindtrack errors."""


class DeliveryError(TrackerError):
    """The collector rejected a payload or could not be reached."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class StorageError(TrackerError):
    """A key-value store could not read or write a value."""


class StorageQuotaExceeded(StorageError):
    """A write would exceed the store's byte quota."""
