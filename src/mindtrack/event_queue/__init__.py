"""
Package: event_queue
Description: Ordered, persisted buffer of pending event records.

Named to avoid shadowing the standard library queue module.
"""

from .queue import EventQueue

__all__ = ["EventQueue"]
