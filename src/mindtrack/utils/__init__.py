"""
Package: utils
Description: Shared helpers for the mindtrack agent.

Current utilities:
- logger: Structured logging configuration and helpers
- clock: Capture-time timestamps in the collector's wire format
"""

__all__ = []
