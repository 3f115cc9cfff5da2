"""
Package: delivery
Description: Event delivery mechanisms for the mindtrack agent.

Provides the request and one-way (beacon) transports, the transmission
strategy with its legacy fallback, and the backoff retry scheduler.
"""

from .retry import RetryScheduler, RetryState
from .strategy import FlushResult, TransmissionStrategy
from .transport import (
    BeaconTransport,
    HttpRequestTransport,
    RequestTransport,
    ThreadBeaconTransport,
)

__all__ = [
    "BeaconTransport",
    "FlushResult",
    "HttpRequestTransport",
    "RequestTransport",
    "RetryScheduler",
    "RetryState",
    "ThreadBeaconTransport",
    "TransmissionStrategy",
]
