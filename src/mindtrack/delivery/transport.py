"""
Module: transport.py
Description: Network transports used to reach the collector.

Two capabilities, chosen by the caller rather than detected at runtime:

- RequestTransport: awaitable request/response POST. Used for every
  ordinary flush, and for teardown flushes when no one-way transport is
  available (keepalive=True shields the request from cancellation of
  the flushing task).
- BeaconTransport: fire-and-forget POST that returns as soon as the body
  is handed off. No response is observable.

Transports report failure by returning False; they never raise into
the delivery engine.
"""

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx

from mindtrack.errors import DeliveryError
from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}
DEFAULT_BEACON_MAX_BYTES = 64 * 1024


class RequestTransport(Protocol):
    """Awaitable POST transport."""

    async def send(self, url: str, body: str, keepalive: bool = False) -> bool:
        ...

    async def post_json(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        ...


class BeaconTransport(Protocol):
    """One-way POST transport; True means the body was handed off."""

    def send(self, url: str, body: str) -> bool:
        ...

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for handed-off bodies; True if all of them finished."""
        ...


def _validate_url(url: str) -> None:
    if not url or not isinstance(url, str):
        raise ValueError("url must be a non-empty string")
    if not url.startswith(("http://", "https://")):
        raise ValueError("url must be a valid HTTP/HTTPS URL")


class HttpRequestTransport:
    """
    httpx-based request transport.

    Handles delivery attempts with proper timeout and error handling for
    network issues. A shared AsyncClient may be supplied (and is then
    owned by the caller); otherwise one client is opened per request.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize request transport.

        Args:
            timeout_seconds: HTTP timeout in seconds
            client: Optional shared client
            headers: Extra headers sent with every request
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self.timeout = httpx.Timeout(timeout_seconds, connect=timeout_seconds)
        self.headers = dict(JSON_HEADERS)
        self.headers.update(headers or {})
        self._client = client

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def send(self, url: str, body: str, keepalive: bool = False) -> bool:
        """
        POST a serialized JSON body.

        Args:
            url: Absolute endpoint URL
            body: JSON document
            keepalive: Let the request finish even if the caller is cancelled

        Returns:
            True if the collector answered 2xx, False otherwise
        """
        _validate_url(url)
        if keepalive:
            return await asyncio.shield(self._send(url, body))
        return await self._send(url, body)

    async def _send(self, url: str, body: str) -> bool:
        try:
            async with self._session() as client:
                logger.debug("Attempting delivery", url=url, size=len(body))

                response = await client.post(url, content=body, headers=self.headers)
                response.raise_for_status()

                logger.debug(
                    "Delivery accepted",
                    url=url,
                    status_code=response.status_code
                )
                return True

        except httpx.TimeoutException:
            logger.warning("Delivery timeout", url=url)
            return False

        except httpx.HTTPStatusError as e:
            logger.warning(
                "Delivery HTTP error",
                url=url,
                status_code=e.response.status_code,
                response=e.response.text[:500]  # Truncate large responses
            )
            return False

        except httpx.NetworkError as e:
            logger.warning("Delivery network error", url=url, error=str(e))
            return False

        except Exception as e:
            logger.error(
                "Delivery failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__
            )
            return False

    async def post_json(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        """
        POST a JSON object and return the decoded response.

        A response body that is not a JSON object decodes to {}.

        Args:
            url: Absolute endpoint URL
            payload: JSON object
            headers: Extra headers for this request only

        Raises:
            DeliveryError: On timeout, network error or non-2xx status
        """
        _validate_url(url)
        try:
            async with self._session() as client:
                response = await client.post(
                    url, json=payload, headers={**self.headers, **(headers or {})}
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"{type(e).__name__}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}


class ThreadBeaconTransport:
    """
    One-way transport that posts from a daemon thread.

    send() only hands the body off and returns; the caller never waits
    for the network. Oversized bodies are refused, as browsers refuse
    beacons above their payload limit.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_bytes: int = DEFAULT_BEACON_MAX_BYTES,
        headers: Optional[Dict[str, str]] = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")

        self.timeout = httpx.Timeout(timeout_seconds, connect=timeout_seconds)
        self.max_bytes = max_bytes
        self.headers = dict(JSON_HEADERS)
        self.headers.update(headers or {})
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    def send(self, url: str, body: str) -> bool:
        """
        Hand a JSON body off for delivery.

        Returns:
            True if the body was handed off, False if it was refused
        """
        _validate_url(url)
        data = body.encode("utf-8")
        if len(data) > self.max_bytes:
            logger.warning(
                "Beacon payload too large",
                url=url,
                size=len(data),
                max_bytes=self.max_bytes
            )
            return False

        thread = threading.Thread(
            target=self._post, args=(url, data), name="mindtrack-beacon", daemon=True
        )
        try:
            thread.start()
        except RuntimeError as e:
            # No new threads at interpreter shutdown; post inline instead
            logger.debug("Beacon thread unavailable, posting inline", url=url, error=str(e))
            self._post(url, data)
            return True

        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        return True

    def _post(self, url: str, data: bytes) -> None:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, content=data, headers=self.headers)
            logger.debug("Beacon sent", url=url, status_code=response.status_code)
        except Exception as e:
            logger.debug("Beacon lost", url=url, error=str(e), error_type=type(e).__name__)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for beacons handed off so far.

        Returns:
            True if every beacon thread finished within timeout
        """
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
        return not any(thread.is_alive() for thread in threads)
