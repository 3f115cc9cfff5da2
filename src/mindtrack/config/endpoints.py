"""
Module: endpoints.py
Description: Collector endpoint resolution.

Maps the host the agent runs under to the collector's base URL and
derives the absolute URL of each logical endpoint from it.

Key Components:
- resolve_base_url(): Host name to base URL
- build_endpoints(): Base URL to events/results/legacy URLs
"""

from typing import NamedTuple, Optional, Sequence

LOCAL_BASE_URL = "http://localhost:3000"
PRODUCTION_BASE_URL = "https://mindtest-backend.onrender.com"

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")
SAME_ORIGIN_SUFFIXES = ("onrender.com",)

EVENTS_PATH = "/api/events"
RESULTS_PATH = "/api/results"
LEGACY_PATH = "/api/track"


class Endpoints(NamedTuple):
    """Absolute URLs of the collector's logical endpoints."""

    events: str
    results: str
    fallback: str


def _hostname(host: str) -> str:
    host = (host or "").strip().lower()
    if host.startswith("[") and "]" in host:
        return host[1:host.index("]")]
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host


def resolve_base_url(
    host: Optional[str],
    scheme: str = "https",
    local_base_url: str = LOCAL_BASE_URL,
    production_base_url: str = PRODUCTION_BASE_URL,
    same_origin_suffixes: Sequence[str] = SAME_ORIGIN_SUFFIXES,
) -> str:
    """
    Resolve the collector base URL for a host.

    Local development hosts talk to the local collector. Hosts served
    from the collector's own domain use the same origin. Everything else
    uses the hosted production collector.

    Args:
        host: Host the agent runs under, optionally with a port
        scheme: Scheme used for same-origin deployments

    Returns:
        Base URL without a trailing slash

    Example:
        >>> resolve_base_url("localhost:8080")
        'http://localhost:3000'
        >>> resolve_base_url("quiz.example.github.io")
        'https://mindtest-backend.onrender.com'
    """
    name = _hostname(host)
    if not name or name in LOCAL_HOSTS:
        return local_base_url.rstrip("/")

    for suffix in same_origin_suffixes:
        if name == suffix or name.endswith("." + suffix):
            return f"{scheme}://{(host or '').strip().lower()}"

    return production_base_url.rstrip("/")


def build_endpoints(base_url: str) -> Endpoints:
    """
    Build absolute endpoint URLs from a base URL.

    Raises:
        ValueError: If base_url is not an HTTP/HTTPS URL
    """
    if not base_url or not isinstance(base_url, str):
        raise ValueError("base_url must be a non-empty string")
    if not base_url.startswith(("http://", "https://")):
        raise ValueError("base_url must be a valid HTTP/HTTPS URL")

    base = base_url.rstrip("/")
    return Endpoints(
        events=base + EVENTS_PATH,
        results=base + RESULTS_PATH,
        fallback=base + LEGACY_PATH,
    )
