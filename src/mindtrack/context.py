"""
Module: context.py
Description: Environment snapshots attached to captured events.

The host owns the notion of "current page". StaticContextProvider keeps
the values the host last reported and turns them into an EventContext
on every capture.
"""

import platform
from typing import Dict, Optional
from urllib.parse import parse_qs, urlsplit

import httpx

from mindtrack.models.event import EventContext, ScreenInfo, Viewport

UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

DEFAULT_USER_AGENT = (
    f"mindtrack python-httpx/{httpx.__version__} "
    f"({platform.system() or 'unknown'}; Python {platform.python_version()})"
)


def parse_utm(url: str) -> Dict[str, str]:
    """
    Extract non-empty UTM parameters from a URL's query string.

    Example:
        >>> parse_utm("https://x.io/quiz?utm_source=ads&utm_medium=&q=1")
        {'utm_source': 'ads'}
    """
    query = parse_qs(urlsplit(url or "").query)
    utm = {}
    for key in UTM_KEYS:
        values = query.get(key)
        if values and values[0]:
            utm[key] = values[0]
    return utm


def page_from_url(url: str) -> str:
    """Path component of a URL ('/' when the URL has none)."""
    if not url:
        return ""
    return urlsplit(url).path or "/"


class StaticContextProvider:
    """Builds EventContext from the values the host last reported."""

    def __init__(
        self,
        url: str = "",
        referrer: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        screen: Optional[ScreenInfo] = None,
        viewport: Optional[Viewport] = None,
    ):
        self.url = url
        self.referrer = referrer
        self.user_agent = user_agent
        self.screen = screen or ScreenInfo()
        self.viewport = viewport or Viewport()

    def navigate(self, url: str, referrer: Optional[str] = None) -> None:
        """Record a page change; the previous URL becomes the referrer."""
        self.referrer = self.url if referrer is None else referrer
        self.url = url

    def resize(self, width: int, height: int) -> None:
        """Record a viewport change."""
        self.viewport = Viewport(width=width, height=height)

    def __call__(self) -> EventContext:
        return EventContext(
            page=page_from_url(self.url),
            url=self.url,
            referrer=self.referrer,
            user_agent=self.user_agent,
            screen=self.screen,
            viewport=self.viewport,
            utm=parse_utm(self.url),
        )
