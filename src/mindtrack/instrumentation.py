"""
Module: instrumentation.py
Description: Global error hooks reporting through a Tracker.

Uncaught exceptions and unhandled asyncio task errors become 'error'
events. The previous hooks keep running after ours.
"""

import asyncio
import sys
import traceback
from typing import Any, Callable, Dict, Optional

from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)


def _origin(tb) -> Dict[str, Any]:
    frames = traceback.extract_tb(tb) if tb is not None else []
    if not frames:
        return {}
    last = frames[-1]
    return {"filename": last.filename, "lineno": last.lineno, "function": last.name}


def install_exception_hook(tracker) -> Callable[[], None]:
    """
    Report uncaught exceptions with tracker.track_error().

    Returns:
        A function restoring the previous sys.excepthook
    """
    previous = sys.excepthook

    def hook(exc_type, exc, tb):
        try:
            properties = {"error_type": exc_type.__name__}
            properties.update(_origin(tb))
            tracker.track_error(str(exc) or exc_type.__name__, properties)
            tracker.teardown_at_exit()
        except Exception as e:
            logger.error("Exception hook failed", error=str(e))
        previous(exc_type, exc, tb)

    sys.excepthook = hook

    def uninstall() -> None:
        if sys.excepthook is hook:
            sys.excepthook = previous

    return uninstall


def install_loop_exception_handler(
    tracker, loop: Optional[asyncio.AbstractEventLoop] = None
) -> Callable[[], None]:
    """
    Report unhandled asyncio errors with tracker.track_error().

    Returns:
        A function restoring the loop's previous handler
    """
    loop = loop or asyncio.get_running_loop()
    previous = loop.get_exception_handler()

    def handler(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        reason = str(exc) if exc is not None else context.get("message", "")
        tracker.track_error("Unhandled task exception", {"reason": reason})
        if previous is not None:
            previous(loop, context)
        else:
            loop.default_exception_handler(context)

    loop.set_exception_handler(handler)

    def uninstall() -> None:
        if loop.get_exception_handler() is handler:
            loop.set_exception_handler(previous)

    return uninstall
