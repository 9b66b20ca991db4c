"""
Host signal routing.

SIGINT/SIGTERM handlers are installed once per process lifetime. Later calls
only swap the callback they route to.
"""
import asyncio
import signal
from typing import Callable, Optional

from .logging import get_logger

logger = get_logger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_installed_loop: Optional[asyncio.AbstractEventLoop] = None
_callback: Optional[Callable[[signal.Signals], None]] = None


def _dispatch(sig: signal.Signals) -> None:
    logger.warning("signal_received", signal=sig.name)
    if _callback is not None:
        _callback(sig)


def install_signal_handlers(callback: Callable[[signal.Signals], None]) -> bool:
    """
    Route SIGINT and SIGTERM to ``callback`` on the running loop.

    Returns:
        True if handlers were registered by this call, False if they were
        already in place (only the callback is replaced) or the platform
        does not support loop signal handlers
    """
    global _installed_loop, _callback
    _callback = callback

    loop = asyncio.get_running_loop()
    if _installed_loop is loop:
        return False

    try:
        for sig in HANDLED_SIGNALS:
            loop.add_signal_handler(sig, _dispatch, sig)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        logger.debug("signal_handlers_unavailable")
        return False

    _installed_loop = loop
    logger.debug("signal_handlers_installed", signals=[sig.name for sig in HANDLED_SIGNALS])
    return True


def remove_signal_handlers() -> None:
    """Detach the handlers and forget the callback."""
    global _installed_loop, _callback
    if _installed_loop is not None and not _installed_loop.is_closed():
        for sig in HANDLED_SIGNALS:
            _installed_loop.remove_signal_handler(sig)
    _installed_loop = None
    _callback = None
