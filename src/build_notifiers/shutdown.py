"""Signal handling and shutdown coordination for the notifier process.

Usage:
    ```python
    async with GracefulShutdown() as shutdown:
        shutdown.register_cleanup(engine.close)
        await shutdown.wait()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

# Signals that request a graceful stop
SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)

CleanupCallback = Callable[[], Awaitable[Any] | Any]


class GracefulShutdown:
    """Traps SIGTERM/SIGINT and runs cleanup callbacks on exit.

    The first signal sets the shutdown event; a second one exits the
    process immediately. Cleanup callbacks run in reverse registration
    order when the context manager exits.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._previous_handlers: dict[signal.Signals, Any] = {}
        self._cleanup_callbacks: list[CleanupCallback] = []

    @property
    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._event.is_set()

    def register_cleanup(self, callback: CleanupCallback) -> None:
        """Register a sync or async callable to run during shutdown."""
        self._cleanup_callbacks.append(callback)

    def request_shutdown(self) -> None:
        """Request shutdown from application code."""
        if not self._event.is_set():
            logger.info("Shutdown requested")
            self._event.set()

    async def wait(self) -> None:
        """Block until shutdown is requested."""
        await self._event.wait()

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._event.is_set():
            logger.warning("Received %s again - forcing exit!", sig.name)
            sys.exit(128 + sig.value)
        logger.info("Received %s - shutting down...", sig.name)
        self._event.set()

    def _handle_signal_sync(self, signum: int, _frame: FrameType | None) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._handle_signal, signal.Signals(signum))

    def install_signal_handlers(self) -> None:
        """Install handlers for SHUTDOWN_SIGNALS on the running loop."""
        self._loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                self._loop.add_signal_handler(sig, self._handle_signal, sig)
            except NotImplementedError:
                # Event loops without add_signal_handler (Windows)
                self._previous_handlers[sig] = signal.signal(sig, self._handle_signal_sync)
            except (ValueError, OSError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)

    def remove_signal_handlers(self) -> None:
        """Remove installed handlers and restore the previous ones."""
        if self._loop is not None:
            for sig in SHUTDOWN_SIGNALS:
                with suppress(NotImplementedError, ValueError, OSError):
                    self._loop.remove_signal_handler(sig)
        for sig, previous in self._previous_handlers.items():
            with suppress(ValueError, OSError):
                signal.signal(sig, previous)
        self._previous_handlers.clear()

    async def run_cleanup_callbacks(self) -> None:
        """Run registered cleanup callbacks, logging any that fail."""
        for callback in reversed(self._cleanup_callbacks):
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("Cleanup callback failed: %s", e)

    async def __aenter__(self) -> GracefulShutdown:
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        self.remove_signal_handlers()
        await self.run_cleanup_callbacks()
