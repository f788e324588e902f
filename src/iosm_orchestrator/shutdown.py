"""Graceful shutdown handler for orchestration runs.

Handles both Windows (``signal.signal``) and Unix
(``loop.add_signal_handler``) signal registration with a reentrancy guard.
A received signal cancels the attached run task, which surfaces to the
caller as :class:`asyncio.CancelledError`.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.iosm_orchestrator.state import RunState

logger = logging.getLogger(__name__)


class GracefulShutdown:
    """Manages graceful shutdown on SIGINT / SIGTERM.

    Usage::

        shutdown = GracefulShutdown()
        shutdown.install()
        shutdown.set_state(run_state)
        shutdown.attach(asyncio.current_task())

        # At phase and cycle boundaries:
        shutdown.check("before cycle 3")
    """

    def __init__(self) -> None:
        self._should_stop = False
        self._state: RunState | None = None
        self._task: asyncio.Task | None = None
        self._handling = False  # reentrancy guard

    @property
    def should_stop(self) -> bool:
        """Whether a shutdown signal has been received."""
        return self._should_stop

    @should_stop.setter
    def should_stop(self, value: bool) -> None:
        self._should_stop = value

    def set_state(self, state: Any) -> None:
        """Inject the run state for emergency saving.

        This uses deferred injection so the shutdown handler can be
        created before the state object exists.

        Args:
            state: A ``RunState`` instance (or duck-typed equivalent).
        """
        self._state = state

    def attach(self, task: asyncio.Task | None) -> None:
        """Register the task to cancel when a signal arrives."""
        self._task = task

    def check(self, where: str = "") -> None:
        """Raise :class:`asyncio.CancelledError` once shutdown was requested."""
        if self._should_stop:
            raise asyncio.CancelledError(
                f"Shutdown requested{' ' + where if where else ''}"
            )

    def install(self) -> None:
        """Register signal handlers for SIGINT and SIGTERM.

        On Windows, uses ``signal.signal`` directly.
        On Unix, uses ``loop.add_signal_handler`` if a running event loop
        is available, falling back to ``signal.signal``.
        """
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)
        else:
            try:
                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, self._async_handler)
            except RuntimeError:
                # No running loop -- fall back to signal.signal
                signal.signal(signal.SIGINT, self._signal_handler)
                signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows / fallback)."""
        if self._handling:
            return  # reentrancy guard
        self._handling = True
        logger.warning("Received signal %s -- initiating graceful shutdown", signum)
        self._request_stop()
        self._handling = False

    def _async_handler(self) -> None:
        """Async-compatible signal handler (Unix)."""
        if self._handling:
            return  # reentrancy guard
        self._handling = True
        logger.warning("Received shutdown signal -- initiating graceful shutdown")
        self._request_stop()
        self._handling = False

    def _request_stop(self) -> None:
        self._should_stop = True
        self._emergency_save()
        if self._task is not None and not self._task.done():
            self._task.cancel("Signal received")

    def _emergency_save(self) -> None:
        """Attempt to save run state during emergency shutdown."""
        if self._state is None:
            logger.warning("No run state to save during emergency shutdown")
            return
        try:
            self._state.interrupted = True
            self._state.interrupt_reason = "Signal received"
            self._state.save()
            logger.info("Emergency state save completed")
        except Exception:
            logger.exception("Failed to save state during emergency shutdown")
