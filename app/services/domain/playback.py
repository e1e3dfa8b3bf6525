"""
Playback timers for the timeline controller.

A controller owns exactly one timer. Starting a timer that is already active
replaces the pending tick, so two periodic advances never run at once.
"""
from typing import Callable, Optional, Protocol
import asyncio
import logging

logger = logging.getLogger(__name__)


class PlaybackTimer(Protocol):
    """Single-slot cancellable periodic task."""

    @property
    def active(self) -> bool:
        ...

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        ...

    def cancel(self) -> None:
        ...


class AsyncioPlaybackTimer:
    """
    Periodic timer built on ``loop.call_later``.

    Ticks run on the event loop thread, so they never interleave with request
    handlers or other synchronous controller calls.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._interval_s = 0.0
        self._callback: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self, interval_s: float, callback: Callable[[], None]) -> None:
        """
        Schedule ``callback`` every ``interval_s`` seconds.

        Args:
            interval_s: Seconds between ticks (must be positive)
            callback: Called on every tick
        """
        if interval_s <= 0:
            raise ValueError(f"Playback interval must be positive, got {interval_s}")

        self.cancel()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._interval_s = interval_s
        self._callback = callback
        self._schedule()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self._loop.call_later(self._interval_s, self._tick)

    def _tick(self) -> None:
        # Reschedule first so the callback may cancel the next tick
        self._schedule()
        try:
            self._callback()
        except Exception:
            self.cancel()
            logger.error("Playback tick failed, timer stopped")
            raise
