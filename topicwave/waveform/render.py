"""Coalescing, rate-limited redraw scheduling on the asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)


class RenderScheduler:
    """Run *draw* at most once per throttle window.

    Any number of :meth:`request_draw` calls inside a window collapse into a
    single trailing draw once the window has elapsed.  Only one timer is
    outstanding at a time.
    """

    def __init__(self, draw: Callable[[], object], throttle_ms: int = 0):
        self._draw = draw
        self._throttle_s = max(0, int(throttle_ms)) / 1000.0
        self._handle: asyncio.Handle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._dirty = False
        self._last_draw: float | None = None
        self.draw_count = 0
        self.draw_failures = 0

    @property
    def throttle_ms(self) -> int:
        return round(self._throttle_s * 1000)

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def request_draw(self) -> None:
        self._dirty = True
        if self._handle is not None:
            return
        self._schedule()

    def set_throttle_ms(self, throttle_ms: int) -> None:
        self._throttle_s = max(0, int(throttle_ms)) / 1000.0
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            self._schedule()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._dirty = False

    def _schedule(self) -> None:
        loop = self._loop = asyncio.get_running_loop()
        delay = self._remaining(loop.time())
        if delay <= 0:
            self._handle = loop.call_soon(self._fire)
        else:
            self._handle = loop.call_later(delay, self._fire)

    def _remaining(self, now: float) -> float:
        if self._last_draw is None or self._throttle_s <= 0:
            return 0.0
        return self._last_draw + self._throttle_s - now

    def _fire(self) -> None:
        self._handle = None
        if not self._dirty:
            return
        assert self._loop is not None
        now = self._loop.time()
        if self._remaining(now) > 0:
            self._schedule()
            return
        self._dirty = False
        self._last_draw = now
        try:
            self._draw()
            self.draw_count += 1
        except Exception:
            self.draw_failures += 1
            LOGGER.warning("Waveform draw failed", exc_info=True)
