# =========  timing.py  =========
"""
Wall-clock and scheduling helpers shared by the surfaces and the switch
orchestrator.

Everything time-related goes through one `Clock` instance so that the whole
switch sequence (load → wait → frame yield → fade) can be driven by a
virtual clock under test.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import config


def wall_clock_ms() -> float:
    """Milliseconds since the Unix epoch, the unit operators broadcast in."""
    return time.time() * 1000.0


class Clock:
    """
    Real clock bound to the running asyncio loop.

    The renderer calls `frame_presented()` after every flip; `next_frame()`
    resolves on the following one.  Without a renderer, a frame is simply
    one `1 / FPS` tick.
    """

    def __init__(self, fps: int = config.FPS) -> None:
        self.frame_period = 1.0 / fps
        self._frame_waiters: list[asyncio.Future] = []
        self.rendering = False

    def now_ms(self) -> float:
        return wall_clock_ms()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    async def next_frame(self) -> None:
        if not self.rendering:
            await asyncio.sleep(self.frame_period)
            return
        fut = asyncio.get_running_loop().create_future()
        self._frame_waiters.append(fut)
        await fut

    def frame_presented(self) -> None:
        waiters, self._frame_waiters = self._frame_waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)

    def call_later(self, delay: float,
                   callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(max(0.0, delay), callback)
