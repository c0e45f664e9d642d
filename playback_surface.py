"""
playback_surface.py

One on-screen video slot that can host any registered back-end.

Public API
----------
load(backend_id, media_id, start, page) → elapsed ms (None on failure)
play() / stop()
seek_to(sec)               no-op + warning without seek support
restart_from_beginning()   only meaningful for loop-incapable back-ends
show() / hide()            stacking + opacity only, playback untouched
frame()                    latest decoded frame for the renderer

Capabilities are data, never back-end names: the orchestrator asks
`surface.capabilities.seekable`, not "is this the stream back-end".
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol

import config
from timing import Clock

logger = logging.getLogger(__name__)


# ── Capability model ────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Capabilities:
    seekable: bool
    native_loop: bool
    readiness_signaled: bool
    mute_before_play: bool = True


class BackendDriver(Protocol):
    """What a back-end has to offer; optional parts gated by Capabilities."""

    def create(self, media_id: str, start_seconds: float, page: int) -> None: ...
    def destroy(self) -> None: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def mute(self) -> None: ...
    def seek(self, seconds: float) -> None: ...
    def on_ready(self, callback: Optional[Callable[[], None]]) -> None: ...
    def on_ended(self, callback: Optional[Callable[[], None]]) -> None: ...


class StackOrder(enum.IntEnum):
    BACK = 1
    FRONT = 2


class TransitionDriver(Protocol):
    def apply_transition(self, duration_ms: float) -> None: ...
    def set_opacity(self, opacity: float) -> None: ...
    def set_stack_order(self, order: StackOrder) -> None: ...
    def flush(self) -> None: ...


@dataclass(frozen=True)
class Backend:
    id: str
    capabilities: Capabilities
    factory: Callable[[], BackendDriver]
    buffer_wait: float = config.STREAM_BUFFER_WAIT_SEC   # used when not readiness_signaled


# ── Surface ─────────────────────────────────────────────────────────────────
class PlaybackSurface:
    def __init__(self,
                 index: int,
                 backends: Mapping[str, Backend],
                 layer: TransitionDriver,
                 clock: Clock,
                 load_timeout: float = config.LOAD_TIMEOUT_SEC) -> None:
        self.index = index
        self.backends = dict(backends)
        self.layer = layer
        self.clock = clock
        self.load_timeout = load_timeout

        # state
        self.backend_id: Optional[str] = None
        self.media_id: Optional[str] = None
        self.page = 1
        self.ready = False
        self._driver: Optional[BackendDriver] = None
        self._pending: Optional[asyncio.Future] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def __repr__(self) -> str:
        return (f"<PlaybackSurface {self.index} backend={self.backend_id} "
                f"media={self.media_id} ready={self.ready}>")

    # ── capability queries ─────────────────────────────────────────────────
    @property
    def capabilities(self) -> Optional[Capabilities]:
        backend = self.backends.get(self.backend_id) if self.backend_id else None
        return backend.capabilities if backend else None

    @property
    def supports_seek(self) -> bool:
        caps = self.capabilities
        return bool(caps and caps.seekable)

    @property
    def loops_natively(self) -> bool:
        caps = self.capabilities
        return bool(caps and caps.native_loop)

    @property
    def has_resources(self) -> bool:
        return self._driver is not None

    @property
    def sar(self) -> float:
        return getattr(self._driver, "sar", None) or 1.0

    # ── loading ────────────────────────────────────────────────────────────
    async def load(self, backend_id: str, media_id: str,
                   start_seconds: float, page: int = 1) -> Optional[float]:
        """
        Start `media_id` at `start_seconds` and wait until it is buffered.

        Returns the measured load time in ms, or None when the driver could
        not even start loading.
        """
        backend = self.backends[backend_id]
        caps = backend.capabilities
        self._loop = asyncio.get_running_loop()
        started = self.clock.now_ms()

        if self._driver is not None and self.backend_id != backend_id:
            logger.info("[Surface %d] back-end %s → %s, replacing driver",
                        self.index, self.backend_id, backend_id)
            self._release()
        self._release_pending()

        self.backend_id = backend_id
        self.media_id = media_id
        self.page = page
        self.ready = False

        if self._driver is None:
            try:
                self._driver = backend.factory()
                self._driver.on_ended(self._handle_ended)
            except Exception:
                logger.warning("[Surface %d] %s driver creation failed",
                               self.index, backend_id, exc_info=True)
                self._driver = None
                return None

        if caps.readiness_signaled:
            self._pending = self._loop.create_future()
            self._call("on_ready", self._handle_ready)

        if not self._call("create", media_id, start_seconds, page):
            self._release_pending()
            return None
        if caps.mute_before_play:
            self._call("mute")

        if caps.readiness_signaled:
            try:
                await asyncio.wait_for(asyncio.shield(self._pending), self.load_timeout)
            except asyncio.TimeoutError:
                logger.warning("[Surface %d] no readiness from %s after %.1fs, continuing",
                               self.index, backend_id, self.load_timeout)
            finally:
                self._release_pending()
        else:
            await self.clock.sleep(backend.buffer_wait)

        if self._driver is None:
            logger.info("[Surface %d] stopped while loading %s", self.index, media_id)
            return None

        elapsed = self.clock.now_ms() - started
        self.ready = True
        logger.info("[Surface %d] %s:%s ready after %.0f ms (start %.2fs)",
                    self.index, backend_id, media_id, elapsed, start_seconds)
        return elapsed

    # ── driver callbacks (may arrive from a driver thread) ─────────────────
    def _handle_ready(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._resolve_ready)

    def _resolve_ready(self) -> None:
        fut = self._pending
        if fut is None or fut.done():
            return
        # hold the buffered frame until the orchestrator decides when to play
        self._call("pause")
        fut.set_result(None)

    def _handle_ended(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._resume_after_end)

    def _resume_after_end(self) -> None:
        if self._driver is None:
            return
        if self.loops_natively:
            logger.debug("[Surface %d] end of media, looping", self.index)
            self._call("seek", 0.0)
            self._call("play")
        else:
            logger.debug("[Surface %d] end of media (restart is scheduled by caller)",
                         self.index)

    # ── playback control ───────────────────────────────────────────────────
    def play(self) -> None:
        caps = self.capabilities
        if caps and caps.mute_before_play:
            self._call("mute")
        self._call("play")

    def stop(self) -> None:
        logger.debug("[Surface %d] stop", self.index)
        self._release()
        self.backend_id = None
        self.media_id = None
        self.ready = False

    def seek_to(self, seconds: float) -> None:
        if not self.supports_seek:
            logger.warning("[Surface %d] %s cannot seek, ignoring seek to %.2fs",
                           self.index, self.backend_id, seconds)
            return
        self._call("seek", seconds)

    def restart_from_beginning(self) -> None:
        if self._driver is None or self.media_id is None:
            return
        if self.loops_natively:
            logger.debug("[Surface %d] %s loops natively, restart skipped",
                         self.index, self.backend_id)
            return
        logger.info("[Surface %d] restarting %s from 0", self.index, self.media_id)
        self._call("create", self.media_id, 0.0, self.page)

    # ── visibility ─────────────────────────────────────────────────────────
    def show(self) -> None:
        self.layer.apply_transition(0)
        self.layer.set_stack_order(StackOrder.FRONT)
        self.layer.set_opacity(1)
        self.layer.flush()

    def hide(self) -> None:
        self.layer.apply_transition(0)
        self.layer.set_stack_order(StackOrder.BACK)
        self.layer.set_opacity(0)
        self.layer.flush()

    def frame(self) -> Any:
        decode = getattr(self._driver, "decode_frame", None)
        if decode is None:
            return None
        try:
            return decode()
        except Exception:
            logger.debug("[Surface %d] decode_frame failed", self.index, exc_info=True)
            return None

    # ── internals ──────────────────────────────────────────────────────────
    def _call(self, name: str, *args) -> bool:
        """Invoke a driver method; failures are logged, never raised."""
        drv = self._driver
        if drv is None:
            return False
        try:
            getattr(drv, name)(*args)
            return True
        except Exception:
            logger.warning("[Surface %d] %s.%s failed", self.index,
                           self.backend_id, name, exc_info=True)
            return False

    def _release_pending(self) -> None:
        fut, self._pending = self._pending, None
        if fut is not None and not fut.done():
            fut.set_result(None)

    def _release(self) -> None:
        self._release_pending()
        drv, self._driver = self._driver, None
        if drv is None:
            return
        for step in (lambda: drv.pause(),
                     lambda: drv.on_ready(None),
                     lambda: drv.on_ended(None),
                     lambda: drv.destroy()):
            try:
                step()
            except Exception:
                logger.warning("[Surface %d] driver release step failed",
                               self.index, exc_info=True)
