"""
orchestrator.py – dual-surface switch state machine

Two PlaybackSurfaces alternate: the active one is visible and playing, the
standby one is hidden.  A switch loads the standby surface ahead of the
requested position, lines it up with the operator's wall-clock target,
cross-fades it over the active one and retires the old surface.

    IDLE → LOADING → ALIGNING → TRANSITIONING → IDLE

Only one switch is ever in flight; anything arriving meanwhile is dropped
(BUSY), never queued.  The phase guard plus the single event loop is the
whole of the mutual exclusion.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from typing import Optional, Sequence, Set

import config
from events import SwitchRequest
from load_estimator import LoadTimeEstimator, format_stats
from playback_surface import PlaybackSurface, StackOrder
from timing import Clock

logger = logging.getLogger(__name__)


class SwitchPhase(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    ALIGNING = "aligning"
    TRANSITIONING = "transitioning"


class SwitchOutcome(enum.Enum):
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"


class SwitchOrchestrator:
    def __init__(self,
                 surfaces: Sequence[PlaybackSurface],
                 estimator: LoadTimeEstimator,
                 clock: Clock,
                 *,
                 new_media_ms: float = config.TRANSITION_NEW_MEDIA_MS,
                 same_media_ms: float = config.TRANSITION_SAME_MEDIA_MS,
                 wait_threshold_ms: float = config.SYNC_WAIT_THRESHOLD_MS,
                 late_threshold_ms: float = config.SYNC_LATE_THRESHOLD_MS,
                 loop_margin: float = config.LOOP_RESTART_MARGIN_SEC) -> None:
        if len(surfaces) != 2:
            raise ValueError("exactly two surfaces are required")
        self.surfaces = list(surfaces)
        self.estimator = estimator
        self.clock = clock
        self.new_media_ms = new_media_ms
        self.same_media_ms = same_media_ms
        self.wait_threshold_ms = wait_threshold_ms
        self.late_threshold_ms = late_threshold_ms
        self.loop_margin = loop_margin

        self.active_index = 0
        self.phase = SwitchPhase.IDLE
        self.switch_count = 0
        self.last_media_id: Optional[str] = None
        self.last_backend_id: Optional[str] = None
        self.loop_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    # ── roles ──────────────────────────────────────────────────────────────
    @property
    def active(self) -> PlaybackSurface:
        return self.surfaces[self.active_index]

    @property
    def standby(self) -> PlaybackSurface:
        return self.surfaces[1 - self.active_index]

    @property
    def transitioning(self) -> bool:
        return self.phase is not SwitchPhase.IDLE

    # ── startup ────────────────────────────────────────────────────────────
    async def prime(self, backend_id: str, media_id: str) -> None:
        """Put idle content on the active surface and hide the other one."""
        if self.transitioning:
            raise RuntimeError("cannot prime while a switch is in flight")
        self.phase = SwitchPhase.LOADING
        active, standby = self.active, self.standby
        standby.hide()
        try:
            elapsed = await active.load(backend_id, media_id, 0.0)
            if elapsed is not None:
                self.estimator.record_load_time(backend_id, elapsed)
            active.play()
            active.show()
            self.last_backend_id, self.last_media_id = backend_id, media_id
        finally:
            self.phase = SwitchPhase.IDLE
        logger.info("primed surface %d with %s:%s", active.index, backend_id, media_id)

    # ── entry points ───────────────────────────────────────────────────────
    def submit(self, request: SwitchRequest) -> None:
        """RequestSource observer: fire-and-forget a switch on the running loop."""
        task = asyncio.get_running_loop().create_task(self.switch_to(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def switch_to(self, request: SwitchRequest) -> SwitchOutcome:
        if self.transitioning:
            logger.info("switch in progress (%s), dropping request for %s:%s",
                        self.phase.value, request.backend_id, request.media_id)
            return SwitchOutcome.BUSY

        self.phase = SwitchPhase.LOADING
        self.switch_count += 1
        sid = self.switch_count
        request_time = self.clock.now_ms()

        nxt, cur = self.standby, self.active
        backend = request.backend_id
        try:
            is_same = (backend, request.media_id) == (self.last_backend_id, self.last_media_id)
            fade_ms = self.same_media_ms if is_same else self.new_media_ms
            lookahead = self.estimator.recommended_lookahead(backend)
            start_at = request.target_position + lookahead

            logger.info("[Switch #%d] %s:%s (%s) surface %d → %d, target %.2fs, "
                        "look-ahead %.2fs, fade %d ms", sid, backend, request.media_id,
                        "same media" if is_same else "new media",
                        cur.index, nxt.index, request.target_position, lookahead, fade_ms)

            # 1. load the hidden surface ahead of the target
            elapsed = await nxt.load(backend, request.media_id, start_at, request.page)
            if elapsed is not None:
                self.estimator.record_load_time(backend, elapsed)
            logger.info("[Switch #%d] loaded in %s ms", sid,
                        "?" if elapsed is None else f"{elapsed:.0f}")

            # 2. line up with the wall clock
            self.phase = SwitchPhase.ALIGNING
            if request.sync_enabled:
                await self._align(sid, request, nxt, lookahead)

            # 3. reveal
            self.phase = SwitchPhase.TRANSITIONING
            await self._cross_fade(sid, cur, nxt, fade_ms)

            # 4. swap roles
            self.active_index = 1 - self.active_index
            self.last_media_id = request.media_id
            self.last_backend_id = backend
        except Exception:
            logger.exception("[Switch #%d] failed, abandoning", sid)
            self._recover(nxt, cur)
            return SwitchOutcome.FAILED
        finally:
            self.phase = SwitchPhase.IDLE

        total = self.clock.now_ms() - request_time
        logger.info("[Switch #%d] done in %.0f ms", sid, total)

        self.arm_loop_restart(request, start_at, total / 1000.0)

        if self.switch_count % config.STATS_LOG_EVERY == 0:
            logger.info("\n%s", format_stats(self.estimator, backend))
        return SwitchOutcome.COMPLETED

    # ── steps ──────────────────────────────────────────────────────────────
    async def _align(self, sid: int, request: SwitchRequest,
                     nxt: PlaybackSurface, lookahead: float) -> None:
        deadline = request.wall_clock_target_ms + lookahead * 1000.0
        remaining = deadline - self.clock.now_ms()
        logger.debug("[Switch #%d] %.0f ms to deadline", sid, remaining)

        if remaining > self.wait_threshold_ms:
            logger.info("[Switch #%d] waiting %.0f ms for the deadline", sid, remaining)
            await self.clock.sleep(remaining / 1000.0)
        elif remaining < self.late_threshold_ms:
            if not nxt.supports_seek:
                logger.info("[Switch #%d] %.0f ms late, %s cannot seek, no correction",
                            sid, -remaining, request.backend_id)
                return
            late_ms = abs(remaining)
            corrected = request.target_position + lookahead + late_ms / 1000.0
            logger.warning("[Switch #%d] %.0f ms late, seeking to %.2fs",
                           sid, late_ms, corrected)
            nxt.seek_to(corrected)
            self.estimator.record_late(request.backend_id, late_ms)

    async def _cross_fade(self, sid: int, cur: PlaybackSurface,
                          nxt: PlaybackSurface, fade_ms: float) -> None:
        # old surface under, new one on top but transparent, committed now
        cur.layer.set_stack_order(StackOrder.BACK)
        nxt.layer.apply_transition(0)
        nxt.layer.set_opacity(0)
        nxt.layer.set_stack_order(StackOrder.FRONT)
        nxt.layer.flush()

        nxt.play()

        # transition and opacity must land in different frames or no fade plays
        await self.clock.next_frame()
        nxt.layer.apply_transition(fade_ms)
        await self.clock.next_frame()
        logger.debug("[Switch #%d] fade in over %d ms", sid, fade_ms)
        nxt.layer.set_opacity(1)

        await self.clock.sleep(fade_ms / 1000.0)

        cur.stop()
        cur.layer.apply_transition(0)
        cur.hide()

    def _recover(self, nxt: PlaybackSurface, cur: PlaybackSurface) -> None:
        try:
            nxt.stop()
            nxt.hide()
            cur.show()
        except Exception:
            logger.exception("recovery after failed switch also failed")

    # ── emulated looping ───────────────────────────────────────────────────
    def cancel_loop_restart(self) -> None:
        if self.loop_timer is not None:
            self.loop_timer.cancel()
            self.loop_timer = None
            logger.debug("[AutoLoop] cancelled")

    def arm_loop_restart(self, request: SwitchRequest,
                         start_position: float, elapsed: float) -> None:
        """
        Restart loop-incapable media when it should have reached its end.

        The previous timer is always cancelled first, whatever the new
        back-end is.
        """
        self.cancel_loop_restart()

        surface = self.active
        if surface.backend_id != request.backend_id or surface.loops_natively:
            return
        if not request.duration or request.duration <= 0:
            logger.info("[AutoLoop] no duration for %s, looping disabled", request.media_id)
            return

        remaining = request.duration - start_position - elapsed
        if not math.isfinite(remaining) or remaining <= 0:
            logger.info("[AutoLoop] nothing left to play (duration=%.1fs start=%.1fs "
                        "elapsed=%.1fs), skipping", request.duration, start_position, elapsed)
            return

        delay = remaining + self.loop_margin
        logger.info("[AutoLoop] restart %s in %.1fs", request.media_id, delay)
        self.loop_timer = self.clock.call_later(delay, lambda: self._loop_fired(request))

    def _loop_fired(self, request: SwitchRequest) -> None:
        self.loop_timer = None
        surface = self.active
        if (surface.backend_id != request.backend_id
                or surface.media_id != request.media_id):
            logger.debug("[AutoLoop] surface moved on, not restarting")
            return
        surface.restart_from_beginning()
        self.arm_loop_restart(request, 0.0, 0.0)
