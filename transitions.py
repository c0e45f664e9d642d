# transitions.py
"""
Opacity / stacking state for one surface, driven like a CSS transition.

Style writes (`apply_transition`, `set_opacity`) are only *pending* until
they are committed, either by `flush()` or by the renderer at the start of
the next frame.  A committed opacity change animates from the currently
displayed alpha when a transition duration is in effect, and snaps
otherwise.  Writing the duration and the target opacity in the same frame
therefore animates from whatever was committed before, which is why the
orchestrator commits opacity 0 first and spaces the writes one frame apart.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from playback_surface import StackOrder


class FadeLayer:
    def __init__(self, name: str = "", now: Callable[[], float] = time.monotonic):
        self.name = name
        self._now = now
        self.stack_order = StackOrder.BACK

        # committed style
        self._transition_ms = 0.0
        self._from = 0.0
        self._to = 0.0
        self._t0 = 0.0
        self._span = 0.0

        # pending writes
        self._pending_transition: Optional[float] = None
        self._pending_opacity: Optional[float] = None

    # ── TransitionDriver ───────────────────────────────────────────────────
    def apply_transition(self, duration_ms: float) -> None:
        self._pending_transition = max(0.0, float(duration_ms))

    def set_opacity(self, opacity: float) -> None:
        self._pending_opacity = max(0.0, min(1.0, float(opacity)))

    def set_stack_order(self, order: StackOrder) -> None:
        self.stack_order = StackOrder(order)

    def flush(self) -> None:
        """Commit pending style writes now."""
        now = self._now()
        if self._pending_transition is not None:
            self._transition_ms = self._pending_transition
            self._pending_transition = None
        if self._pending_opacity is not None:
            target, self._pending_opacity = self._pending_opacity, None
            current = self.alpha_at(now)
            if self._transition_ms > 0 and target != current:
                self._from, self._to = current, target
                self._t0, self._span = now, self._transition_ms / 1000.0
            else:
                self._from = self._to = target
                self._span = 0.0

    # ── renderer side ──────────────────────────────────────────────────────
    def alpha_at(self, now: float) -> float:
        if self._span <= 0:
            return self._to
        p = (now - self._t0) / self._span
        if p >= 1.0:
            return self._to
        p = max(0.0, p)
        return self._from + (self._to - self._from) * p

    def alpha(self) -> float:
        """Commit (a new frame started) and return the alpha to draw with."""
        self.flush()
        return self.alpha_at(self._now())

    @property
    def animating(self) -> bool:
        return self._span > 0 and self._now() - self._t0 < self._span
