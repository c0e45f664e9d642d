"""Shared pytest fixtures: a virtual clock, scripted drivers and layers."""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from load_estimator import BackendConfig, LoadTimeEstimator  # noqa: E402
from orchestrator import SwitchOrchestrator  # noqa: E402
from playback_surface import Backend, Capabilities, PlaybackSurface, StackOrder  # noqa: E402


T0_MS = 1_700_000_000_000.0

PRECISE = Capabilities(seekable=True, native_loop=True,
                       readiness_signaled=True, mute_before_play=True)
LOOPLESS = Capabilities(seekable=False, native_loop=False,
                        readiness_signaled=False, mute_before_play=False)

CONFIGS = {
    "A": BackendConfig(min_lookahead=0.5, max_lookahead=5.0,
                       default_lookahead=1.5, safety_margin=1.2),
    "B": BackendConfig(min_lookahead=1.0, max_lookahead=15.0,
                       default_lookahead=2.0, safety_margin=1.5,
                       quality_thresholds_ms=(2000, 4000, 6000, 10000)),
}


# =============================================================================
# Virtual time
# =============================================================================

class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self) -> bool:
        if self.cancelled or self.fired:
            return False
        self.fired = True
        self.callback()
        return True


class FakeClock:
    """Clock whose sleeps advance virtual time instantly and are logged."""

    def __init__(self, start_ms: float = T0_MS):
        self.now = start_ms
        self.log: List[tuple] = []
        self.timers: List[FakeTimer] = []

    def now_ms(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms

    async def sleep(self, seconds: float):
        self.log.append(("sleep", seconds))
        self.now += max(0.0, seconds) * 1000.0
        await asyncio.sleep(0)

    async def next_frame(self):
        self.log.append(("frame",))
        await asyncio.sleep(0)

    def call_later(self, delay: float, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def live_timers(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def index(self, entry: tuple) -> int:
        return self.log.index(entry)


# =============================================================================
# Scripted collaborators
# =============================================================================

class FakeDriver:
    def __init__(self, clock: FakeClock, name: str, load_ms: float = 0.0,
                 auto_ready: bool = True, fail_on=()):
        self.clock = clock
        self.name = name
        self.load_ms = load_ms
        self.auto_ready = auto_ready
        self.fail_on = set(fail_on)
        self.calls: List[tuple] = []
        self.ready_cb: Optional[Callable] = None
        self.ended_cb: Optional[Callable] = None
        self.destroyed = False

    def _rec(self, op, *args):
        if op in self.fail_on:
            raise RuntimeError(f"{op} failed")
        self.calls.append((op,) + args)
        self.clock.log.append((self.name, op) + args)

    def ops(self, op) -> List[tuple]:
        return [c[1:] for c in self.calls if c[0] == op]

    def create(self, media_id, start_seconds, page):
        self._rec("create", media_id, start_seconds, page)
        if self.auto_ready:
            self.clock.advance(self.load_ms)
            self.fire_ready()

    def fire_ready(self):
        if self.ready_cb:
            self.ready_cb()

    def fire_ended(self):
        if self.ended_cb:
            self.ended_cb()

    def destroy(self):
        self._rec("destroy")
        self.destroyed = True

    def play(self):
        self._rec("play")

    def pause(self):
        self._rec("pause")

    def mute(self):
        self._rec("mute")

    def seek(self, seconds):
        self._rec("seek", seconds)

    def on_ready(self, callback):
        self.ready_cb = callback

    def on_ended(self, callback):
        self.ended_cb = callback


class FakeLayer:
    def __init__(self, clock: FakeClock, name: str):
        self.clock = clock
        self.name = name
        self.opacity = 0.0
        self.transition_ms = 0.0
        self.stack_order = StackOrder.BACK
        self.flushes = 0

    def apply_transition(self, duration_ms):
        self.transition_ms = duration_ms
        self.clock.log.append((self.name, "transition", duration_ms))

    def set_opacity(self, opacity):
        self.opacity = opacity
        self.clock.log.append((self.name, "opacity", opacity))

    def set_stack_order(self, order):
        self.stack_order = order
        self.clock.log.append((self.name, "stack", order))

    def flush(self):
        self.flushes += 1
        self.clock.log.append((self.name, "flush"))


class Rig:
    """Two surfaces, an estimator and an orchestrator wired to fakes."""

    def __init__(self, load_ms: float = 2000.0, auto_ready: bool = True, fail_on=()):
        self.clock = FakeClock()
        self.load_ms = load_ms
        self.auto_ready = auto_ready
        self.fail_on = fail_on
        self.drivers: List[FakeDriver] = []
        self.backends = {
            "A": Backend("A", PRECISE, lambda: self._new_driver("A")),
            "B": Backend("B", LOOPLESS, lambda: self._new_driver("B"), buffer_wait=2.0),
        }
        self.layers = [FakeLayer(self.clock, f"layer{i}") for i in (0, 1)]
        self.surfaces = [
            PlaybackSurface(i, self.backends, self.layers[i], self.clock, load_timeout=1.0)
            for i in (0, 1)
        ]
        self.estimator = LoadTimeEstimator(CONFIGS, default_backend="A")
        self.orchestrator = SwitchOrchestrator(self.surfaces, self.estimator, self.clock)

    def _new_driver(self, backend_id: str) -> FakeDriver:
        drv = FakeDriver(
            self.clock, f"drv{len(self.drivers)}{backend_id}",
            load_ms=self.load_ms if backend_id == "A" else 0.0,
            auto_ready=self.auto_ready, fail_on=self.fail_on,
        )
        self.drivers.append(drv)
        return drv

    def driver_of(self, surface: PlaybackSurface) -> FakeDriver:
        return surface._driver


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def estimator() -> LoadTimeEstimator:
    return LoadTimeEstimator(CONFIGS, default_backend="A")


@pytest.fixture
def rig() -> Rig:
    return Rig()


@pytest.fixture
def make_rig():
    return Rig
