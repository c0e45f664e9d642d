"""
load_estimator.py

Adaptive look-ahead estimator.

Every back-end keeps a sliding window of measured load times.  From that
window we derive mean / population std-dev / nearest-rank p95 and recommend
how many seconds ahead of the operator's position a surface should start
buffering, so that by the time it is ready it already sits on the right
frame.

Key points
----------
* Fewer than `MIN_SAMPLES_FOR_STATS` samples → the back-end's default
  look-ahead, whatever the samples say.
* `(p95 + std_dev * safety_margin) / 1000`, escalated ×1.2 once more than
  10 % of attempts have been late, clamped to the back-end's bounds.
* Derived stats are memoized per back-end and dropped on every new sample.
"""

from __future__ import annotations

import enum
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Mapping, Optional, Tuple

import config

logger = logging.getLogger(__name__)


# ── Data structures ─────────────────────────────────────────────────────────
class Quality(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    BAD = "bad"


_QUALITY_ORDER = (Quality.EXCELLENT, Quality.GOOD, Quality.FAIR, Quality.POOR)


@dataclass(frozen=True)
class BackendConfig:
    """Static look-ahead bounds (seconds) and quality bands for one back-end."""
    min_lookahead: float
    max_lookahead: float
    default_lookahead: float
    safety_margin: float
    quality_thresholds_ms: Tuple[float, float, float, float] = (500, 1000, 2000, 4000)

    def __post_init__(self) -> None:
        if min(self.min_lookahead, self.max_lookahead,
               self.default_lookahead, self.safety_margin) <= 0:
            raise ValueError("look-ahead bounds and safety margin must be positive")
        if not self.min_lookahead <= self.default_lookahead <= self.max_lookahead:
            raise ValueError(
                f"need min <= default <= max, got {self.min_lookahead} / "
                f"{self.default_lookahead} / {self.max_lookahead}"
            )
        th = tuple(self.quality_thresholds_ms)
        if len(th) != 4 or list(th) != sorted(th):
            raise ValueError("quality_thresholds_ms must be four ascending bounds")


@dataclass(frozen=True)
class LoadStats:
    mean: float       # ms
    std_dev: float    # ms, population
    p95: float        # ms, nearest rank


@dataclass
class BackendProfile:
    """Learned load behaviour of one back-end (lives as long as the process)."""
    capacity: int = config.MAX_LOAD_SAMPLES
    samples: Deque[float] = field(default_factory=deque)
    total_count: int = 0
    late_count: int = 0
    _stats: Optional[LoadStats] = field(default=None, repr=False)

    def add(self, elapsed_ms: float) -> None:
        self.samples.append(float(elapsed_ms))
        while len(self.samples) > self.capacity:
            self.samples.popleft()
        self.total_count += 1
        self._stats = None

    @property
    def late_rate(self) -> float:
        return self.late_count / self.total_count if self.total_count else 0.0


# ── Pure statistics ─────────────────────────────────────────────────────────
def nearest_rank(samples, q: float) -> float:
    """Ascending-sorted sample at floor(n*q), clamped to the last index."""
    ordered = sorted(samples)
    idx = min(int(math.floor(len(ordered) * q)), len(ordered) - 1)
    return ordered[idx]


def population_std_dev(samples) -> float:
    n = len(samples)
    if n < 2:
        return 0.0
    mean = sum(samples) / n
    return math.sqrt(sum((s - mean) ** 2 for s in samples) / n)


# ── Estimator ───────────────────────────────────────────────────────────────
class LoadTimeEstimator:
    """Per back-end load statistics and look-ahead recommendation."""

    def __init__(self,
                 configs: Mapping[str, BackendConfig] | None = None,
                 default_backend: str | None = None,
                 capacity: int = config.MAX_LOAD_SAMPLES) -> None:
        if configs is None:
            configs = {bid: BackendConfig(**t) for bid, t in config.BACKEND_TUNING.items()}
        if not configs:
            raise ValueError("at least one back-end configuration is required")
        self.configs: Dict[str, BackendConfig] = dict(configs)
        if default_backend is None:
            default_backend = (config.DEFAULT_BACKEND
                               if config.DEFAULT_BACKEND in self.configs
                               else next(iter(self.configs)))
        self.default_backend = default_backend
        self.profiles: Dict[str, BackendProfile] = {
            bid: BackendProfile(capacity=capacity) for bid in self.configs
        }

    # ---------------------------------------------------------------- lookup
    def _key(self, backend_id: str) -> str:
        # unknown ids share the default back-end's history
        return backend_id if backend_id in self.profiles else self.default_backend

    def profile(self, backend_id: str) -> BackendProfile:
        return self.profiles[self._key(backend_id)]

    def config_for(self, backend_id: str) -> BackendConfig:
        return self.configs[self._key(backend_id)]

    # -------------------------------------------------------------- recording
    def record_load_time(self, backend_id: str, elapsed_ms: float) -> None:
        prof = self.profile(backend_id)
        prof.add(elapsed_ms)
        logger.debug("[%s] load time %.0f ms (samples: %d)",
                     backend_id, elapsed_ms, len(prof.samples))

    def record_late(self, backend_id: str, lateness_ms: float) -> None:
        prof = self.profile(backend_id)
        prof.late_count = min(prof.late_count + 1, prof.total_count)
        logger.info("[%s] late by %.0f ms (late rate %.1f%%)",
                    backend_id, lateness_ms, prof.late_rate * 100)

    # ------------------------------------------------------------ statistics
    def stats(self, backend_id: str) -> LoadStats:
        prof = self.profile(backend_id)
        if prof._stats is None:
            prof._stats = self._compute(backend_id, prof)
        return prof._stats

    def _compute(self, backend_id: str, prof: BackendProfile) -> LoadStats:
        samples = list(prof.samples)
        if not samples:
            fallback = self.config_for(backend_id).default_lookahead * 1000.0
            return LoadStats(mean=fallback, std_dev=0.0, p95=fallback)
        return LoadStats(
            mean=sum(samples) / len(samples),
            std_dev=population_std_dev(samples),
            p95=nearest_rank(samples, 0.95),
        )

    def mean(self, backend_id: str) -> float:
        return self.stats(backend_id).mean

    def std_dev(self, backend_id: str) -> float:
        return self.stats(backend_id).std_dev

    def percentile(self, backend_id: str, q: float = 0.95) -> float:
        if q == 0.95:
            return self.stats(backend_id).p95
        samples = self.profile(backend_id).samples
        if not samples:
            return self.config_for(backend_id).default_lookahead * 1000.0
        return nearest_rank(samples, q)

    # -------------------------------------------------------- recommendation
    def recommended_lookahead(self, backend_id: str) -> float:
        """Seconds to add to the requested position before loading."""
        cfg = self.config_for(backend_id)
        prof = self.profile(backend_id)

        if len(prof.samples) < config.MIN_SAMPLES_FOR_STATS:
            return cfg.default_lookahead

        st = self.stats(backend_id)
        recommended = (st.p95 + st.std_dev * cfg.safety_margin) / 1000.0

        if (prof.total_count > config.LATE_MIN_ATTEMPTS
                and prof.late_rate > config.LATE_RATE_ESCALATION):
            recommended *= config.LATE_ESCALATION_GAIN
            logger.debug("[%s] late rate %.1f%%, escalating look-ahead",
                         backend_id, prof.late_rate * 100)

        return max(cfg.min_lookahead, min(cfg.max_lookahead, recommended))

    def quality(self, backend_id: str) -> Quality:
        # nothing measured yet, the fallback mean is not a load time
        if not self.profile(backend_id).samples:
            return Quality.BAD
        avg = self.mean(backend_id)
        for label, bound in zip(_QUALITY_ORDER, self.config_for(backend_id).quality_thresholds_ms):
            if avg < bound:
                return label
        return Quality.BAD

    # ------------------------------------------------------------ diagnostics
    def snapshot(self, backend_id: str) -> dict:
        """Plain-dict stats for /stats and the overlay (informational only)."""
        prof = self.profile(backend_id)
        st = self.stats(backend_id)
        success = ((prof.total_count - prof.late_count) / prof.total_count * 100
                   if prof.total_count else 100.0)
        return {
            "backend":     backend_id,
            "quality":     self.quality(backend_id).value,
            "samples":     len(prof.samples),
            "mean_ms":     round(st.mean, 1),
            "std_dev_ms":  round(st.std_dev, 1),
            "p95_ms":      round(st.p95, 1),
            "min_ms":      min(prof.samples) if prof.samples else None,
            "max_ms":      max(prof.samples) if prof.samples else None,
            "late":        prof.late_count,
            "total":       prof.total_count,
            "success_pct": round(success, 1),
            "lookahead_s": round(self.recommended_lookahead(backend_id), 3),
        }


def format_stats(estimator: LoadTimeEstimator, backend_id: str) -> str:
    """Boxed, human-readable stats table for one back-end."""
    snap = estimator.snapshot(backend_id)
    if not snap["samples"]:
        return f"[{backend_id}] no load data yet"

    w = 44
    bar = "═" * w

    def row(text: str) -> str:
        return f"║ {text:<{w - 2}} ║"

    lines = [
        f"╔{bar}╗",
        row(f"Load stats: {backend_id.upper()}"),
        f"╠{bar}╣",
        row(f"Quality: {snap['quality']:<10} Samples: {snap['samples']:>3}"),
        f"╠{bar}╣",
        row("Load time (ms)"),
        row(f"  Average: {snap['mean_ms']:>7.0f}   StdDev: {snap['std_dev_ms']:>7.0f}"),
        row(f"  Min: {snap['min_ms']:>7.0f}       Max: {snap['max_ms']:>7.0f}"),
        row(f"  95th percentile: {snap['p95_ms']:>7.0f}"),
        f"╠{bar}╣",
        row("Sync performance"),
        row(f"  Success rate: {snap['success_pct']:>5.1f}%"),
        row(f"  Late: {snap['late']:>3} / {snap['total']:>3}"),
        f"╠{bar}╣",
        row(f"Recommended look-ahead: {snap['lookahead_s']:.2f}s"),
        f"╚{bar}╝",
    ]
    return "\n".join(lines)
