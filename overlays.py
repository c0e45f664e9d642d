"""
overlays.py

Pygame statistics panel for the VJ display (toggled with "s").
"""

from __future__ import annotations

import time

import pygame

# ── colours ────────────────────────────────────────────────────────────────
WHITE = (255, 255, 255)
GREEN = (0, 255, 0)
RED   = (255,  50, 50)
YEL   = (200, 200, 50)
BG    = (0, 0, 0, 180)

_QUALITY_COLOUR = {
    "excellent": GREEN,
    "good":      GREEN,
    "fair":      YEL,
    "poor":      RED,
    "bad":       RED,
}

pygame.font.init()


# ── helpers ────────────────────────────────────────────────────────────────
def _compute_font_sizes(h: int) -> tuple[int, int]:
    return max(12, h // 60), max(16, h // 45)


def _fmt_ms(v) -> str:
    return "   -" if v is None else f"{v:5.0f}"


def _panel(lines: list[tuple[str, tuple]], font: pygame.font.Font) -> pygame.Surface:
    widest = max(font.size(t)[0] for t, _ in lines)
    pbg = pygame.Surface(
        (widest + 20, len(lines) * (font.get_linesize() + 2) + 10),
        pygame.SRCALPHA,
    )
    pbg.fill(BG)
    y = 5
    for text, colour in lines:
        pbg.blit(font.render(text, True, colour), (10, y))
        y += font.get_linesize() + 2
    return pbg


# ── main entry point ───────────────────────────────────────────────────────
def draw_overlay(surface: pygame.Surface, estimator, orchestrator) -> None:
    sw, sh = surface.get_width(), surface.get_height()
    tiny_pt, small_pt = _compute_font_sizes(sh)
    FT = pygame.font.SysFont("monospace", tiny_pt)
    FS = pygame.font.SysFont("monospace", small_pt)

    # ── state badge ──────────────────────────────────────────────────────
    badge = (f"{time.strftime('%H:%M:%S')}  #{orchestrator.switch_count}  "
             f"{orchestrator.phase.value}")
    bsurf = _panel([(badge, YEL)], FS)
    surface.blit(bsurf, (10, 10))

    # ── per back-end panel ───────────────────────────────────────────────
    lines: list[tuple[str, tuple]] = []
    for bid in estimator.configs:
        snap = estimator.snapshot(bid)
        lines += [
            (f"{bid.upper():<10} {snap['quality']:<9} n={snap['samples']:>2}",
             _QUALITY_COLOUR[snap["quality"]]),
            (f"  mean {_fmt_ms(snap['mean_ms'])}  sd {_fmt_ms(snap['std_dev_ms'])}  "
             f"p95 {_fmt_ms(snap['p95_ms'])}", WHITE),
            (f"  late {snap['late']}/{snap['total']}  ok {snap['success_pct']:.0f}%  "
             f"ahead {snap['lookahead_s']:.2f}s", WHITE),
        ]
    active = orchestrator.active
    lines.append((f"active: {active.backend_id or '-'}:{active.media_id or '-'}", GREEN))

    pbg = _panel(lines, FT)
    surface.blit(pbg, (sw - pbg.get_width() - 10, 10))
