#!/usr/bin/env python3
"""
app.py – dual-surface VJ display

Two PlaybackSurfaces composited by pygame, switched by the
SwitchOrchestrator whenever the RequestSource delivers a new request.
The render loop runs on the same asyncio loop as the orchestrator, so a
"next frame" in the switch sequence is a real presented frame.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional

import pygame
from pygame.locals import *

import config
from events           import RequestSource
from load_estimator   import LoadTimeEstimator
from orchestrator     import SwitchOrchestrator
from overlays         import draw_overlay
from playback_surface import Backend, Capabilities, PlaybackSurface
from renderer         import render_surfaces
from stream_player    import StreamDriver
from timing           import Clock
from transitions      import FadeLayer
from video_player     import PlaybinDriver

logger = logging.getLogger(__name__)


# ── back-end registry ──────────────────────────────────────────────────────
def build_backends() -> Dict[str, Backend]:
    return {
        config.BACKEND_PLAYBIN: Backend(
            id=config.BACKEND_PLAYBIN,
            capabilities=Capabilities(seekable=True, native_loop=True,
                                      readiness_signaled=True, mute_before_play=True),
            factory=PlaybinDriver,
        ),
        config.BACKEND_STREAM: Backend(
            id=config.BACKEND_STREAM,
            capabilities=Capabilities(seekable=False, native_loop=False,
                                      readiness_signaled=False, mute_before_play=False),
            factory=StreamDriver,
            buffer_wait=config.STREAM_BUFFER_WAIT_SEC,
        ),
    }


# ── main application ───────────────────────────────────────────────────────
class VJDisplay:
    def __init__(self):
        # window ----------------------------------------------------------
        pygame.init()
        pygame.mouse.set_visible(False)
        self.screen = self._set_mode()

        # core state ------------------------------------------------------
        self.clock        = Clock(config.FPS)
        self.estimator    = LoadTimeEstimator()
        self.backends     = build_backends()
        self.surfaces     = [
            PlaybackSurface(i, self.backends, FadeLayer(f"surface-{i}"), self.clock)
            for i in (0, 1)
        ]
        self.orchestrator = SwitchOrchestrator(self.surfaces, self.estimator, self.clock)
        self.requests     = RequestSource()
        self.requests.subscribe(self.orchestrator.submit)

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.show_overlay = config.SHOW_OVERLAYS
        self.running      = True

    def _set_mode(self) -> pygame.Surface:
        return pygame.display.set_mode(
            (0, 0) if config.FULLSCREEN else config.WINDOWED_SIZE,
            pygame.FULLSCREEN if config.FULLSCREEN else 0,
        )

    # ── input ------------------------------------------------------------
    def _handle(self, event) -> None:
        if event.type == QUIT:
            self.running = False
        elif event.type == KEYDOWN:
            if event.key in (K_ESCAPE, K_q):
                self.running = False
            elif event.key == K_s:
                self.show_overlay ^= True
            elif event.key == K_f:
                config.FULLSCREEN ^= True
                self.screen = self._set_mode()
                pygame.mouse.set_visible(False)

    # ── main loop ---------------------------------------------------------
    async def run(self):
        self.loop = asyncio.get_running_loop()
        self.requests.bind(self.loop)
        self.clock.rendering = True

        primer = self.loop.create_task(
            self.orchestrator.prime(config.DEFAULT_BACKEND, config.DEFAULT_MEDIA))

        period = 1.0 / config.FPS
        try:
            while self.running:
                t0 = time.monotonic()
                for e in pygame.event.get():
                    self._handle(e)

                render_surfaces(self.screen, self.surfaces)
                if self.show_overlay:
                    draw_overlay(self.screen, self.estimator, self.orchestrator)

                pygame.display.flip()
                self.clock.frame_presented()
                await asyncio.sleep(max(0.0, period - (time.monotonic() - t0)))
        finally:
            primer.cancel()
            self.clock.rendering = False
            self.clock.frame_presented()
            self.orchestrator.cancel_loop_restart()
            for s in self.surfaces:
                s.stop()
            pygame.quit()
            logger.info("display closed after %d switches", self.orchestrator.switch_count)
