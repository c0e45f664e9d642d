# =========  stream_player.py  =========
"""
PyAV network-stream back-end ("stream").

Behaves like an embedded web player: the start offset is baked in when the
stream is opened, playback starts on its own, there is no seek, no
readiness signal and no loop.  The caller waits a fixed buffering time and
restarts the stream itself when it should have ended.

Public API (BackendDriver)
--------------------------
create(media, start, page)   (re)open and autoplay from `start`
play() / pause()
mute()                       no-op, audio is never decoded here
on_ended(cb)                 fired from the decode thread at end of stream
destroy()
decode_frame()  → latest frame (HxWx3 uint8) or None
"""
import logging
import queue
import threading
import time

import av

import config

logger = logging.getLogger(__name__)

_OPEN_TIMEOUT = 10.0     # seconds for connect / read


class StreamDriver:
    def __init__(self, url_template: str = config.STREAM_URL_TEMPLATE):
        self.url_template = url_template
        self.sar = 1.0
        self.url = ""
        self._q, self._last = queue.Queue(maxsize=1), None
        self._playing = threading.Event()
        self._stop = threading.Event()
        self._thread = None
        self._ended_cb = None

    # ── BackendDriver ───────────────────────────────────────────────────────
    def create(self, media_id: str, start_seconds: float, page: int = 1):
        self._halt()
        self.url = self.url_template.format(media=media_id, page=page)
        self._stop = threading.Event()
        self._playing.set()                       # autoplay
        self._thread = threading.Thread(
            target=self._run,
            args=(self.url, max(0.0, start_seconds), self._stop, self._q),
            daemon=True,
        )
        self._thread.start()

    def play(self):
        self._playing.set()

    def pause(self):
        self._playing.clear()

    def mute(self):
        pass

    def seek(self, seconds: float):
        raise NotImplementedError("stream back-end cannot seek")

    def on_ready(self, callback):
        pass                                      # never signals readiness

    def on_ended(self, callback):
        self._ended_cb = callback

    def destroy(self):
        self._ended_cb = None
        self._halt()
        self.url = ""

    def decode_frame(self):
        while True:
            try:
                self._last = self._q.get_nowait()
            except queue.Empty:
                break
        return self._last

    # ── internals ───────────────────────────────────────────────────────────
    def _halt(self):
        """
        Signal the decode thread and detach from it without joining.

        Called on the event loop; a thread stuck in open or a network read
        exits on its own once it sees its stop event, and writes only to
        the queue it was started with.
        """
        self._stop.set()
        self._playing.set()                       # unblock a paused thread
        self._thread = None
        self._q = queue.Queue(maxsize=1)
        self._last = None

    def _run(self, url: str, start: float, stop: threading.Event, frames: queue.Queue):
        try:
            with av.open(url, timeout=_OPEN_TIMEOUT) as c:
                vs = c.streams.video[0]
                vs.thread_type = "AUTO"
                if vs.sample_aspect_ratio and not stop.is_set():
                    self.sar = float(vs.sample_aspect_ratio)
                if start > 0:
                    c.seek(int(start * av.time_base))   # lands on a key-frame

                t0 = base = None
                for frame in c.decode(vs):
                    if stop.is_set():
                        return
                    ts = frame.time
                    if ts is None or ts < start:
                        continue

                    if not self._playing.is_set():
                        paused_at = time.monotonic()
                        while not self._playing.wait(0.1):
                            if stop.is_set():
                                return
                        if t0 is not None:
                            t0 += time.monotonic() - paused_at

                    if t0 is None:
                        t0, base = time.monotonic(), ts
                    delay = (ts - base) - (time.monotonic() - t0)
                    if delay > 0 and stop.wait(delay):
                        return

                    arr = frame.to_ndarray(format="rgb24")
                    try:
                        frames.get_nowait()
                    except queue.Empty:
                        pass
                    frames.put_nowait(arr)
        except Exception as exc:
            if not stop.is_set():
                logger.warning("stream %s failed: %s", url, exc)
            return

        if not stop.is_set() and self._ended_cb:
            self._ended_cb()
