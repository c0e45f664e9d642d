# =========  video_player.py  =========
"""
GStreamer playbin back-end ("playbin"): seekable, signals readiness, loops.

Public API (BackendDriver)
--------------------------
create(media, start, page)   non-blocking; prerolls, seeks, then fires on_ready
play() / pause() / mute()
seek(sec)
on_ready(cb) / on_ended(cb)  called from the bus thread
destroy()
decode_frame()  → latest frame (HxWx3 uint8) or None
Properties
----------
.path  → current URI
.sar   → sample-aspect ratio
"""
import logging
import os
import queue
import threading

import gi
import numpy as np
gi.require_version("Gst", "1.0")
from gi.repository import Gst, GLib

logger = logging.getLogger(__name__)

# Pi: H.264 decoded on the GPU into DMAbuf, converted to RGB565 before appsink
_HW_SINK = (
    "h264parse ! v4l2h264dec capture-io-mode=dmabuf-import ! "
    "video/x-raw(memory:DMABuf),format=NV12 ! videoconvert ! "
    "video/x-raw,format=RGB16_LE ! queue max-size-buffers=1 leaky=downstream ! "
    "appsink name=frames"
)
_HW_CAPS = "video/x-raw,format=RGB16_LE"
_SW_CAPS = "video/x-raw,format=RGB"


def to_rgb(data: bytes, width: int, height: int) -> np.ndarray:
    """RGB565 or (possibly row-padded) RGB888 buffer → HxWx3 uint8."""
    if len(data) == width * height * 2:
        px = np.frombuffer(data, np.uint16).reshape((height, width))
        return np.stack((
            ((px >> 11) & 0x1F).astype(np.uint8) << 3,
            ((px >> 5) & 0x3F).astype(np.uint8) << 2,
            (px & 0x1F).astype(np.uint8) << 3,
        ), axis=-1)
    rows = np.frombuffer(data, np.uint8).reshape((height, len(data) // height))
    return np.ascontiguousarray(rows[:, : width * 3].reshape((height, width, 3)))


class PlaybinDriver:
    def __init__(self):
        Gst.init(None)
        self.player = Gst.ElementFactory.make("playbin", None)

        self._frames = queue.Queue(maxsize=1)
        self._last = None
        self._size = (0, 0)
        self._appsink = None
        self.player.set_property("video-sink", self._video_sink())
        self.player.set_property("audio-sink", Gst.ElementFactory.make("autoaudiosink", None))

        self.sar = 1.0
        self.path = ""
        self._start = 0.0
        self._seek_pending = False
        self._ready_sent = True
        self._ready_cb = None
        self._ended_cb = None

        # bus messages are dispatched by a private GLib loop
        self._ml = GLib.MainLoop()
        self._bus = self.player.get_bus()
        self._bus.add_signal_watch()
        self._bus_handler = self._bus.connect("message", self._on_bus_msg)
        self._ml_thread = threading.Thread(target=self._ml.run, name="playbin-bus", daemon=True)
        self._ml_thread.start()

    # ── video sink ──────────────────────────────────────────────────────────
    def _video_sink(self):
        try:
            bin_ = Gst.parse_bin_from_description(_HW_SINK, True)
            self._wire_appsink(bin_.get_by_name("frames"), _HW_CAPS)
            return bin_
        except Exception:
            logger.debug("hardware decode path unavailable, using software conversion")
        sink = Gst.ElementFactory.make("appsink", "frames")
        self._wire_appsink(sink, _SW_CAPS)
        return sink

    def _wire_appsink(self, sink, caps: str) -> None:
        for prop, value in (("emit-signals", True), ("max-buffers", 2),
                            ("drop", True), ("sync", True)):
            sink.set_property(prop, value)
        sink.set_property("caps", Gst.Caps.from_string(caps))
        sink.connect("new-sample", self._on_sample)
        self._appsink = sink

    # ── BackendDriver ───────────────────────────────────────────────────────
    def create(self, media_id: str, start_seconds: float, page: int = 1):
        """Load `media_id` (path or URI) paused at `start_seconds`."""
        self.player.set_state(Gst.State.NULL)
        self._drain()
        self._last = None

        uri = media_id if Gst.uri_is_valid(media_id) else \
            Gst.filename_to_uri(os.path.abspath(media_id))
        self.path = uri
        self._start = max(0.0, start_seconds)
        self._seek_pending = self._start > 0.0
        self._ready_sent = False

        self.player.set_property("uri", uri)
        if self.player.set_state(Gst.State.PAUSED) == Gst.StateChangeReturn.FAILURE:
            raise RuntimeError(f"cannot preroll {uri}")

    def play(self):
        self.player.set_state(Gst.State.PLAYING)

    def pause(self):
        self.player.set_state(Gst.State.PAUSED)

    def mute(self):
        self.player.set_property("mute", True)

    def seek(self, sec: float):
        self.player.seek_simple(Gst.Format.TIME,
                                Gst.SeekFlags.FLUSH | Gst.SeekFlags.ACCURATE,
                                int(max(0.0, sec) * Gst.SECOND))

    def on_ready(self, callback):
        self._ready_cb = callback

    def on_ended(self, callback):
        self._ended_cb = callback

    def destroy(self):
        self._ready_cb = self._ended_cb = None
        self.player.set_state(Gst.State.NULL)
        if self._bus_handler is not None:
            self._bus.disconnect(self._bus_handler)
            self._bus.remove_signal_watch()
            self._bus_handler = None
        # quit the bus loop but never join it here, this runs on the event loop
        ml, self._ml, self._ml_thread = self._ml, None, None
        if ml is not None:
            ml.quit()
        self._drain()
        self.path = ""

    def decode_frame(self):
        data = self._drain()
        width, height = self._size
        if data is not None and width and height:
            self._last = to_rgb(data, width, height)
        return self._last

    def get_position_sec(self):
        ok, pos = self.player.query_position(Gst.Format.TIME)
        return pos / Gst.SECOND if ok else 0.0

    # ── internals ───────────────────────────────────────────────────────────
    def _drain(self):
        """Empty the frame slot, returning the newest buffer (or None)."""
        newest = None
        while True:
            try:
                newest = self._frames.get_nowait()
            except queue.Empty:
                return newest

    def _read_caps(self):
        caps = self._appsink.get_static_pad("sink").get_current_caps()
        if caps is None:
            return
        st = caps.get_structure(0)
        self._size = (st.get_int("width")[1], st.get_int("height")[1])
        if st.has_field("pixel-aspect-ratio"):
            num, den = st.get_fraction("pixel-aspect-ratio")[-2:]
            self.sar = num / den if den else 1.0

    def _on_sample(self, sink):
        sample = sink.emit("pull-sample")
        if sample is None:
            return Gst.FlowReturn.OK
        buf = sample.get_buffer()
        ok, info = buf.map(Gst.MapFlags.READ)
        if ok:
            try:
                self._frames.put_nowait(bytes(info.data))
            except queue.Full:
                pass                               # renderer is behind, drop
            finally:
                buf.unmap(info)
        return Gst.FlowReturn.OK

    def _on_bus_msg(self, bus, msg):
        if msg.type == Gst.MessageType.ASYNC_DONE and not self._ready_sent:
            if self._seek_pending:
                # prerolled at 0, the flushing seek prerolls again
                self._seek_pending = False
                self.seek(self._start)
                return True
            self._read_caps()
            self._ready_sent = True
            if self._ready_cb:
                self._ready_cb()
        elif msg.type == Gst.MessageType.EOS:
            if self._ended_cb:
                self._ended_cb()
        elif msg.type == Gst.MessageType.ERROR:
            err, dbg = msg.parse_error()
            logger.error("GStreamer error on %s: %s (%s)", self.path, err, dbg)
        return True
