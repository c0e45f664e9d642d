# config.py
"""
Configuration settings for the VJ sync display.
"""
FPS = 30

# ── Back-ends ──────────────────────────────────────────────────────────────

# Wire ids (the "platform" field of a switch request)
BACKEND_PLAYBIN = "playbin"   # GStreamer playbin: seekable, signals readiness, loops
BACKEND_STREAM  = "stream"    # PyAV network stream: no seek, no readiness, no loop

DEFAULT_BACKEND = BACKEND_PLAYBIN
DEFAULT_MEDIA   = "media/idle_loop.mp4"

# Per back-end look-ahead tuning (seconds) and quality bands (mean load, ms)
BACKEND_TUNING = {
    BACKEND_PLAYBIN: {
        "min_lookahead":     0.5,
        "max_lookahead":     5.0,
        "default_lookahead": 1.5,
        "safety_margin":     1.2,
        "quality_thresholds_ms": (500, 1000, 2000, 4000),
    },
    BACKEND_STREAM: {
        "min_lookahead":     2.0,     # streams are slow, never ask for less
        "max_lookahead":     15.0,
        "default_lookahead": 4.0,
        "safety_margin":     1.5,
        "quality_thresholds_ms": (2000, 4000, 6000, 10000),
    },
}

# Stream URL built from (media, page); "{media}" alone means the id is a URL
STREAM_URL_TEMPLATE = "{media}"

# ── Load-time estimator ────────────────────────────────────────────────────

MAX_LOAD_SAMPLES      = 15      # sliding window per back-end
MIN_SAMPLES_FOR_STATS = 3       # below this the default look-ahead is used
LATE_RATE_ESCALATION  = 0.10    # late/total ratio that triggers escalation
LATE_MIN_ATTEMPTS     = 5       # escalation needs strictly more attempts than this
LATE_ESCALATION_GAIN  = 1.2

# ── Sync / timing ──────────────────────────────────────────────────────────

SYNC_WAIT_THRESHOLD_MS = 50      # wait for the deadline above this
SYNC_LATE_THRESHOLD_MS = -100    # seek forward below this

STREAM_BUFFER_WAIT_SEC  = 2.0    # fixed buffering wait for non-signalling back-ends
LOOP_RESTART_MARGIN_SEC = 0.5    # slack before restarting a loop-incapable stream
LOAD_TIMEOUT_SEC        = 10.0   # upper bound on a readiness wait

# ── Transitions ────────────────────────────────────────────────────────────

TRANSITION_NEW_MEDIA_MS  = 6000  # cross-fade to different content
TRANSITION_SAME_MEDIA_MS = 4000  # position correction within the same media

STATS_LOG_EVERY = 5              # dump estimator stats every N switches

# ── Display ────────────────────────────────────────────────────────────────

FULLSCREEN    = True
WINDOWED_SIZE = (800, 600)
SHOW_OVERLAYS = False            # stats panel, toggled with "s"

# ── Web remote / logging ───────────────────────────────────────────────────

WEB_PORT              = 8080
DIAG_REFRESH_INTERVAL = 1.0

LOG_FILE   = "runtime.log"
LOG_LEVEL  = "INFO"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
