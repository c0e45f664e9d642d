"""
web_remote.py  –  switch-request intake + diagnostics

Endpoints
---------
/switch         → POST a JSON switch request (or GET ?info=<json>); 204 on accept
/stats          → per back-end load statistics
/diag, /data    → host metrics plus the display's switch state
/log            → the runtime log file
"""

from __future__ import annotations

import asyncio
import http.server
import json
import logging
import os
import platform
import socketserver
import threading
import time
import traceback
import urllib.parse
from typing import TYPE_CHECKING, Any, Dict, Optional

import psutil

import config

if TYPE_CHECKING:
    from app import VJDisplay

logger = logging.getLogger(__name__)

_MAX_BODY = 64 * 1024


def _uptime(secs: float) -> str:
    days, rest = divmod(int(secs), 86400)
    hours, rest = divmod(rest, 3600)
    mins, secs = divmod(rest, 60)
    return f"{days}d {hours:02}:{mins:02}:{secs:02}"


class Diagnostics:
    """Host metrics (psutil) refreshed at most once per `interval`."""

    def __init__(self, interval: float = config.DIAG_REFRESH_INTERVAL) -> None:
        self.interval = interval
        self.started = time.monotonic()
        self.boot_time = psutil.boot_time()
        self.last_http_crash = ""
        self._refreshed_at = float("-inf")
        self._host: Dict[str, Any] = {"python_version": platform.python_version()}
        self._lock = threading.Lock()

    def host(self) -> Dict[str, Any]:
        with self._lock:
            now = time.monotonic()
            if now - self._refreshed_at >= self.interval:
                self._refreshed_at = now
                self._sample(now)
            return dict(self._host, last_http_crash=self.last_http_crash)

    def _sample(self, now: float) -> None:
        cores = psutil.cpu_percent(percpu=True)
        mem = psutil.virtual_memory()
        self._host.update(
            cpu_percent=round(sum(cores) / len(cores), 1) if cores else 0.0,
            cpu_per_core=[round(c, 1) for c in cores],
            mem_used_mb=mem.used // 1024 ** 2,
            mem_total_mb=mem.total // 1024 ** 2,
            script_uptime=_uptime(now - self.started),
            machine_uptime=_uptime(time.time() - self.boot_time),
        )
        try:
            self._host["load_avg"] = [round(x, 2) for x in os.getloadavg()]
        except OSError:
            self._host["load_avg"] = None


diagnostics = Diagnostics()


# ── reads that must happen on the event loop ───────────────────────────────
def _on_loop(app: "VJDisplay", fn):
    async def _call():
        return fn()
    return asyncio.run_coroutine_threadsafe(_call(), app.loop).result(timeout=2.0)


def _collect_stats(app: "VJDisplay") -> Dict[str, Any]:
    est = app.estimator
    return {bid: est.snapshot(bid) for bid in est.configs}


def _collect_display(app: "VJDisplay") -> Dict[str, Any]:
    orch = app.orchestrator
    active = orch.active
    return {
        "phase":        orch.phase.value,
        "switch_count": orch.switch_count,
        "active":       {"surface": active.index, "backend": active.backend_id,
                         "media": active.media_id},
        "loop_timer":   orch.loop_timer is not None,
    }


class ReusableTCPServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    daemon_threads      = True
    allow_reuse_address = True
    app: Optional["VJDisplay"] = None


class RemoteHandler(http.server.BaseHTTPRequestHandler):
    server: ReusableTCPServer

    def log_message(self, fmt, *args):
        logger.debug("%s - %s", self.address_string(), fmt % args)

    # ── routing ──────────────────────────────────────────────────────────
    def do_GET(self):
        url = urllib.parse.urlparse(self.path)
        app = self.server.app

        if url.path == "/switch":
            info = urllib.parse.parse_qs(url.query).get("info", [""])[0]
            if not info:
                return self.send_error(400, "Missing info")
            return self._accept(info)
        if url.path == "/stats":
            if app.loop is None:
                return self.send_error(503, "Display not running yet")
            return self._reply_json(_on_loop(app, lambda: _collect_stats(app)))
        if url.path in ("/diag", "/data"):
            body = {"host": diagnostics.host()}
            if app.loop is not None:
                body["display"] = _on_loop(app, lambda: _collect_display(app))
            return self._reply_json(body)
        if url.path == "/log":
            return self._reply_log()
        self.send_error(404, "Not found")

    def do_POST(self):
        if urllib.parse.urlparse(self.path).path != "/switch":
            return self.send_error(404, "Not found")
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            return self.send_error(400, "Bad Content-Length")
        if not 0 < length <= _MAX_BODY:
            return self.send_error(400, "Body missing or too large")
        return self._accept(self.rfile.read(length))

    # ── replies ──────────────────────────────────────────────────────────
    def _accept(self, raw):
        try:
            payload = json.loads(raw)
        except ValueError:
            return self.send_error(400, "Invalid JSON")
        if not isinstance(payload, dict):
            return self.send_error(400, "Expected a JSON object")
        # field validation happens on the loop, rejects are logged there
        try:
            self.server.app.requests.post_threadsafe(payload)
        except RuntimeError:
            return self.send_error(503, "Display not running yet")
        self.send_response(204)
        self.end_headers()

    def _reply(self, body: bytes, content_type: str):
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _reply_json(self, obj: Any):
        self._reply(json.dumps(obj).encode("utf-8"), "application/json")

    def _reply_log(self):
        try:
            with open(config.LOG_FILE, "rb") as f:
                data = f.read()
        except OSError:
            return self.send_error(404, "Log file not found")
        self._reply(data, "text/plain; charset=utf-8")


# ── bootstrap ──────────────────────────────────────────────────────────────
def start(app: "VJDisplay", port: int = config.WEB_PORT) -> threading.Thread:
    """Serve in a daemon thread; a crashed server is restarted after 1 s."""
    def _serve():
        while True:
            try:
                with ReusableTCPServer(("", port), RemoteHandler) as httpd:
                    httpd.app = app
                    httpd.serve_forever()
            except Exception:
                diagnostics.last_http_crash = traceback.format_exc()
                logger.exception("web remote crashed, restarting")
                time.sleep(1)

    thread = threading.Thread(target=_serve, name="web-remote", daemon=True)
    thread.start()
    logger.info("web remote listening on port %d", port)
    return thread
