#!/usr/bin/env python3
"""
events.py  – switch requests and the hub that delivers them

• `SwitchRequest` is the immutable "play X at position P at wall-clock T"
  message an operator broadcasts.
• `RequestSource` holds the latest request and notifies observers
  synchronously whenever a new one arrives.  Any thread (web remote,
  network listener, …) can inject raw payloads through `post_threadsafe`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Union

import config

logger = logging.getLogger(__name__)

Payload = Union["SwitchRequest", Mapping[str, Any], str, bytes]

# wire key → accepted aliases (first one is the operator wire format)
_KEYS = {
    "backend_id":           ("platform", "backend_id", "backend"),
    "media_id":             ("videoId", "media_id", "media"),
    "target_position":      ("targetTime", "target_position"),
    "wall_clock_target_ms": ("systemUnixTime", "wall_clock_target_ms"),
    "sync_enabled":         ("syncEnabled", "sync_enabled"),
    "page":                 ("page",),
    "duration":             ("duration",),
}


def _pick(data: Mapping[str, Any], field_name: str, default: Any = None) -> Any:
    for key in _KEYS[field_name]:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class SwitchRequest:
    backend_id: str
    media_id: str
    target_position: float              # seconds into the media
    wall_clock_target_ms: float         # epoch ms at which target_position is "now"
    sync_enabled: bool = True
    page: int = 1
    duration: Optional[float] = None    # seconds, needed for emulated looping

    def __post_init__(self) -> None:
        if not self.media_id:
            raise ValueError("media_id is required")
        for name in ("target_position", "wall_clock_target_ms"):
            if not math.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be finite, got {getattr(self, name)}")
        if self.duration is not None and not math.isfinite(self.duration):
            raise ValueError(f"duration must be finite, got {self.duration}")
        if self.target_position < 0:
            raise ValueError(f"target_position must be >= 0, got {self.target_position}")
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "SwitchRequest":
        """Build from the operator's JSON object (camelCase wire keys or snake_case)."""
        media = _pick(data, "media_id")
        if media is None:
            raise ValueError("payload has no videoId / media_id")
        wall = _pick(data, "wall_clock_target_ms")
        if wall is None:
            raise ValueError("payload has no systemUnixTime / wall_clock_target_ms")
        duration = _pick(data, "duration")
        return cls(
            backend_id=str(_pick(data, "backend_id", config.DEFAULT_BACKEND)),
            media_id=str(media),
            target_position=float(_pick(data, "target_position", 0.0)),
            wall_clock_target_ms=float(wall),
            sync_enabled=bool(_pick(data, "sync_enabled", True)),
            page=int(_pick(data, "page", 1)),
            duration=float(duration) if duration is not None else None,
        )


Observer = Callable[[SwitchRequest], None]


class RequestSource:
    """Latest-value holder with synchronous observers."""

    def __init__(self) -> None:
        self._observers: List[Observer] = []
        self.latest: Optional[SwitchRequest] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ── wiring ─────────────────────────────────────────────────────────────
    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Loop that `post_threadsafe` hands payloads to."""
        self._loop = loop

    # ── delivery ───────────────────────────────────────────────────────────
    def publish(self, payload: Payload) -> Optional[SwitchRequest]:
        """Parse, replace the latest value and notify.  Bad payloads are dropped."""
        try:
            request = self._parse(payload)
        except (ValueError, TypeError, KeyError) as exc:
            logger.error("switch request rejected: %s (%r)", exc, payload)
            return None

        self.latest = request
        logger.info("switch request: %s:%s @%.2fs", request.backend_id,
                    request.media_id, request.target_position)
        for observer in list(self._observers):
            try:
                observer(request)
            except Exception:
                logger.exception("request observer %r failed", observer)
        return request

    def post_threadsafe(self, payload: Payload) -> None:
        """Any thread may call this, e.g. the HTTP handler."""
        if self._loop is None:
            raise RuntimeError("RequestSource is not bound to an event loop")
        self._loop.call_soon_threadsafe(self.publish, payload)

    # ── internal ───────────────────────────────────────────────────────────
    @staticmethod
    def _parse(payload: Payload) -> SwitchRequest:
        if isinstance(payload, SwitchRequest):
            return payload
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        if isinstance(payload, str):
            payload = json.loads(payload)      # JSONDecodeError is a ValueError
        if not isinstance(payload, Mapping):
            raise TypeError(f"expected a JSON object, got {type(payload).__name__}")
        return SwitchRequest.from_payload(payload)
