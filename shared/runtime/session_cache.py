"""Explicitly owned, TTL-bounded session cache for polling adapters."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.runtime.session_cache")

DEFAULT_TTL_SECONDS = 15 * 60


@dataclass
class SessionEntry:
    video_id: Optional[str] = None
    emote_map: Dict[str, str] = field(default_factory=dict)
    stored_at: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)


class SessionCache:
    """
    Per-channel cache of resolved video id and emote catalog snapshot.

    The owner creates it, passes it to the adapter that needs it, and
    decides when entries die: either by TTL or by an explicit
    `invalidate()` (no live content, lost cursor).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._entries: Dict[str, SessionEntry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def _key(channel: str) -> str:
        return (channel or "").strip().lower()

    def get(self, channel: str) -> Optional[SessionEntry]:
        key = self._key(channel)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self.ttl_seconds:
                del self._entries[key]
                log.debug(f"Session for '{key}' expired")
                return None
            return entry

    def put(
        self,
        channel: str,
        *,
        video_id: Optional[str],
        emote_map: Optional[Dict[str, str]] = None,
        **extra: Any,
    ) -> SessionEntry:
        entry = SessionEntry(
            video_id=video_id,
            emote_map=dict(emote_map or {}),
            stored_at=self._clock(),
            extra=dict(extra),
        )
        with self._lock:
            self._entries[self._key(channel)] = entry
        return entry

    def invalidate(self, channel: str) -> bool:
        with self._lock:
            removed = self._entries.pop(self._key(channel), None) is not None
        if removed:
            log.debug(f"Session for '{self._key(channel)}' invalidated")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["DEFAULT_TTL_SECONDS", "SessionCache", "SessionEntry"]
