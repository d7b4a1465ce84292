"""
Runtime connection status and diagnostics snapshot.

`RuntimeState` is the connection-status sink every adapter reports to. The
UI only needs the boolean per platform; the last classified error and
timestamps are kept for diagnostics. `RuntimeSnapshotExporter` writes that
state (plus retention-window size) to a JSON file so operators can inspect
a running overlay without attaching to it.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from shared.chat.errors import ChatIngestError
from shared.chat.events import Platform
from shared.logging.logger import get_logger
from shared.storage.chat_events import ChatEventStore

log = get_logger("core.state_exporter")

StatusListener = Callable[[str, bool], None]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class PlatformRuntimeState:
    connected: bool = False
    last_change_ts: Optional[str] = None
    last_connected_ts: Optional[str] = None
    last_error: Optional[str] = None
    last_error_category: Optional[str] = None
    last_error_ts: Optional[str] = None
    error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "last_change_ts": self.last_change_ts,
            "last_connected_ts": self.last_connected_ts,
            "last_error": self.last_error,
            "last_error_category": self.last_error_category,
            "last_error_ts": self.last_error_ts,
            "error_count": self.error_count,
        }


class RuntimeState:
    """
    In-memory connection status tracker.

    This class is intentionally simple: it tolerates unknown platforms and
    never raises from its setters. Listeners are notified on every
    `update_status` call, including repeats, so UIs can treat it as a
    heartbeat.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._platforms: Dict[str, PlatformRuntimeState] = {
            platform.value: PlatformRuntimeState() for platform in Platform
        }
        self._listeners: List[StatusListener] = []

    # ------------------------------------------------------------
    # Sink contract
    # ------------------------------------------------------------

    def update_status(self, platform: str, connected: bool) -> None:
        now = _utc_now_iso()
        with self._lock:
            entry = self._platforms.setdefault(platform, PlatformRuntimeState())
            changed = entry.connected != bool(connected)
            entry.connected = bool(connected)
            if changed:
                entry.last_change_ts = now
            if connected:
                entry.last_connected_ts = now
            listeners = list(self._listeners)

        if changed:
            log.info(
                f"[{platform}] {'connected' if connected else 'disconnected'}"
            )

        for listener in listeners:
            try:
                listener(platform, bool(connected))
            except Exception as e:
                log.warning(f"Status listener failed for {platform}: {e}")

    def record_error(self, platform: str, error: Any) -> None:
        if isinstance(error, ChatIngestError):
            category = error.category
            text = str(error)
        else:
            category = "error"
            text = str(error)

        with self._lock:
            entry = self._platforms.setdefault(platform, PlatformRuntimeState())
            entry.last_error = text
            entry.last_error_category = category
            entry.last_error_ts = _utc_now_iso()
            entry.error_count += 1

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def is_connected(self, platform: str) -> bool:
        with self._lock:
            entry = self._platforms.get(platform)
            return bool(entry and entry.connected)

    def last_error(self, platform: str) -> Optional[str]:
        with self._lock:
            entry = self._platforms.get(platform)
            return entry.last_error if entry else None

    def connection_status(self) -> Dict[str, bool]:
        with self._lock:
            return {name: entry.connected for name, entry in self._platforms.items()}

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: entry.to_dict() for name, entry in self._platforms.items()}

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe


@dataclass
class RuntimeSnapshotExporter:
    """Writes a diagnostics snapshot of status + retention window size."""

    state: RuntimeState
    store: ChatEventStore
    path: Path = field(default_factory=lambda: Path("shared/state/runtime_snapshot.json"))

    def build(self) -> Dict[str, Any]:
        messages = self.store.snapshot()
        return {
            "generated_at": _utc_now_iso(),
            "platforms": self.state.snapshot(),
            "messages": {
                "count": len(messages),
                "retention": self.store.retention,
                "newest_ts": messages[-1].to_dict()["timestamp"] if messages else None,
            },
        }

    def publish(self) -> Optional[Path]:
        payload = self.build()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            log.warning(f"Runtime snapshot publish failed: {e}")
            return None
        return self.path


__all__ = [
    "PlatformRuntimeState",
    "RuntimeState",
    "RuntimeSnapshotExporter",
]
