"""In-memory merge & retention store for canonical chat messages."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from shared.chat.events import CanonicalChatMessage
from shared.logging.logger import get_logger

log = get_logger("shared.chat_events.store")

DEFAULT_RETENTION = 100

Listener = Callable[[Tuple[CanonicalChatMessage, ...]], None]


class ChatEventStore:
    """
    Deduplicated, timestamp-ordered retention window shared by all adapters.

    - Messages are keyed by `id`; re-adding an id replaces the earlier entry
      and counts as a fresh insertion for tie-breaking.
    - After every mutation the working set is stably sorted by timestamp
      and cut to the newest `retention` entries.
    - Readers only ever see a complete immutable snapshot; a batch is
      applied under the lock and published in one swap.
    - Listeners are called synchronously with the new snapshot after each
      mutation, outside the lock.
    """

    def __init__(self, retention: int = DEFAULT_RETENTION) -> None:
        if retention <= 0:
            raise ValueError("retention must be positive")

        self._retention = int(retention)
        self._lock = threading.Lock()
        self._snapshot: Tuple[CanonicalChatMessage, ...] = tuple()
        # id -> insertion sequence of the live entry
        self._sequence: Dict[str, int] = {}
        self._next_seq = 0
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, message: CanonicalChatMessage) -> None:
        self.add_batch((message,))

    def add_batch(self, messages: Iterable[CanonicalChatMessage]) -> None:
        incoming = [m for m in messages if m is not None]
        if not incoming:
            return

        with self._lock:
            by_id: Dict[str, CanonicalChatMessage] = {m.id: m for m in self._snapshot}
            replaced = 0

            for message in incoming:
                if message.id in by_id:
                    replaced += 1
                by_id[message.id] = message
                self._sequence[message.id] = self._next_seq
                self._next_seq += 1

            ordered = sorted(
                by_id.values(),
                key=lambda m: (m.timestamp, self._sequence[m.id]),
            )
            kept = tuple(ordered[-self._retention:])

            kept_ids = {m.id for m in kept}
            for stale in [key for key in self._sequence if key not in kept_ids]:
                del self._sequence[stale]

            self._snapshot = kept
            snapshot = kept
            listeners = list(self._listeners)

        if replaced:
            log.debug(f"Replaced {replaced} re-delivered message(s)")

        self._notify(listeners, snapshot)

    def clear(self) -> None:
        with self._lock:
            self._snapshot = tuple()
            self._sequence.clear()
            listeners = list(self._listeners)
        self._notify(listeners, tuple())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def retention(self) -> int:
        return self._retention

    def snapshot(self) -> Tuple[CanonicalChatMessage, ...]:
        """Ordered view, oldest first. Safe to hold; never mutated."""
        return self._snapshot

    def recent(self, limit: Optional[int] = None) -> Tuple[CanonicalChatMessage, ...]:
        snapshot = self._snapshot
        if limit is None or limit >= len(snapshot):
            return snapshot
        if limit <= 0:
            return tuple()
        return snapshot[-limit:]

    def get(self, message_id: str) -> Optional[CanonicalChatMessage]:
        for message in self._snapshot:
            if message.id == message_id:
                return message
        return None

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, message_id: object) -> bool:
        return any(m.id == message_id for m in self._snapshot)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener, *, replay: bool = True) -> Callable[[], None]:
        """
        Register a listener; returns a callable that unregisters it.

        With `replay`, the listener immediately receives the current view.
        """
        with self._lock:
            self._listeners.append(listener)
            snapshot = self._snapshot

        if replay:
            self._notify([listener], snapshot)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    @staticmethod
    def _notify(
        listeners: List[Listener],
        snapshot: Tuple[CanonicalChatMessage, ...],
    ) -> None:
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                log.warning(f"Chat store listener failed: {e}")


__all__ = ["ChatEventStore", "DEFAULT_RETENTION", "Listener"]
