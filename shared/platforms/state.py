"""Adapter connection phases and the status-sink contract.

Phases follow one lifecycle for every adapter:

- DISCONNECTED   : no transport, nothing scheduled
- CONNECTING     : transport / bootstrap in flight
- AUTHENTICATING : credentials or anonymous login sent (IRC only)
- JOINED         : room joined / subscription confirmed
- RECEIVING      : messages are flowing

Only JOINED and RECEIVING count as "connected" for the status sink.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, Protocol

from shared.logging.logger import get_logger

log = get_logger("shared.platforms.state")


class AdapterPhase(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    JOINED = "joined"
    RECEIVING = "receiving"

    @property
    def connected(self) -> bool:
        return self in {AdapterPhase.JOINED, AdapterPhase.RECEIVING}


ALLOWED_TRANSITIONS: Dict[AdapterPhase, FrozenSet[AdapterPhase]] = {
    AdapterPhase.DISCONNECTED: frozenset({AdapterPhase.CONNECTING}),
    AdapterPhase.CONNECTING: frozenset(
        {
            AdapterPhase.AUTHENTICATING,
            AdapterPhase.JOINED,
            AdapterPhase.DISCONNECTED,
        }
    ),
    AdapterPhase.AUTHENTICATING: frozenset(
        {AdapterPhase.JOINED, AdapterPhase.DISCONNECTED}
    ),
    AdapterPhase.JOINED: frozenset(
        {AdapterPhase.RECEIVING, AdapterPhase.DISCONNECTED}
    ),
    AdapterPhase.RECEIVING: frozenset({AdapterPhase.DISCONNECTED}),
}


class StatusSink(Protocol):
    def update_status(self, platform: str, connected: bool) -> None:
        ...


class PhaseTracker:
    """
    Enforces the phase table for one adapter and reports connectedness.

    Illegal transitions are logged and ignored rather than raised; a
    late event from a closing socket must never crash the adapter.
    """

    def __init__(self, platform: str, sink: Optional[StatusSink] = None) -> None:
        self.platform = platform
        self._sink = sink
        self._phase = AdapterPhase.DISCONNECTED

    @property
    def phase(self) -> AdapterPhase:
        return self._phase

    @property
    def connected(self) -> bool:
        return self._phase.connected

    def advance(self, target: AdapterPhase) -> bool:
        current = self._phase
        if target == current:
            return True

        if target not in ALLOWED_TRANSITIONS[current]:
            log.debug(
                f"[{self.platform}] Ignoring phase change "
                f"{current.value} -> {target.value}"
            )
            return False

        self._phase = target
        log.debug(f"[{self.platform}] Phase {current.value} -> {target.value}")

        if current.connected != target.connected or target == AdapterPhase.DISCONNECTED:
            self._report(target.connected)
        return True

    def reset(self) -> None:
        """Force DISCONNECTED from any phase (socket loss, shutdown)."""
        if self._phase == AdapterPhase.DISCONNECTED:
            self._report(False)
            return
        self.advance(AdapterPhase.DISCONNECTED)

    def _report(self, connected: bool) -> None:
        if not self._sink:
            return
        try:
            self._sink.update_status(self.platform, connected)
        except Exception as e:
            log.warning(f"[{self.platform}] Status sink failed: {e}")


__all__ = [
    "AdapterPhase",
    "ALLOWED_TRANSITIONS",
    "PhaseTracker",
    "StatusSink",
]
