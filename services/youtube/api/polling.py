from dataclasses import dataclass
from typing import Optional


@dataclass
class PollingPolicy:
    initial: float = 5.0
    minimum: float = 3.0
    maximum: float = 30.0
    idle_ceiling: float = 15.0
    active_floor: float = 5.0
    hidden: float = 10.0
    empty_streak: int = 3
    busy_threshold: int = 3
    idle_factor: float = 1.2
    busy_factor: float = 0.8
    error_factor: float = 1.5
    max_consecutive_failures: int = 10


class AdaptiveInterval:
    """
    Poll interval that widens when idle or failing and narrows with traffic.

    Rules:
    - 3+ consecutive empty batches: x1.2, capped at 15s
    - More than 3 messages while slower than 5s: x0.8, floored at 5s
    - Failure: x1.5, capped at 30s
    - Server hint (pollingIntervalMillis) is honoured, never below 3s
    - While hidden the effective interval is at least 10s
    """

    def __init__(self, policy: Optional[PollingPolicy] = None):
        self.policy = policy or PollingPolicy()
        self.current = self.policy.initial
        self.empty_streak = 0
        self.consecutive_failures = 0
        self.total_errors = 0
        self.hidden = False

    @property
    def effective(self) -> float:
        if self.hidden:
            return max(self.current, self.policy.hidden)
        return self.current

    @property
    def exhausted(self) -> bool:
        return self.consecutive_failures >= self.policy.max_consecutive_failures

    def record_batch(self, count: int, server_hint_ms: Optional[float] = None) -> float:
        p = self.policy
        self.consecutive_failures = 0

        if count == 0:
            self.empty_streak += 1
            if self.empty_streak >= p.empty_streak:
                self.current = min(self.current * p.idle_factor, p.idle_ceiling)
        else:
            self.empty_streak = 0
            if count > p.busy_threshold and self.current > p.active_floor:
                self.current = max(self.current * p.busy_factor, p.active_floor)

        if server_hint_ms:
            self.current = max(server_hint_ms / 1000.0, p.minimum)

        self.current = self._bounded(self.current)
        return self.effective

    def record_failure(self) -> float:
        self.consecutive_failures += 1
        self.total_errors += 1
        self.current = self._bounded(
            min(self.current * self.policy.error_factor, self.policy.maximum)
        )
        return self.effective

    def set_hidden(self, hidden: bool) -> float:
        self.hidden = bool(hidden)
        return self.effective

    def reset(self) -> None:
        self.current = self.policy.initial
        self.empty_streak = 0
        self.consecutive_failures = 0

    def _bounded(self, value: float) -> float:
        return min(max(value, self.policy.minimum), self.policy.maximum)


__all__ = ["AdaptiveInterval", "PollingPolicy"]
