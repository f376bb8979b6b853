"""Process-wide mining counters and derived rates."""
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional

TIME_BONUS_PERIOD_SECS = 30
TIME_BONUS_PERCENT_PER_PERIOD = 10
TIME_BONUS_MAX_PERIODS = 10


def time_bonus_percent(time_since_last_event: int) -> int:
    """Each full 30s period since the last mine adds 10%, capped at 10 periods (100%)."""
    if time_since_last_event <= 0:
        return 0
    periods = min(TIME_BONUS_MAX_PERIODS, int(time_since_last_event) // TIME_BONUS_PERIOD_SECS)
    return periods * TIME_BONUS_PERCENT_PER_PERIOD


@dataclass
class CumulativeStats:
    success_count: int = 0
    failure_count: int = 0
    total_reward_units: int = 0
    total_attempts: int = 0
    start_time: float = 0.0


class RoundStatsTracker:
    """
    Thread-safe accumulator for CumulativeStats.

    The mining loop is the only writer; the web dashboard reads copies via
    snapshot() from its own thread.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._stats = CumulativeStats(start_time=clock())

    def record_attempts(self, attempts: int) -> None:
        if attempts < 0:
            raise ValueError(f"attempts must be >= 0: {attempts}")
        with self._lock:
            self._stats.total_attempts += attempts

    def record_success(self, reward_units: int = 1) -> None:
        with self._lock:
            self._stats.success_count += 1
            self._stats.total_reward_units += reward_units

    def record_failure(self) -> None:
        with self._lock:
            self._stats.failure_count += 1

    def elapsed(self, now: Optional[float] = None) -> float:
        now = self._clock() if now is None else now
        with self._lock:
            return max(0.0, now - self._stats.start_time)

    def hashrate(self, now: Optional[float] = None) -> float:
        """Average hashes per second since process start."""
        elapsed = self.elapsed(now)
        if elapsed <= 0:
            return 0.0
        with self._lock:
            return self._stats.total_attempts / elapsed

    def snapshot(self) -> CumulativeStats:
        with self._lock:
            return replace(self._stats)
