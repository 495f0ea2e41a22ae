import asyncio
import enum
from dataclasses import dataclass

DEFAULT_FAILURE_THRESHOLD = 3


class Transition(enum.Enum):
    NONE = "none"
    FAILURE_ALERT = "failure_alert"
    RECOVERY_ALERT = "recovery_alert"


@dataclass
class FailureStreak:
    count: int = 0
    notified: bool = False


class FailureTracker:
    """Per-target consecutive-failure counters with alert suppression.

    A failure alert fires once when a streak reaches the threshold; further
    failures in the same streak stay silent. The next success resets the
    streak and, if an alert had fired, asks for a recovery alert.
    """

    def __init__(self, threshold: int = DEFAULT_FAILURE_THRESHOLD):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self._streaks: dict[str, FailureStreak] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, url: str) -> asyncio.Lock:
        lock = self._locks.get(url)
        if lock is None:
            lock = self._locks[url] = asyncio.Lock()
        return lock

    def streak(self, url: str) -> FailureStreak:
        return self._streaks.setdefault(url, FailureStreak())

    def record(self, url: str, success: bool) -> Transition:
        streak = self.streak(url)

        if success:
            was_notified = streak.notified
            streak.count = 0
            streak.notified = False
            return Transition.RECOVERY_ALERT if was_notified else Transition.NONE

        streak.count += 1
        if streak.count >= self.threshold and not streak.notified:
            streak.notified = True
            return Transition.FAILURE_ALERT
        return Transition.NONE
