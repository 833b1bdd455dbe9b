"""Cooperative whole-run deadline shared by every stage of a reconstruction."""

import time
from typing import Optional

from .errors import ReconstructionTimeout


class Deadline:
    """Wall-clock limit for one run. check() raises once it has passed."""

    def __init__(self, seconds: Optional[float], clock=time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock() + seconds

    @classmethod
    def unlimited(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def timeout_error(self, stage: str) -> ReconstructionTimeout:
        return ReconstructionTimeout(f"Request timeout after {self.seconds:g} seconds during {stage}")

    def check(self, stage: str = "reconstruction"):
        if self.expired:
            raise self.timeout_error(stage)

    def sleep(self, seconds: float, stage: str = "reconstruction"):
        """Sleep, but never past the deadline."""
        remaining = self.remaining()
        if remaining is not None and seconds >= remaining:
            time.sleep(remaining)
            raise self.timeout_error(stage)
        if seconds > 0:
            time.sleep(seconds)
