"""Human-like pacing between browser actions and the run-level wall clock."""

from __future__ import annotations

import random
import time
from typing import Callable, Optional, Tuple

DETAIL_DELAY_RANGE = (1.5, 3.5)
SCROLL_DELAY_RANGE = (1.5, 3.0)
PARTITION_DELAY_RANGE = (2.0, 5.0)
SETTLE_DELAY_RANGE = (0.5, 1.5)
BREAK_EVERY = 10
BREAK_SECONDS = 8.0


class PacingPolicy:
    """Decide how long to wait before each automated action.

    The policy only looks at the action counter and its random source, so a
    seeded ``random.Random`` makes the whole schedule reproducible.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        *,
        detail_range: Tuple[float, float] = DETAIL_DELAY_RANGE,
        scroll_range: Tuple[float, float] = SCROLL_DELAY_RANGE,
        partition_range: Tuple[float, float] = PARTITION_DELAY_RANGE,
        settle_range: Tuple[float, float] = SETTLE_DELAY_RANGE,
        break_every: int = BREAK_EVERY,
        break_seconds: float = BREAK_SECONDS,
    ) -> None:
        self.rng = rng or random.Random()
        self.detail_range = detail_range
        self.scroll_range = scroll_range
        self.partition_range = partition_range
        self.settle_range = settle_range
        self.break_every = break_every
        self.break_seconds = break_seconds

    def is_break(self, action_index: int) -> bool:
        return self.break_every > 0 and action_index > 0 and action_index % self.break_every == 0

    def delay_before_action(self, action_index: int) -> float:
        """Delay before the ``action_index``-th (1-based) detail scrape."""
        if self.is_break(action_index):
            return self.break_seconds
        return self.rng.uniform(*self.detail_range)

    def scroll_delay(self) -> float:
        return self.rng.uniform(*self.scroll_range)

    def partition_delay(self) -> float:
        return self.rng.uniform(*self.partition_range)

    def settle_delay(self) -> float:
        return self.rng.uniform(*self.settle_range)


class Deadline:
    """Monotonic expiry shared by everything that runs inside one crawl."""

    def __init__(
        self,
        seconds: Optional[float],
        *,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._expires_at = None if seconds is None else self._clock() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def clamp(self, seconds: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return seconds
        return min(seconds, remaining)

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` but never past the expiry."""
        seconds = self.clamp(seconds)
        if seconds > 0:
            self._sleep(seconds)
