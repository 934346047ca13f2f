"""Notification throttling: a global sliding window plus per-key cooldowns."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Callable

from keyword_notifier.monitor.models import ThrottleKey

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class ThrottleDecision(Enum):
    """Outcome of one throttle check."""

    ADMIT = "admit"
    SUPPRESS = "suppress"


class ThrottleGate:
    """Decides whether a matched keyword may produce a notification.

    Two independent limits must both pass:

    * a global limit of ``rate_limit_per_minute`` admits in any 60 second
      window, across all keys
    * a per-key cooldown of ``cooldown_seconds`` since that key's last admit

    State changes only on ADMIT. The whole prune/check/record sequence runs
    under one lock, so concurrent callers cannot both take the last slot.
    Times are seconds on a monotonic scale (``time.monotonic`` by default).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._recent_admits: deque[float] = deque()
        self._last_admit_by_key: dict[ThrottleKey, float] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def admit(
        self,
        key: ThrottleKey,
        now: float | None,
        rate_limit_per_minute: int,
        cooldown_seconds: int,
    ) -> ThrottleDecision:
        """Check both limits for ``key`` and record the admit if allowed.

        ``now=None`` reads the gate's clock while holding the lock. A
        ``rate_limit_per_minute`` of 0 suppresses everything; a
        ``cooldown_seconds`` of 0 disables the cooldown.
        """
        if rate_limit_per_minute < 0 or cooldown_seconds < 0:
            raise ValueError("Throttle limits must be non-negative")

        with self._lock:
            if now is None:
                now = self._clock()
            # Keep the window sorted when callers hand in out-of-order times.
            if self._recent_admits and now < self._recent_admits[-1]:
                now = self._recent_admits[-1]

            self._prune(now)

            if len(self._recent_admits) >= rate_limit_per_minute:
                logger.debug(
                    "Suppressed %s: %d admits in the last minute (limit %d)",
                    key, len(self._recent_admits), rate_limit_per_minute,
                )
                return ThrottleDecision.SUPPRESS

            last = self._last_admit_by_key.get(key)
            if cooldown_seconds > 0 and last is not None and now - last < cooldown_seconds:
                logger.debug(
                    "Suppressed %s: cooling down (%.1fs of %ds elapsed)",
                    key, now - last, cooldown_seconds,
                )
                return ThrottleDecision.SUPPRESS

            self._recent_admits.append(now)
            self._last_admit_by_key[key] = now

        logger.debug("Admitted %s", key)
        return ThrottleDecision.ADMIT

    def admits_in_window(self, now: float | None = None) -> int:
        """Return how many admits currently count against the global limit."""
        with self._lock:
            if now is None:
                now = self._clock()
            self._prune(now)
            return len(self._recent_admits)

    def last_admit(self, key: ThrottleKey) -> float | None:
        """Return the time ``key`` was last admitted, if ever."""
        with self._lock:
            return self._last_admit_by_key.get(key)

    def reset(self) -> None:
        """Forget all admit history (used on reconfiguration)."""
        with self._lock:
            self._recent_admits.clear()
            self._last_admit_by_key.clear()
        logger.info("Throttle state reset")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        while self._recent_admits and now - self._recent_admits[0] >= WINDOW_SECONDS:
            self._recent_admits.popleft()
