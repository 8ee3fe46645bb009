"""HealthTracker: Consecutive-failure tracking for feeds and the signer.

Failures are retried on the next cycle, so nothing is skipped here. The
tracker only reports when a key has failed ``degraded_after`` times in a
row, which the poller and dispatcher turn into a degraded-health signal.

.. code-block:: python

    >>> tracker = HealthTracker(["ETH/USD"], degraded_after=2)
    >>> tracker.record_failure("ETH/USD", "FeedUnavailable")
    1
    >>> tracker.record_failure("ETH/USD", "FeedUnavailable")
    2
    >>> tracker.is_degraded("ETH/USD")
    True
    >>> tracker.record_success("ETH/USD")
    >>> tracker.is_degraded("ETH/USD")
    False
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class HealthStatus:
    """Tracks the health of a single key.

    :ivar consecutive_failures: Number of consecutive failures.
    :ivar total_failures: Total failures since tracking began.
    :ivar total_successes: Total successes since tracking began.
    :ivar last_error: Error kind of the most recent failure.
    :ivar last_success_at: Unix timestamp of the most recent success.
    """

    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_error: str | None = None
    last_success_at: float = 0.0


class HealthTracker:
    """Tracks per-key failure streaks.

    :ivar degraded_after: Consecutive failures after which a key is degraded.
    """

    DEFAULT_DEGRADED_AFTER = 3

    def __init__(
        self,
        keys: list[str] | tuple[str, ...] = (),
        degraded_after: int = DEFAULT_DEGRADED_AFTER,
    ) -> None:
        """Initialize the tracker.

        :param keys: Keys to track from the start.
        :param degraded_after: Consecutive failures that mark a key degraded.
        :raises ValueError: If degraded_after is less than 1.
        """
        if degraded_after < 1:
            raise ValueError("degraded_after must be at least 1")
        self.degraded_after = degraded_after
        self._status: dict[str, HealthStatus] = {k: HealthStatus() for k in keys}

    def record_failure(self, key: str, error: str | None = None) -> int:
        """Record a failure.

        :param key: Key that failed.
        :param error: Error kind for diagnostics.
        :returns: Consecutive failure count after this failure.
        """
        status = self._status.setdefault(key, HealthStatus())
        status.consecutive_failures += 1
        status.total_failures += 1
        status.last_error = error
        return status.consecutive_failures

    def record_success(self, key: str) -> None:
        status = self._status.setdefault(key, HealthStatus())
        status.consecutive_failures = 0
        status.total_successes += 1
        status.last_success_at = time.time()

    def is_degraded(self, key: str) -> bool:
        status = self._status.get(key)
        return status is not None and status.consecutive_failures >= self.degraded_after

    def degraded_keys(self) -> list[str]:
        return [k for k in self._status if self.is_degraded(k)]

    def get_status(self, key: str) -> HealthStatus | None:
        return self._status.get(key)

    def get_all_status(self) -> dict[str, HealthStatus]:
        return dict(self._status)
