"""
Rate Limiter Module
===================

Fixed-window request admission per connector. A window opens on the
first admitted call and lasts ``window_seconds``; calls beyond the
connector's per-window budget are refused until the window expires.
Bursts straddling a window boundary are an accepted approximation.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class WindowState:
    """Counter for the current window of one connector."""

    count: int
    reset_at: float
    day_count: int
    day_reset_at: float


class FixedWindowRateLimiter:
    """
    Per-connector fixed-window rate limiter.

    State is owned by the limiter instance (inject one into each
    FetchExecutor) and guarded by a lock so it may be shared across
    threads as well as tasks.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        day_seconds: float = 86400.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.day_seconds = day_seconds
        self._clock = clock
        self._limits: dict[str, tuple[int, int | None]] = {}
        self._windows: dict[str, WindowState] = {}
        self._lock = threading.Lock()

    def configure(
        self,
        connector_id: str,
        requests_per_minute: int,
        requests_per_day: int | None = None,
    ) -> None:
        """
        Set the budget for a connector.

        Args:
            connector_id: Connector identifier
            requests_per_minute: Calls admitted per window
            requests_per_day: Optional daily cap
        """
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        with self._lock:
            self._limits[connector_id] = (requests_per_minute, requests_per_day)

    def admit(self, connector_id: str) -> bool:
        """
        Try to admit one call.

        Returns:
            True if the call may proceed, False if the budget is spent
        """
        with self._lock:
            per_minute, per_day = self._limits.get(connector_id, (60, None))
            now = self._clock()
            state = self._windows.get(connector_id)

            if state is None:
                self._windows[connector_id] = WindowState(
                    count=1,
                    reset_at=now + self.window_seconds,
                    day_count=1,
                    day_reset_at=now + self.day_seconds,
                )
                return True

            if now >= state.day_reset_at:
                state.day_count = 0
                state.day_reset_at = now + self.day_seconds
            if per_day is not None and state.day_count >= per_day:
                logger.debug(f"Daily budget exhausted for {connector_id}")
                return False

            if now >= state.reset_at:
                state.count = 1
                state.reset_at = now + self.window_seconds
                state.day_count += 1
                return True

            if state.count < per_minute:
                state.count += 1
                state.day_count += 1
                return True

            return False

    def seconds_until_reset(self, connector_id: str) -> float:
        """Seconds until the current window for a connector expires."""
        with self._lock:
            state = self._windows.get(connector_id)
            if state is None:
                return 0.0
            per_day = self._limits.get(connector_id, (60, None))[1]
            now = self._clock()
            if per_day is not None and state.day_count >= per_day:
                return max(0.0, state.day_reset_at - now)
            return max(0.0, state.reset_at - now)

    def get_usage(self, connector_id: str) -> dict[str, float | int]:
        """Current counters for a connector."""
        with self._lock:
            state = self._windows.get(connector_id)
            if state is None:
                return {"count": 0, "day_count": 0, "resets_in": 0.0}
            return {
                "count": state.count,
                "day_count": state.day_count,
                "resets_in": max(0.0, state.reset_at - self._clock()),
            }

    def reset(self, connector_id: str | None = None) -> None:
        """Forget window state for one connector, or all of them."""
        with self._lock:
            if connector_id is None:
                self._windows.clear()
            else:
                self._windows.pop(connector_id, None)
