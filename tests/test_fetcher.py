"""Tests for the fetch executor."""

import asyncio
from typing import Any

import pytest

from venue_fusion.core.enums import ErrorType, NextAction
from venue_fusion.ingestion.connectors.base import BaseConnector
from venue_fusion.ingestion.errors import (
    AuthFailureError,
    ErrorHandler,
    NetworkError,
    RateLimitedError,
)
from venue_fusion.ingestion.fetcher import FetchExecutor
from venue_fusion.ingestion.rate_limiter import FixedWindowRateLimiter
from venue_fusion.ingestion.registry import ConnectorConfig, RateLimitConfig


class ScriptedConnector(BaseConnector):
    """Connector that replays a script of results and exceptions."""

    CONNECTOR_TYPE = "scripted"

    def __init__(self, script: list[Any], name: str = "scripted", rpm: int = 60) -> None:
        super().__init__(
            ConnectorConfig(
                name=name,
                type="scripted",
                rate_limit=RateLimitConfig(requests_per_minute=rpm),
            )
        )
        self.script = list(script)
        self.calls = 0

    async def search(self, query: str) -> list[dict[str, Any]]:
        self.calls += 1
        step = self.script.pop(0) if self.script else []
        if isinstance(step, BaseException):
            raise step
        if step == "hang":
            await asyncio.sleep(10)
        return step


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


def _executor(sleep: SleepRecorder, **kwargs: Any) -> FetchExecutor:
    return FetchExecutor(sleep=sleep, **kwargs)


class TestFetchExecutor:
    """Tests for FetchExecutor.fetch."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, sleep: SleepRecorder) -> None:
        """Test a successful call returns records after one attempt."""
        handler = ErrorHandler()
        executor = _executor(sleep, error_handler=handler)
        connector = ScriptedConnector([[{"name": "파워짐"}]])

        result = await executor.fetch(connector, "파워짐")

        assert result.success
        assert result.attempts == 1
        assert result.records == [{"name": "파워짐"}]
        assert sleep.delays == []
        assert handler.get_statistics()["success_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self, sleep: SleepRecorder) -> None:
        """Test a network failure is retried with the strategy delay."""
        executor = _executor(sleep)
        connector = ScriptedConnector([NetworkError("reset"), [{"name": "파워짐"}]])

        result = await executor.fetch(connector, "파워짐")

        assert result.success
        assert result.attempts == 2
        assert sleep.delays == [5.0]

    @pytest.mark.asyncio
    async def test_linear_backoff_and_attempt_ceiling(self, sleep: SleepRecorder) -> None:
        """Test attempts never exceed max_retries and delays grow linearly."""
        executor = _executor(sleep, max_retries=3, retry_delay=0.5)
        connector = ScriptedConnector([NetworkError("down")] * 10)

        result = await executor.fetch(connector, "파워짐")

        assert not result.success
        assert connector.calls == 3
        assert result.attempts == 3
        assert sleep.delays == [0.5, 1.0]
        assert result.error_type == ErrorType.NETWORK

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_fallback(self, sleep: SleepRecorder) -> None:
        """Test the terminal decision carries the fallback action."""
        executor = _executor(sleep, max_retries=2, retry_delay=0.0)
        connector = ScriptedConnector([NetworkError("down")] * 5)

        result = await executor.fetch(connector, "파워짐")

        assert result.decision is not None
        assert result.decision.should_retry is False
        assert result.decision.next_action == NextAction.FALLBACK_TO_CACHED_DATA

    @pytest.mark.asyncio
    async def test_success_rate_counts_fetches_not_attempts(self, sleep: SleepRecorder) -> None:
        """Test a fetch that needed three attempts is one failed outcome."""
        handler = ErrorHandler()
        executor = _executor(sleep, error_handler=handler, max_retries=3, retry_delay=0.0)

        failed = await executor.fetch(ScriptedConnector([NetworkError("down")] * 5), "파워짐")
        ok = await executor.fetch(ScriptedConnector([[{"name": "파워짐"}]], name="other"), "파워짐")

        assert not failed.success
        assert ok.success
        stats = handler.get_statistics()
        assert stats["total_errors"] == 3
        assert stats["success_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_non_retryable_stops_immediately(self, sleep: SleepRecorder) -> None:
        """Test auth failures are not retried."""
        executor = _executor(sleep)
        connector = ScriptedConnector([AuthFailureError("bad key")])

        result = await executor.fetch(connector, "파워짐")

        assert connector.calls == 1
        assert result.error_type == ErrorType.AUTH_FAILURE
        assert result.decision is not None
        assert result.decision.next_action == NextAction.FALLBACK_TO_ALTERNATIVE_SOURCE

    @pytest.mark.asyncio
    async def test_throttle_wait_not_counted(self, sleep: SleepRecorder) -> None:
        """Test 429 waits honour Retry-After without spending attempts."""
        executor = _executor(sleep, max_retries=1)
        connector = ScriptedConnector(
            [
                RateLimitedError(retry_after=2.0),
                RateLimitedError(retry_after=3.0),
                [{"name": "파워짐"}],
            ]
        )

        result = await executor.fetch(connector, "파워짐")

        assert result.success
        assert result.attempts == 1
        assert result.throttle_waits == 2
        assert sleep.delays == [2.0, 3.0]

    @pytest.mark.asyncio
    async def test_throttle_waits_are_capped(self, sleep: SleepRecorder) -> None:
        """Test repeated throttling eventually counts as a failure."""
        executor = _executor(sleep, max_retries=1, max_throttle_waits=2)
        connector = ScriptedConnector([RateLimitedError()] * 5)

        result = await executor.fetch(connector, "파워짐")

        assert not result.success
        assert result.throttle_waits == 2
        assert result.error_type == ErrorType.RATE_LIMIT
        assert connector.calls == 3

    @pytest.mark.asyncio
    async def test_timeout(self, sleep: SleepRecorder) -> None:
        """Test a hanging connector times out and is classified."""
        executor = _executor(sleep, timeout=0.01, max_retries=1)
        connector = ScriptedConnector(["hang"])

        result = await executor.fetch(connector, "파워짐")

        assert not result.success
        assert result.error_type == ErrorType.TIMEOUT

    @pytest.mark.asyncio
    async def test_waits_for_rate_limiter(self, sleep: SleepRecorder) -> None:
        """Test calls over the local budget wait for the window."""
        now = [0.0]
        limiter = FixedWindowRateLimiter(window_seconds=60, clock=lambda: now[0])

        async def advancing_sleep(seconds: float) -> None:
            sleep.delays.append(seconds)
            now[0] += seconds

        executor = FetchExecutor(rate_limiter=limiter, sleep=advancing_sleep)
        connector = ScriptedConnector([[], []], rpm=1)

        await executor.fetch(connector, "a")
        await executor.fetch(connector, "b")

        assert sleep.delays == [60.0]
        assert connector.calls == 2

    def test_invalid_max_retries(self) -> None:
        """Test max_retries must be positive."""
        with pytest.raises(ValueError):
            FetchExecutor(max_retries=0)
