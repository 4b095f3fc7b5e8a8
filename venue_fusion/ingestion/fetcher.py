"""
Fetch Executor Module
=====================

Issues connector calls under the rate limiter with a hard timeout,
linear retry backoff and error classification. HTTP 429 responses are
honoured by sleeping for the Retry-After hint without spending a retry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from venue_fusion.core.enums import ErrorType
from venue_fusion.ingestion.connectors.base import BaseConnector
from venue_fusion.ingestion.errors import (
    ConnectorTimeoutError,
    ErrorContext,
    ErrorDecision,
    ErrorHandler,
    RateLimitedError,
)
from venue_fusion.ingestion.rate_limiter import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Result of one connector search, after retries."""

    connector_id: str
    query: str
    records: list[dict[str, Any]] = field(default_factory=list)
    attempts: int = 0
    throttle_waits: int = 0
    error: str | None = None
    error_type: ErrorType | None = None
    decision: ErrorDecision | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        """Check if the fetch succeeded."""
        return self.error is None


class FetchExecutor:
    """
    Runs connector searches with admission control and retries.

    Attempts per fetch never exceed ``max_retries``. The delay before
    attempt n+1 is ``retry_delay * n`` where retry_delay defaults to the
    error handler's per-type delay.
    """

    def __init__(
        self,
        rate_limiter: FixedWindowRateLimiter | None = None,
        error_handler: ErrorHandler | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float | None = None,
        max_throttle_waits: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter()
        self.error_handler = error_handler or ErrorHandler()
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_throttle_waits = max_throttle_waits
        self._sleep = sleep
        self._configured: set[str] = set()

    def _register(self, connector: BaseConnector) -> None:
        if connector.connector_id in self._configured:
            return
        self.rate_limiter.configure(
            connector.connector_id,
            connector.rate_limit.requests_per_minute,
            connector.rate_limit.requests_per_day,
        )
        self._configured.add(connector.connector_id)

    async def _wait_for_admission(self, connector_id: str) -> None:
        while not self.rate_limiter.admit(connector_id):
            wait = self.rate_limiter.seconds_until_reset(connector_id)
            logger.debug(f"{connector_id} over budget, waiting {wait:.1f}s")
            await self._sleep(max(wait, 0.01))

    async def fetch(
        self,
        connector: BaseConnector,
        query: str,
        entity_name: str | None = None,
    ) -> FetchResult:
        """
        Search one connector, retrying per the error handler's decision.

        Args:
            connector: Connector to call
            query: Search query
            entity_name: Venue being processed, for error context

        Returns:
            FetchResult with raw records, or the terminal error and decision
        """
        self._register(connector)
        connector_id = connector.connector_id
        entity_name = entity_name or query
        attempts = 0
        throttle_waits = 0

        while True:
            await self._wait_for_admission(connector_id)

            error: Exception
            try:
                records = await asyncio.wait_for(connector.search(query), timeout=self.timeout)
            except RateLimitedError as e:
                if throttle_waits < self.max_throttle_waits:
                    throttle_waits += 1
                    delay = e.retry_after
                    if delay is None:
                        delay = self.error_handler.get_strategy(ErrorType.RATE_LIMIT).retry_delay
                    logger.info(f"{connector_id} throttled; sleeping {delay:.1f}s")
                    await self._sleep(delay)
                    continue
                error = e
            except TimeoutError as e:
                error = ConnectorTimeoutError(
                    f"{connector_id} did not answer within {self.timeout}s", connector_id
                )
                error.__cause__ = e
            except Exception as e:
                error = e
            else:
                self.error_handler.record_success()
                return FetchResult(
                    connector_id=connector_id,
                    query=query,
                    records=list(records or []),
                    attempts=attempts + 1,
                    throttle_waits=throttle_waits,
                )

            attempts += 1
            decision = self.error_handler.handle_error(
                ErrorContext(
                    entity_name=entity_name,
                    source=connector_id,
                    error=error,
                    retry_count=attempts - 1,
                )
            )

            if decision.should_retry and attempts < self.max_retries:
                base = self.retry_delay if self.retry_delay is not None else decision.retry_delay
                await self._sleep(base * attempts)
                continue

            if decision.should_retry:
                # Out of attempts here even though the error type allows more.
                decision = replace(
                    decision,
                    should_retry=False,
                    retry_delay=0.0,
                    next_action=decision.fallback_strategy,
                )
            self.error_handler.record_failure()
            return FetchResult(
                connector_id=connector_id,
                query=query,
                attempts=attempts,
                throttle_waits=throttle_waits,
                error=str(error),
                error_type=decision.error_type,
                decision=decision,
            )
