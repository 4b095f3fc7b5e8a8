"""
Error Handling Module
=====================

Typed errors raised at the connector and persistence boundaries, and the
ErrorHandler that classifies failures into a fixed taxonomy, decides
between retrying, switching source or falling back to cached data, and
keeps bounded statistics for diagnostics.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from venue_fusion.core.enums import ErrorType, NextAction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FusionError(Exception):
    """Base class for all venue fusion errors."""

    error_type: ErrorType = ErrorType.UNKNOWN


class ConnectorError(FusionError):
    """A connector call failed."""

    def __init__(self, message: str, connector_id: str | None = None) -> None:
        super().__init__(message)
        self.connector_id = connector_id


class RateLimitedError(ConnectorError):
    """The source throttled the request (HTTP 429 or equivalent)."""

    error_type = ErrorType.RATE_LIMIT

    def __init__(
        self,
        message: str = "rate limit exceeded",
        connector_id: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, connector_id)
        self.retry_after = retry_after


class AuthFailureError(ConnectorError):
    error_type = ErrorType.AUTH_FAILURE


class ConnectorTimeoutError(ConnectorError):
    error_type = ErrorType.TIMEOUT


class NotFoundError(ConnectorError):
    error_type = ErrorType.NOT_FOUND


class CrawlBlockedError(ConnectorError):
    error_type = ErrorType.CRAWL_BLOCKED


class ParseError(ConnectorError):
    error_type = ErrorType.PARSE_ERROR


class NetworkError(ConnectorError):
    error_type = ErrorType.NETWORK


class DnsError(ConnectorError):
    error_type = ErrorType.DNS


class PersistenceError(FusionError):
    """The persistence collaborator failed."""


class PersistenceConnectionError(PersistenceError):
    error_type = ErrorType.PERSISTENCE_CONNECTION


class PersistenceTimeoutError(PersistenceError):
    error_type = ErrorType.PERSISTENCE_TIMEOUT


class EntityNotResolvedError(FusionError):
    """No acceptable fused record could be produced for an entity."""


class FatalRunError(FusionError):
    """A system-level failure that aborts the whole run."""


@dataclass
class ErrorStrategy:
    """How a class of error is handled."""

    should_retry: bool
    max_retries: int
    retry_delay: float
    fallback: NextAction
    description: str


ERROR_STRATEGIES: dict[ErrorType, ErrorStrategy] = {
    ErrorType.RATE_LIMIT: ErrorStrategy(
        True, 3, 5.0, NextAction.FALLBACK_TO_ALTERNATIVE_SOURCE, "Request quota exceeded"
    ),
    ErrorType.AUTH_FAILURE: ErrorStrategy(
        False, 0, 0.0, NextAction.FALLBACK_TO_ALTERNATIVE_SOURCE, "Credentials rejected"
    ),
    ErrorType.TIMEOUT: ErrorStrategy(
        True, 2, 3.0, NextAction.FALLBACK_TO_ALTERNATIVE_SOURCE, "Request timed out"
    ),
    ErrorType.NOT_FOUND: ErrorStrategy(
        False, 0, 0.0, NextAction.FALLBACK_TO_ALTERNATIVE_SOURCE, "Resource not found"
    ),
    ErrorType.CRAWL_BLOCKED: ErrorStrategy(
        False, 0, 0.0, NextAction.FALLBACK_TO_ALTERNATIVE_SOURCE, "Source blocked the crawler"
    ),
    ErrorType.PARSE_ERROR: ErrorStrategy(
        True, 2, 1.0, NextAction.CONTINUE, "Response could not be parsed"
    ),
    ErrorType.NETWORK: ErrorStrategy(
        True, 3, 5.0, NextAction.FALLBACK_TO_CACHED_DATA, "Network failure"
    ),
    ErrorType.DNS: ErrorStrategy(
        True, 2, 3.0, NextAction.FALLBACK_TO_CACHED_DATA, "Host name could not be resolved"
    ),
    ErrorType.PERSISTENCE_CONNECTION: ErrorStrategy(
        True, 5, 2.0, NextAction.CONTINUE, "Database connection failed"
    ),
    ErrorType.PERSISTENCE_TIMEOUT: ErrorStrategy(
        True, 3, 1.0, NextAction.FALLBACK_TO_CACHED_DATA, "Database query timed out"
    ),
    ErrorType.UNKNOWN: ErrorStrategy(
        True, 1, 1.0, NextAction.CONTINUE, "Unclassified error"
    ),
}

# Checked in order; first match wins.
_MESSAGE_PATTERNS: list[tuple[ErrorType, tuple[str, ...]]] = [
    (ErrorType.RATE_LIMIT, ("rate limit", "too many requests", "429")),
    (ErrorType.AUTH_FAILURE, ("unauthorized", "invalid api key", "401")),
    (ErrorType.PERSISTENCE_TIMEOUT, ("query timeout", "lock timeout")),
    (ErrorType.PERSISTENCE_CONNECTION, ("database", "connection pool")),
    (ErrorType.TIMEOUT, ("timeout", "timed out", "408")),
    (ErrorType.NOT_FOUND, ("not found", "404")),
    (ErrorType.CRAWL_BLOCKED, ("blocked", "forbidden", "captcha", "403")),
    (ErrorType.PARSE_ERROR, ("parse", "unexpected token", "decode")),
    (ErrorType.DNS, ("dns", "enotfound", "name or service not known", "getaddrinfo")),
    (ErrorType.NETWORK, ("network", "connection", "econnreset", "econnrefused")),
]

_STATUS_TYPES: dict[int, ErrorType] = {
    401: ErrorType.AUTH_FAILURE,
    403: ErrorType.CRAWL_BLOCKED,
    404: ErrorType.NOT_FOUND,
    408: ErrorType.TIMEOUT,
    429: ErrorType.RATE_LIMIT,
}


def classify_error(error: BaseException) -> ErrorType:
    """
    Map an exception onto the error taxonomy.

    Typed errors carry their own classification. Known library exceptions
    (httpx, SQLAlchemy, JSON/pydantic decoding, asyncio timeouts) are
    mapped by type. Everything else falls back to message matching, and
    unmatched messages classify as UNKNOWN.

    Args:
        error: The exception to classify

    Returns:
        The matching ErrorType
    """
    if isinstance(error, FusionError):
        if error.error_type != ErrorType.UNKNOWN:
            return error.error_type

    elif isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in _STATUS_TYPES:
            return _STATUS_TYPES[status]
        if status >= 500:
            return ErrorType.NETWORK

    elif isinstance(error, httpx.TimeoutException | asyncio.TimeoutError | TimeoutError):
        return ErrorType.TIMEOUT

    elif isinstance(error, httpx.ConnectError):
        message = str(error).lower()
        if any(p in message for p in ("name or service", "nodename", "getaddrinfo", "enotfound")):
            return ErrorType.DNS
        return ErrorType.NETWORK

    elif isinstance(error, httpx.TransportError):
        return ErrorType.NETWORK

    elif isinstance(error, PoolTimeoutError):
        return ErrorType.PERSISTENCE_TIMEOUT

    elif isinstance(error, OperationalError | DBAPIError):
        if "timeout" in str(error).lower() or "locked" in str(error).lower():
            return ErrorType.PERSISTENCE_TIMEOUT
        return ErrorType.PERSISTENCE_CONNECTION

    elif isinstance(error, json.JSONDecodeError | ValidationError):
        return ErrorType.PARSE_ERROR

    message = str(error).lower()
    for error_type, patterns in _MESSAGE_PATTERNS:
        if any(p in message for p in patterns):
            return error_type
    return ErrorType.UNKNOWN


@dataclass
class ErrorContext:
    """A failing operation, as handed to the ErrorHandler."""

    entity_name: str
    source: str
    error: BaseException
    retry_count: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class ErrorDecision:
    """What to do next after a failure."""

    error_type: ErrorType
    should_retry: bool
    retry_delay: float
    fallback_strategy: NextAction
    next_action: NextAction


@dataclass
class ErrorEvent:
    """One recorded failure."""

    error_type: ErrorType
    entity_name: str
    source: str
    message: str
    retry_count: int
    occurred_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "entity_name": self.entity_name,
            "source": self.source,
            "message": self.message,
            "retry_count": self.retry_count,
            "occurred_at": datetime.fromtimestamp(self.occurred_at, UTC).isoformat(),
        }


class ErrorHandler:
    """
    Classifies failures and decides the next action.

    Owns a bounded history of error events and a bounded window of
    fetch outcomes. Both are guarded by a lock so one handler can be
    shared between concurrent fetches.
    """

    def __init__(
        self,
        history_limit: int = 1000,
        outcome_window: int = 200,
        strategies: dict[ErrorType, ErrorStrategy] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.strategies = strategies or dict(ERROR_STRATEGIES)
        self._history: deque[ErrorEvent] = deque(maxlen=history_limit)
        self._outcomes: deque[bool] = deque(maxlen=outcome_window)
        self._clock = clock
        self._lock = threading.Lock()

    def get_strategy(self, error_type: ErrorType) -> ErrorStrategy:
        """Return the handling strategy for an error type."""
        return self.strategies.get(error_type, self.strategies[ErrorType.UNKNOWN])

    def handle_error(self, context: ErrorContext) -> ErrorDecision:
        """
        Classify a failure, record it, and decide what to do next.

        Args:
            context: The failing operation

        Returns:
            ErrorDecision with retry flag, delay in seconds and next action
        """
        error_type = classify_error(context.error)
        strategy = self.get_strategy(error_type)
        should_retry = strategy.should_retry and context.retry_count < strategy.max_retries

        event = ErrorEvent(
            error_type=error_type,
            entity_name=context.entity_name,
            source=context.source,
            message=str(context.error),
            retry_count=context.retry_count,
            occurred_at=self._clock(),
        )
        with self._lock:
            self._history.append(event)

        next_action = NextAction.RETRY if should_retry else strategy.fallback
        logger.warning(
            f"{error_type.value} for '{context.entity_name}' via {context.source} "
            f"(attempt {context.retry_count + 1}): {context.error} -> {next_action.value}"
        )

        return ErrorDecision(
            error_type=error_type,
            should_retry=should_retry,
            retry_delay=strategy.retry_delay if should_retry else 0.0,
            fallback_strategy=strategy.fallback,
            next_action=next_action,
        )

    def record_success(self) -> None:
        """Record a successful fetch for the rolling success rate."""
        with self._lock:
            self._outcomes.append(True)

    def record_failure(self) -> None:
        """Record a fetch that failed after its last attempt."""
        with self._lock:
            self._outcomes.append(False)

    def get_statistics(self) -> dict[str, Any]:
        """
        Get error statistics.

        Returns:
            Dict with total_errors, error_types histogram, the 100 most
            recent events and the rolling success_rate.
        """
        with self._lock:
            history = list(self._history)
            outcomes = list(self._outcomes)

        histogram = Counter(e.error_type.value for e in history)
        success_rate = sum(outcomes) / len(outcomes) if outcomes else 1.0
        return {
            "total_errors": len(history),
            "error_types": dict(histogram),
            "recent_errors": [e.to_dict() for e in history[-100:]],
            "success_rate": round(success_rate, 4),
        }

    def get_error_frequency(self, error_type: ErrorType, window_seconds: float = 3600.0) -> int:
        """Count errors of a type within the trailing window."""
        cutoff = self._clock() - window_seconds
        with self._lock:
            return sum(
                1 for e in self._history if e.error_type == error_type and e.occurred_at >= cutoff
            )

    def analyze_patterns(self) -> dict[str, Any]:
        """
        Summarize the error history.

        Compares the last hour against the hour before it for the most
        common error type.

        Returns:
            Dict with most_common_error, trend and recommendations
        """
        stats = self.get_statistics()
        histogram: dict[str, int] = stats["error_types"]
        if not histogram:
            return {
                "most_common_error": None,
                "trend": "stable",
                "recommendations": ["No errors recorded"],
            }

        most_common = ErrorType(max(histogram.items(), key=lambda kv: kv[1])[0])
        recent = self.get_error_frequency(most_common, 3600.0)
        previous = self.get_error_frequency(most_common, 7200.0) - recent

        trend = "stable"
        if recent > previous * 1.5:
            trend = "increasing"
        elif recent < previous * 0.5:
            trend = "decreasing"

        recommendations: list[str] = []
        if most_common == ErrorType.RATE_LIMIT:
            recommendations.append("Lower request frequency or add API credentials")
        elif most_common == ErrorType.CRAWL_BLOCKED:
            recommendations.append("Rotate user agents or widen the crawl interval")
        elif most_common in (ErrorType.NETWORK, ErrorType.DNS):
            recommendations.append("Check network connectivity and increase retry delays")
        elif most_common == ErrorType.AUTH_FAILURE:
            recommendations.append("Check connector credentials")
        if trend == "increasing":
            recommendations.append("Error rate is increasing; check system health")

        return {
            "most_common_error": most_common.value,
            "trend": trend,
            "recommendations": recommendations,
        }

    @staticmethod
    def select_fallback_sources(failed_source: str, available: list[str]) -> list[str]:
        """Return the alternative sources to try after one failed."""
        return [s for s in available if s != failed_source]

    def clear_history(self) -> None:
        """Drop all recorded events and outcomes."""
        with self._lock:
            self._history.clear()
            self._outcomes.clear()
        logger.info("Error history cleared")

    async def retry_with_backoff(
        self,
        operation: Callable[[], Awaitable[T]],
        entity_name: str,
        source: str,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ) -> T:
        """
        Run an async operation, retrying with exponential backoff while
        the handler says the failure is retryable.

        Raises:
            The last error once retrying stops.
        """
        for attempt in range(max_retries + 1):
            try:
                result = await operation()
                self.record_success()
                return result
            except Exception as e:
                decision = self.handle_error(
                    ErrorContext(entity_name=entity_name, source=source, error=e, retry_count=attempt)
                )
                if not decision.should_retry or attempt >= max_retries:
                    self.record_failure()
                    raise
                await asyncio.sleep(base_delay * (2**attempt))
        raise AssertionError("unreachable")
