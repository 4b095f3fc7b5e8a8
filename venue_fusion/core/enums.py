"""Enums shared across the venue fusion pipeline."""

from enum import Enum


class ErrorType(str, Enum):
    """Classification of a failure raised while fetching or persisting."""

    RATE_LIMIT = "rate_limit"
    AUTH_FAILURE = "auth_failure"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    CRAWL_BLOCKED = "crawl_blocked"
    PARSE_ERROR = "parse_error"
    NETWORK = "network"
    DNS = "dns"
    PERSISTENCE_CONNECTION = "persistence_connection"
    PERSISTENCE_TIMEOUT = "persistence_timeout"
    UNKNOWN = "unknown"


class NextAction(str, Enum):
    """What the caller should do after a failure."""

    RETRY = "retry"
    FALLBACK_TO_ALTERNATIVE_SOURCE = "fallback_to_alternative_source"
    FALLBACK_TO_CACHED_DATA = "fallback_to_cached_data"
    CONTINUE = "continue"


class Severity(str, Enum):
    """Severity of a data quality issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConnectorKind(str, Enum):
    """How a connector obtains its data."""

    API = "api"
    HTML = "html"


class UpdateType(str, Enum):
    """Which connectors a scheduled run uses."""

    FULL = "full"
    STRUCTURED = "structured"
    SCRAPED = "scraped"

    def connector_kinds(self) -> set["ConnectorKind"]:
        """Return the connector kinds this update type covers."""
        if self is UpdateType.STRUCTURED:
            return {ConnectorKind.API}
        if self is UpdateType.SCRAPED:
            return {ConnectorKind.HTML}
        return {ConnectorKind.API, ConnectorKind.HTML}


class BatchState(str, Enum):
    """Lifecycle of a batch run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
