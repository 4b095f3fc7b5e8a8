"""
Base Connector Module
=====================

Defines the uniform interface every external venue source implements.
Structured API connectors and scraped HTML connectors share the same
``search(query)`` contract; how a given source is parsed stays inside
the connector.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from venue_fusion.core.enums import ConnectorKind

if TYPE_CHECKING:
    from venue_fusion.ingestion.registry import ConnectorConfig, RateLimitConfig


class BaseConnector(ABC):
    """
    Abstract base class for venue source connectors.

    Subclasses must implement:
    - search: Query the source and return raw candidate dicts

    Raw dicts use SourceRecord field names (name, address, phone,
    latitude, longitude, facility flags, ...). They are validated and
    coerced by the ResultNormalizer, so connectors never need to build
    SourceRecord instances themselves.
    """

    # Connector identification (override in subclasses)
    CONNECTOR_TYPE: str = "base"
    CONNECTOR_VERSION: str = "1.0.0"

    def __init__(self, config: ConnectorConfig) -> None:
        """
        Initialize the connector.

        Args:
            config: Connector configuration from connectors.yaml
        """
        self.config = config

    @property
    def connector_id(self) -> str:
        return self.config.name

    @property
    def trust_weight(self) -> float:
        return self.config.trust_weight

    @property
    def kind(self) -> ConnectorKind:
        return self.config.kind

    @property
    def rate_limit(self) -> RateLimitConfig:
        return self.config.rate_limit

    @property
    def options(self) -> dict[str, Any]:
        return self.config.options

    @abstractmethod
    async def search(self, query: str) -> list[dict[str, Any]]:
        """
        Search the source for venues matching a query.

        Args:
            query: Search query string

        Returns:
            List of raw candidate dicts, possibly empty

        Raises:
            ConnectorError: Typed failure (rate limit, auth, not found, ...)
        """

    async def aclose(self) -> None:
        """Release any held resources."""

    def get_info(self) -> dict[str, Any]:
        """
        Get information about this connector.

        Returns:
            Dict with connector metadata
        """
        return {
            "id": self.connector_id,
            "type": self.CONNECTOR_TYPE,
            "version": self.CONNECTOR_VERSION,
            "kind": self.kind.value,
            "trust_weight": self.trust_weight,
            "requests_per_minute": self.rate_limit.requests_per_minute,
            "requests_per_day": self.rate_limit.requests_per_day,
            "description": self.config.description,
        }
