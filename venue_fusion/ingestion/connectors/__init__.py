"""
Connector Registry Module
=========================

Central registry of connector implementations.
Provides factory functions for creating connectors by type name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Type

from venue_fusion.ingestion.connectors.base import BaseConnector
from venue_fusion.ingestion.connectors.html import HtmlPageConnector
from venue_fusion.ingestion.connectors.http import HttpConnector
from venue_fusion.ingestion.connectors.json_api import JsonApiConnector
from venue_fusion.ingestion.connectors.static import StaticConnector
from venue_fusion.ingestion.connectors.structured_data import StructuredDataPageConnector

if TYPE_CHECKING:
    from venue_fusion.ingestion.registry import ConnectorConfig


# Registry mapping connector type names to their classes
CONNECTOR_REGISTRY: dict[str, Type[BaseConnector]] = {
    "static": StaticConnector,
    "json_api": JsonApiConnector,
    "structured_data": StructuredDataPageConnector,
}


def get_connector(config: ConnectorConfig, **kwargs: Any) -> BaseConnector | None:
    """
    Build a connector instance from its configuration.

    Args:
        config: Connector configuration; ``config.type`` selects the class
        **kwargs: Extra constructor arguments (e.g. an httpx client)

    Returns:
        Connector instance, or None if the type is not registered
    """
    connector_class = CONNECTOR_REGISTRY.get(config.type)
    if connector_class is None:
        return None
    return connector_class(config, **kwargs)


def register_connector(name: str, connector_class: Type[BaseConnector]) -> None:
    """
    Register a new connector type.

    Args:
        name: Type name to register under
        connector_class: Connector class (must inherit from BaseConnector)
    """
    if not issubclass(connector_class, BaseConnector):
        raise TypeError(f"{connector_class} must inherit from BaseConnector")
    CONNECTOR_REGISTRY[name] = connector_class


def list_connectors() -> list[str]:
    """List all registered connector type names."""
    return list(CONNECTOR_REGISTRY.keys())


def get_connector_info(connector_type: str) -> dict[str, str] | None:
    """
    Get information about a connector type.

    Args:
        connector_type: Registered type name

    Returns:
        Dict with connector info, or None if not found
    """
    connector_class = CONNECTOR_REGISTRY.get(connector_type)
    if connector_class is None:
        return None

    return {
        "type": connector_class.CONNECTOR_TYPE,
        "version": connector_class.CONNECTOR_VERSION,
        "class": connector_class.__name__,
    }


__all__ = [
    # Registry functions
    "get_connector",
    "register_connector",
    "list_connectors",
    "get_connector_info",
    "CONNECTOR_REGISTRY",
    # Base classes
    "BaseConnector",
    "HttpConnector",
    "HtmlPageConnector",
    # Concrete connectors
    "JsonApiConnector",
    "StaticConnector",
    "StructuredDataPageConnector",
]
