"""
JSON API Connector Module
=========================

Generic connector for structured search APIs returning JSON. The
request shape and the mapping from response items to venue fields are
configured per connector in connectors.yaml.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from venue_fusion.ingestion.connectors.http import HttpConnector
from venue_fusion.ingestion.errors import AuthFailureError, ParseError

logger = logging.getLogger(__name__)


def resolve_path(data: Any, path: str | None) -> Any:
    """
    Follow a dotted path into nested dicts and lists.

    Args:
        data: Parsed JSON
        path: Dotted path such as "response.body.items"; empty means data itself

    Returns:
        The value at the path, or None when any step is missing
    """
    if not path:
        return data
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


class JsonApiConnector(HttpConnector):
    """
    Connector for JSON search APIs.

    Options:
        url: Search endpoint (required)
        query_param: Name of the query parameter (default "query")
        params: Extra fixed query parameters
        results_path: Dotted path to the result list
        field_map: Venue field -> dotted path within one result item
        api_key_param: Send the API key as this query parameter
        api_key_header: Send the API key in this header
        api_key_prefix: Prefix for the header value (e.g. "KakaoAK ")
    """

    CONNECTOR_TYPE = "json_api"
    CONNECTOR_VERSION = "1.0.0"

    def _params(self, query: str) -> dict[str, Any]:
        params = dict(self.options.get("params", {}))
        params[self.options.get("query_param", "query")] = query
        api_key = self.config.api_key
        if self.config.api_key_env and api_key is None:
            raise AuthFailureError(
                f"Missing credential {self.config.api_key_env}", self.connector_id
            )
        if api_key and self.options.get("api_key_param"):
            params[self.options["api_key_param"]] = api_key
        return params

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        api_key = self.config.api_key
        header_name = self.options.get("api_key_header")
        if api_key and header_name:
            headers[header_name] = f"{self.options.get('api_key_prefix', '')}{api_key}"
        return headers

    def map_item(self, item: dict[str, Any]) -> dict[str, Any]:
        """Project one API result item onto venue fields."""
        field_map: dict[str, str] = self.options.get("field_map", {})
        if not field_map:
            return dict(item)
        mapped: dict[str, Any] = {}
        for venue_field, path in field_map.items():
            value = resolve_path(item, path)
            if value is not None:
                mapped[venue_field] = value
        return mapped

    async def search(self, query: str) -> list[dict[str, Any]]:
        url = self.options.get("url")
        if not url:
            raise ValueError(f"Connector {self.connector_id} has no url configured")

        response = await self._get(url, params=self._params(query))
        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise ParseError(
                f"Invalid JSON from {self.connector_id}: {e}", self.connector_id
            ) from e

        items = resolve_path(payload, self.options.get("results_path"))
        if items is None:
            return []
        if isinstance(items, dict):
            items = [items]
        if not isinstance(items, list):
            raise ParseError(
                f"Expected a result list from {self.connector_id}, got {type(items).__name__}",
                self.connector_id,
            )

        results = [self.map_item(item) for item in items if isinstance(item, dict)]
        logger.debug(f"{self.connector_id}: {len(results)} results for '{query}'")
        return results
