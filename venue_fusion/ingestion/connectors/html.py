"""
HTML Page Connector Module
==========================

Base for connectors that scrape a search results page. Subclasses only
parse markup; fetching, user-agent rotation and block detection live here.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Any

from venue_fusion.ingestion.connectors.http import HttpConnector
from venue_fusion.ingestion.errors import CrawlBlockedError, ParseError

logger = logging.getLogger(__name__)

BLOCK_MARKERS: tuple[str, ...] = (
    "captcha",
    "access denied",
    "unusual traffic",
    "자동입력 방지",
    "비정상적인 접근",
)


class HtmlPageConnector(HttpConnector):
    """
    Connector that fetches an HTML search page and parses it.

    Options:
        url: Search page URL (required)
        query_param: Name of the query parameter (default "query")
        block_markers: Extra phrases that identify a block page
    """

    CONNECTOR_TYPE = "html"
    CONNECTOR_VERSION = "1.0.0"

    @abstractmethod
    def parse_results(self, html: str) -> list[dict[str, Any]]:
        """
        Extract raw venue dicts from a results page.

        Args:
            html: Page markup

        Returns:
            List of raw venue dicts
        """

    def is_block_page(self, html: str) -> bool:
        """Return True if the page looks like a bot challenge."""
        lowered = html.lower()
        markers = BLOCK_MARKERS + tuple(m.lower() for m in self.options.get("block_markers", []))
        return any(marker in lowered for marker in markers)

    async def search(self, query: str) -> list[dict[str, Any]]:
        url = self.options.get("url")
        if not url:
            raise ValueError(f"Connector {self.connector_id} has no url configured")

        params = dict(self.options.get("params", {}))
        params[self.options.get("query_param", "query")] = query
        response = await self._get(url, params=params)
        html = response.text

        if self.is_block_page(html):
            raise CrawlBlockedError(f"Block page served by {url}", self.connector_id)

        try:
            results = self.parse_results(html)
        except (ValueError, KeyError, IndexError) as e:
            raise ParseError(f"Could not parse {url}: {e}", self.connector_id) from e

        logger.debug(f"{self.connector_id}: parsed {len(results)} results for '{query}'")
        return results
