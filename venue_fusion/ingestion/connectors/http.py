"""
HTTP Connector Module
=====================

Shared request handling for connectors that talk HTTP. Maps transport
failures and error status codes onto the typed connector errors.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any

import httpx

from venue_fusion.ingestion.connectors.base import BaseConnector
from venue_fusion.ingestion.errors import (
    AuthFailureError,
    ConnectorTimeoutError,
    CrawlBlockedError,
    DnsError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)

if TYPE_CHECKING:
    from venue_fusion.ingestion.registry import ConnectorConfig

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS: list[str] = [
    "VenueFusion/0.1 (+https://example.invalid/bot)",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
]

_DNS_HINTS = ("name or service", "nodename", "getaddrinfo", "enotfound", "name resolution")


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value.strip()))
    except ValueError:
        return None


class HttpConnector(BaseConnector):
    """
    Base class for connectors that issue HTTP GET requests.

    An ``httpx.AsyncClient`` may be injected (tests pass one built on
    ``httpx.MockTransport``); otherwise one is created per request.
    """

    CONNECTOR_TYPE = "http"

    def __init__(
        self,
        config: ConnectorConfig,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(config)
        self._client = client
        self.timeout = float(self.options.get("timeout", timeout))
        agents = self.options.get("user_agents") or DEFAULT_USER_AGENTS
        self._user_agents = itertools.cycle(agents)

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": next(self._user_agents)}
        headers.update(self.options.get("headers", {}))
        return headers

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """
        Issue a GET request and raise typed errors for failures.

        Args:
            url: Request URL
            params: Query parameters

        Returns:
            The successful response
        """
        headers = self._headers()
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout, follow_redirects=True
                ) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise ConnectorTimeoutError(f"Timeout fetching {url}: {e}", self.connector_id) from e
        except httpx.ConnectError as e:
            message = str(e).lower()
            if any(hint in message for hint in _DNS_HINTS):
                raise DnsError(f"DNS failure for {url}: {e}", self.connector_id) from e
            raise NetworkError(f"Connection failed for {url}: {e}", self.connector_id) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Transport error for {url}: {e}", self.connector_id) from e

        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        url = str(response.request.url)
        if status == 429:
            raise RateLimitedError(
                f"Rate limited by {url}",
                self.connector_id,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status == 401:
            raise AuthFailureError(f"Unauthorized for {url}", self.connector_id)
        if status == 403:
            if self.kind.value == "api":
                raise AuthFailureError(f"Forbidden for {url}", self.connector_id)
            raise CrawlBlockedError(f"Blocked by {url}", self.connector_id)
        if status == 404:
            raise NotFoundError(f"Not found: {url}", self.connector_id)
        if status == 408:
            raise ConnectorTimeoutError(f"Server timeout for {url}", self.connector_id)
        raise NetworkError(f"HTTP {status} from {url}", self.connector_id)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
