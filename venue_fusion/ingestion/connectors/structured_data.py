"""
Structured Data Page Connector Module
=====================================

Scrapes venue facts from schema.org JSON-LD blocks embedded in result
pages. Many venue directories publish ``LocalBusiness`` /
``ExerciseGym`` markup, which avoids per-site CSS selectors.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from bs4 import BeautifulSoup

from venue_fusion.ingestion.connectors.html import HtmlPageConnector

logger = logging.getLogger(__name__)

VENUE_TYPES = frozenset(
    {"ExerciseGym", "HealthClub", "SportsActivityLocation", "LocalBusiness", "SportsClub"}
)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _short_time(value: Any) -> str | None:
    """Turn "06:00" or "06:00:00" into "6:00"."""
    parts = str(value).split(":")
    if len(parts) < 2 or not parts[0].isdigit() or not parts[1][:2].isdigit():
        return None
    return f"{int(parts[0])}:{parts[1][:2]}"


def _is_venue(node: dict[str, Any]) -> bool:
    types = {str(t) for t in _as_list(node.get("@type"))}
    return bool(types & VENUE_TYPES)


def _format_address(address: Any) -> str | None:
    if isinstance(address, str):
        return address
    if isinstance(address, dict):
        parts = [
            address.get("addressRegion"),
            address.get("addressLocality"),
            address.get("streetAddress"),
        ]
        text = " ".join(str(p) for p in parts if p)
        return text or None
    return None


def venue_from_json_ld(node: dict[str, Any]) -> dict[str, Any]:
    """Map one schema.org venue node onto raw venue fields."""
    venue: dict[str, Any] = {"name": node.get("name")}

    address = _format_address(node.get("address"))
    if address:
        venue["address"] = address
    if node.get("telephone"):
        venue["phone"] = node["telephone"]

    geo = node.get("geo")
    if isinstance(geo, dict):
        venue["latitude"] = geo.get("latitude")
        venue["longitude"] = geo.get("longitude")

    rating = node.get("aggregateRating")
    if isinstance(rating, dict):
        venue["rating"] = rating.get("ratingValue")
        venue["review_count"] = rating.get("reviewCount") or rating.get("ratingCount")

    if node.get("priceRange"):
        venue["price"] = node["priceRange"]

    for spec in _as_list(node.get("openingHoursSpecification")):
        if not isinstance(spec, dict):
            continue
        opens, closes = spec.get("opens"), spec.get("closes")
        if opens in ("00:00", "0:00") and closes in ("23:59", "24:00"):
            venue["is_24_hours"] = True
        elif opens and closes:
            venue["open_hour"] = _short_time(opens)
            venue["close_hour"] = _short_time(closes)
        break

    amenities = {
        str(a.get("name", "")).lower()
        for a in _as_list(node.get("amenityFeature"))
        if isinstance(a, dict) and a.get("value", True)
    }
    if "parking" in amenities:
        venue["has_parking"] = True
    if "shower" in amenities or "showers" in amenities:
        venue["has_shower"] = True

    return {k: v for k, v in venue.items() if v is not None}


class StructuredDataPageConnector(HtmlPageConnector):
    """Scrapes JSON-LD venue markup from an HTML search page."""

    CONNECTOR_TYPE = "structured_data"
    CONNECTOR_VERSION = "1.0.0"

    def parse_results(self, html: str) -> list[dict[str, Any]]:
        soup = BeautifulSoup(html, "html.parser")
        venues: list[dict[str, Any]] = []

        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            text = script.string or script.get_text()
            if not text or not text.strip():
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.debug(f"{self.connector_id}: skipping malformed JSON-LD block")
                continue

            nodes: list[Any] = []
            for item in _as_list(data):
                if isinstance(item, dict) and "@graph" in item:
                    nodes.extend(_as_list(item["@graph"]))
                else:
                    nodes.append(item)

            for node in nodes:
                if isinstance(node, dict) and _is_venue(node) and node.get("name"):
                    venues.append(venue_from_json_ld(node))

        return venues
