"""
Static Connector Module
=======================

Serves canned results from configuration or a JSON fixture file.
Used for offline demos and pipeline tests without network access.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from venue_fusion.ingestion.connectors.base import BaseConnector
from venue_fusion.ingestion.errors import ConnectorError
from venue_fusion.ingestion.query_expander import clean_name

if TYPE_CHECKING:
    from venue_fusion.ingestion.registry import ConnectorConfig

SAMPLE_VENUES: list[dict[str, Any]] = [
    {
        "name": "강남 피트니스 센터",
        "address": "서울특별시 강남구 테헤란로 123",
        "phone": "02-1234-5678",
        "latitude": 37.5012,
        "longitude": 127.0396,
        "is_24_hours": True,
        "has_parking": True,
        "has_shower": True,
        "has_pt": True,
    },
    {
        "name": "역삼 크로스핏",
        "address": "서울특별시 강남구 역삼로 45",
        "phone": "02-555-0101",
        "latitude": 37.4951,
        "longitude": 127.0330,
        "has_gx": True,
        "open_hour": "6:00",
        "close_hour": "23:00",
    },
    {
        "name": "마포 요가 스튜디오",
        "address": "서울특별시 마포구 월드컵로 210",
        "latitude": 37.5563,
        "longitude": 126.9101,
        "has_shower": True,
        "rating": 4.6,
        "review_count": 87,
    },
]


class StaticConnector(BaseConnector):
    """
    Connector backed by a fixed list of venues.

    Options:
        records: inline list of raw venue dicts
        fixture_path: JSON file holding a list of raw venue dicts
        responses: mapping of exact query to raw results, checked first
        fail_with: error message to raise on every call
    """

    CONNECTOR_TYPE = "static"
    CONNECTOR_VERSION = "1.0.0"

    def __init__(self, config: ConnectorConfig) -> None:
        super().__init__(config)
        self.calls: list[str] = []
        self._responses: dict[str, list[dict[str, Any]]] = dict(
            self.options.get("responses", {})
        )
        self._records = self._load_records()

    def _load_records(self) -> list[dict[str, Any]]:
        fixture_path = self.options.get("fixture_path")
        if fixture_path:
            with open(Path(fixture_path).expanduser()) as f:
                return json.load(f)
        return list(self.options.get("records", SAMPLE_VENUES))

    async def search(self, query: str) -> list[dict[str, Any]]:
        """Return venues whose cleaned name contains the query terms."""
        self.calls.append(query)
        if self.options.get("fail_with"):
            raise ConnectorError(self.options["fail_with"], self.connector_id)
        if query in self._responses:
            return [dict(r) for r in self._responses[query]]

        terms = clean_name(query).lower().split()
        if not terms:
            return []
        return [
            dict(record)
            for record in self._records
            if all(t in clean_name(str(record.get("name", ""))).lower() for t in terms)
        ]
