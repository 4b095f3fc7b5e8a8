"""Tests for venue source connectors."""

from typing import Any

import httpx
import pytest

from venue_fusion.core.enums import ConnectorKind
from venue_fusion.ingestion.connectors import (
    CONNECTOR_REGISTRY,
    BaseConnector,
    JsonApiConnector,
    StaticConnector,
    StructuredDataPageConnector,
    get_connector,
    get_connector_info,
    list_connectors,
    register_connector,
)
from venue_fusion.ingestion.connectors.http import parse_retry_after
from venue_fusion.ingestion.connectors.json_api import resolve_path
from venue_fusion.ingestion.errors import (
    AuthFailureError,
    ConnectorError,
    CrawlBlockedError,
    NetworkError,
    NotFoundError,
    ParseError,
    RateLimitedError,
)
from venue_fusion.ingestion.registry import ConnectorConfig

KAKAO_PAYLOAD = {
    "meta": {"total_count": 2},
    "documents": [
        {
            "place_name": "강남 피트니스 센터",
            "road_address_name": "서울 강남구 테헤란로 123",
            "phone": "02-1234-5678",
            "y": "37.5012",
            "x": "127.0396",
        },
        {"place_name": "강남 요가", "y": "37.4990", "x": "127.0300"},
    ],
}

KAKAO_OPTIONS = {
    "url": "https://dapi.example.com/v2/local/search/keyword.json",
    "api_key_header": "Authorization",
    "api_key_prefix": "KakaoAK ",
    "results_path": "documents",
    "field_map": {
        "name": "place_name",
        "address": "road_address_name",
        "phone": "phone",
        "latitude": "y",
        "longitude": "x",
    },
}

JSON_LD_PAGE = """
<html><head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [
  {"@type": "ExerciseGym", "name": "역삼 크로스핏",
   "address": {"addressRegion": "서울특별시", "addressLocality": "강남구",
               "streetAddress": "역삼로 45"},
   "telephone": "02-555-0101",
   "geo": {"latitude": 37.4951, "longitude": 127.033},
   "openingHoursSpecification": {"opens": "06:00:00", "closes": "23:00:00"},
   "amenityFeature": [{"name": "Parking", "value": true}],
   "aggregateRating": {"ratingValue": 4.5, "reviewCount": 120}},
  {"@type": "WebPage", "name": "검색 결과"}
]}
</script>
<script type="application/ld+json">{not valid json</script>
<script type="application/ld+json">
{"@type": ["LocalBusiness"], "name": "24시 헬스장",
 "openingHoursSpecification": [{"opens": "00:00", "closes": "23:59"}]}
</script>
</head><body></body></html>
"""


def _config(name: str, type_: str, kind: str = "api", **kwargs: Any) -> ConnectorConfig:
    return ConnectorConfig(name=name, type=type_, kind=ConnectorKind(kind), **kwargs)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestConnectorRegistry:
    """Tests for connector type registration."""

    def test_builtin_types(self) -> None:
        assert set(list_connectors()) >= {"static", "json_api", "structured_data"}

    def test_get_connector(self) -> None:
        connector = get_connector(_config("sample", "static"))
        assert isinstance(connector, StaticConnector)
        assert connector.connector_id == "sample"

    def test_unknown_type(self) -> None:
        assert get_connector(_config("x", "nope")) is None
        assert get_connector_info("nope") is None

    def test_connector_info(self) -> None:
        info = get_connector_info("json_api")
        assert info == {"type": "json_api", "version": "1.0.0", "class": "JsonApiConnector"}

    def test_register_connector(self) -> None:
        class EchoConnector(BaseConnector):
            CONNECTOR_TYPE = "echo"

            async def search(self, query: str) -> list[dict[str, Any]]:
                return [{"name": query}]

        register_connector("echo", EchoConnector)
        try:
            assert isinstance(get_connector(_config("e", "echo")), EchoConnector)
        finally:
            CONNECTOR_REGISTRY.pop("echo", None)

    def test_register_rejects_non_connector(self) -> None:
        with pytest.raises(TypeError):
            register_connector("bad", dict)  # type: ignore[arg-type]


class TestStaticConnector:
    """Tests for StaticConnector."""

    @pytest.mark.asyncio
    async def test_term_match(self) -> None:
        connector = StaticConnector(_config("sample", "static"))
        results = await connector.search("강남 피트니스")
        assert [r["name"] for r in results] == ["강남 피트니스 센터"]
        assert connector.calls == ["강남 피트니스"]

    @pytest.mark.asyncio
    async def test_exact_responses_first(self) -> None:
        connector = StaticConnector(
            _config("sample", "static", options={"responses": {"q": [{"name": "A"}]}})
        )
        assert await connector.search("q") == [{"name": "A"}]
        assert await connector.search("   ") == []

    @pytest.mark.asyncio
    async def test_fail_with(self) -> None:
        connector = StaticConnector(_config("sample", "static", options={"fail_with": "down"}))
        with pytest.raises(ConnectorError, match="down"):
            await connector.search("강남")

    def test_info(self) -> None:
        info = StaticConnector(_config("sample", "static", trust_weight=0.7)).get_info()
        assert info["id"] == "sample"
        assert info["kind"] == "api"
        assert info["trust_weight"] == 0.7


class TestJsonApiConnector:
    """Tests for JsonApiConnector over a mock transport."""

    @pytest.mark.asyncio
    async def test_field_map_and_auth_header(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_KAKAO_KEY", "abc123")
        seen: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["query"] = request.url.params.get("query")
            return httpx.Response(200, json=KAKAO_PAYLOAD)

        config = _config("kakao", "json_api", api_key_env="TEST_KAKAO_KEY", options=KAKAO_OPTIONS)
        connector = JsonApiConnector(config, client=_client(handler))
        results = await connector.search("강남 헬스")
        await connector.aclose()

        assert seen == {"auth": "KakaoAK abc123", "query": "강남 헬스"}
        assert results[0] == {
            "name": "강남 피트니스 센터",
            "address": "서울 강남구 테헤란로 123",
            "phone": "02-1234-5678",
            "latitude": "37.5012",
            "longitude": "127.0396",
        }
        assert "phone" not in results[1]

    @pytest.mark.asyncio
    async def test_missing_credential(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TEST_KAKAO_KEY", raising=False)
        config = _config("kakao", "json_api", api_key_env="TEST_KAKAO_KEY", options=KAKAO_OPTIONS)
        connector = JsonApiConnector(config, client=_client(lambda r: httpx.Response(200)))
        with pytest.raises(AuthFailureError):
            await connector.search("강남")

    @pytest.mark.asyncio
    async def test_rate_limited(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "12"})

        connector = JsonApiConnector(
            _config("api", "json_api", options={"url": "https://api.example.com/s"}),
            client=_client(handler),
        )
        with pytest.raises(RateLimitedError) as exc_info:
            await connector.search("강남")
        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.connector_id == "api"

    @pytest.mark.parametrize(
        "status,error",
        [(401, AuthFailureError), (403, AuthFailureError), (404, NotFoundError), (500, NetworkError)],
    )
    @pytest.mark.asyncio
    async def test_status_mapping(self, status: int, error: type) -> None:
        connector = JsonApiConnector(
            _config("api", "json_api", options={"url": "https://api.example.com/s"}),
            client=_client(lambda r: httpx.Response(status)),
        )
        with pytest.raises(error):
            await connector.search("강남")

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        connector = JsonApiConnector(
            _config("api", "json_api", options={"url": "https://api.example.com/s"}),
            client=_client(lambda r: httpx.Response(200, text="<html>oops</html>")),
        )
        with pytest.raises(ParseError):
            await connector.search("강남")

    @pytest.mark.asyncio
    async def test_transport_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        connector = JsonApiConnector(
            _config("api", "json_api", options={"url": "https://api.example.com/s"}),
            client=_client(handler),
        )
        with pytest.raises(NetworkError):
            await connector.search("강남")

    def test_resolve_path(self) -> None:
        data = {"response": {"items": [{"title": "a"}, {"title": "b"}]}}
        assert resolve_path(data, "response.items.1.title") == "b"
        assert resolve_path(data, "response.missing") is None
        assert resolve_path(data, "") is data


class TestStructuredDataPageConnector:
    """Tests for JSON-LD scraping."""

    def _connector(self, handler) -> StructuredDataPageConnector:
        config = _config(
            "pages", "structured_data", kind="html", options={"url": "https://venues.example.com/search"}
        )
        return StructuredDataPageConnector(config, client=_client(handler))

    @pytest.mark.asyncio
    async def test_parse_json_ld(self) -> None:
        connector = self._connector(lambda r: httpx.Response(200, text=JSON_LD_PAGE))
        results = await connector.search("헬스")

        assert [r["name"] for r in results] == ["역삼 크로스핏", "24시 헬스장"]
        gym = results[0]
        assert gym["address"] == "서울특별시 강남구 역삼로 45"
        assert gym["latitude"] == 37.4951
        assert gym["open_hour"] == "6:00"
        assert gym["close_hour"] == "23:00"
        assert gym["has_parking"] is True
        assert gym["review_count"] == 120
        assert results[1]["is_24_hours"] is True

    @pytest.mark.asyncio
    async def test_block_page(self) -> None:
        page = "<html><body>Please complete the CAPTCHA</body></html>"
        connector = self._connector(lambda r: httpx.Response(200, text=page))
        with pytest.raises(CrawlBlockedError):
            await connector.search("헬스")

    @pytest.mark.asyncio
    async def test_forbidden_is_block(self) -> None:
        """Test a 403 from a scraped page counts as blocking, not auth."""
        connector = self._connector(lambda r: httpx.Response(403))
        with pytest.raises(CrawlBlockedError):
            await connector.search("헬스")


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_values(self) -> None:
        assert parse_retry_after("30") == 30.0
        assert parse_retry_after(None) is None
        assert parse_retry_after("Wed, 21 Oct 2026 07:28:00 GMT") is None
        assert parse_retry_after("-5") == 0.0
