"""Tests for the per-venue fetch-and-fuse pipeline."""

from typing import Any

import pytest

from venue_fusion.core.enums import ConnectorKind, UpdateType
from venue_fusion.core.schema import MergedRecord
from venue_fusion.ingestion.connectors import StaticConnector
from venue_fusion.ingestion.errors import EntityNotResolvedError
from venue_fusion.ingestion.fetcher import FetchExecutor
from venue_fusion.ingestion.pipeline import CACHED_SOURCE, VenuePipeline, cached_source_record
from venue_fusion.ingestion.registry import ConnectorConfig, ConnectorRegistry

KAKAO_RECORD = {
    "name": "강남 피트니스 센터",
    "address": "서울특별시 강남구 테헤란로 123",
    "phone": "0212345678",
    "latitude": 37.5012,
    "longitude": 127.0396,
    "has_parking": True,
}

BLOG_RECORD = {
    "name": "강남 피트니스 센터",
    "address": "서울특별시 강남구 테헤란로",
    "latitude": 37.5013,
    "longitude": 127.0397,
    "has_gx": True,
    "rating": 4.4,
}


class FakeStore:
    """In-memory stand-in for VenueStore."""

    def __init__(self, records: list[MergedRecord] | None = None) -> None:
        self.records = {r.name: r for r in records or []}
        self.lookups: list[str] = []

    def find_by_name(self, name: str) -> MergedRecord | None:
        self.lookups.append(name)
        return self.records.get(name)

    def upsert(self, record: MergedRecord, lookup_name: str | None = None) -> MergedRecord:
        self.records.pop(lookup_name or record.name, None)
        self.records[record.name] = record
        return record


async def _no_sleep(seconds: float) -> None:
    return None


def _static(name: str, kind: str = "api", **options: Any) -> StaticConnector:
    return StaticConnector(
        ConnectorConfig(name=name, type="static", kind=ConnectorKind(kind), options=options)
    )


def _pipeline(connectors: list[StaticConnector], store: FakeStore | None = None) -> VenuePipeline:
    return VenuePipeline(
        connectors=connectors,
        fetcher=FetchExecutor(max_retries=2, sleep=_no_sleep),
        store=store,
    )


def _cached_venue() -> MergedRecord:
    return MergedRecord(
        name="강남 피트니스 센터",
        address="서울특별시 강남구 테헤란로 123",
        latitude=37.5012,
        longitude=127.0396,
        sources=["kakao_map"],
        source="통합검색_kakao_map",
        confidence=0.9,
    )


class TestProcessEntity:
    """Tests for VenuePipeline.process_entity."""

    @pytest.mark.asyncio
    async def test_fuses_across_connectors(self) -> None:
        store = FakeStore()
        pipeline = _pipeline(
            [_static("kakao_map", records=[KAKAO_RECORD]), _static("naver_blog", records=[BLOG_RECORD])],
            store,
        )

        record = await pipeline.process_entity("강남 피트니스 센터")

        assert record.sources == ["kakao_map", "naver_blog"]
        assert record.source == "통합검색_kakao_map+naver_blog"
        assert record.address == "서울특별시 강남구 테헤란로 123"
        assert record.phone == "02-1234-5678"
        assert record.has_parking is True
        assert record.has_gx is True
        assert record.rating == 4.4
        assert record.confidence >= 0.9
        assert store.records["강남 피트니스 센터"] is record

    @pytest.mark.asyncio
    async def test_without_store(self) -> None:
        pipeline = _pipeline([_static("kakao_map", records=[KAKAO_RECORD])])
        record = await pipeline.process_entity("강남 피트니스 센터")
        assert record.sources == ["kakao_map"]

    @pytest.mark.asyncio
    async def test_tries_query_variants(self) -> None:
        """Test later variants are tried when the first query finds nothing."""
        connector = _static("kakao_map", responses={"강남 헬스": [KAKAO_RECORD]}, records=[])
        pipeline = _pipeline([connector])

        record = await pipeline.process_entity("강남 피트니스 센터")

        assert record.name == "강남 피트니스 센터"
        assert connector.calls[0] == "강남 피트니스 센터"
        assert connector.calls[-1] == "강남 헬스"

    @pytest.mark.asyncio
    async def test_no_candidates(self) -> None:
        pipeline = _pipeline([_static("kakao_map", records=[])])
        with pytest.raises(EntityNotResolvedError, match="No candidates"):
            await pipeline.process_entity("없는 헬스장")

    @pytest.mark.asyncio
    async def test_rejected_record(self) -> None:
        """Test a fused record without an address is not persisted."""
        store = FakeStore()
        raw = {"name": "주소없는 헬스장", "latitude": 37.5, "longitude": 127.0}
        pipeline = _pipeline([_static("kakao_map", records=[raw])], store)

        with pytest.raises(EntityNotResolvedError, match="missing address"):
            await pipeline.process_entity("주소없는 헬스장")
        assert store.records == {}

    @pytest.mark.asyncio
    async def test_network_failure_uses_cache(self) -> None:
        """Test a connector that keeps failing falls back to the stored record."""
        store = FakeStore([_cached_venue()])
        failing = _static("kakao_map", fail_with="network unreachable")
        pipeline = _pipeline([failing], store)

        record = await pipeline.process_entity("강남 피트니스 센터")

        assert record.sources == [CACHED_SOURCE]
        assert record.address == "서울특별시 강남구 테헤란로 123"
        assert len(failing.calls) == 2
        assert store.lookups == ["강남 피트니스 센터"]

    @pytest.mark.asyncio
    async def test_failure_without_cache(self) -> None:
        pipeline = _pipeline([_static("kakao_map", fail_with="network unreachable")], FakeStore())
        with pytest.raises(EntityNotResolvedError, match="kakao_map"):
            await pipeline.process_entity("강남 피트니스 센터")


class TestFuseCandidates:
    """Tests for fusing a raw result set without fetching."""

    def test_counts_add_up(self) -> None:
        venues = [
            ("강남 피트니스 센터", 37.5012, 127.0396),
            ("역삼 크로스핏", 37.4951, 127.0330),
            ("마포 요가 스튜디오", 37.5563, 126.9101),
            ("잠실 스포츠 클럽", 37.5133, 127.1001),
            ("홍대 복싱 체육관", 37.5563, 126.9236),
            ("신촌 필라테스", 37.5598, 126.9425),
            ("노원 수영장", 37.6542, 127.0568),
            ("종로 클라이밍", 37.5704, 126.9921),
            ("송파 배드민턴", 37.5145, 127.1059),
            ("용산 주짓수", 37.5326, 126.9905),
            ("영등포 스피닝", 37.5264, 126.8963),
            ("성수 러닝 크루", 37.5445, 127.0557),
        ]
        raw: list[dict[str, Any]] = [
            {"name": name, "address": f"서울특별시 {name} 123", "latitude": lat, "longitude": lon}
            for name, lat, lon in venues
        ]
        raw += [
            {"address": "이름 없음"},
            {"name": "좌표 오류", "latitude": "abc", "longitude": 127.0},
            {"name": "국외 체육관", "latitude": 10.0, "longitude": 10.0},
        ]

        report = _pipeline([]).fuse_candidates(raw, "seoul_opendata")

        assert report.total == 15
        assert report.success == 12
        assert report.failed == 3
        assert report.success + report.failed == report.total
        assert len(report.errors) >= 3
        assert report.to_dict()["total"] == 15

    def test_empty(self) -> None:
        report = _pipeline([]).fuse_candidates([], "kakao_map")
        assert report.total == report.success == report.failed == 0
        assert report.merged == []


class TestPipelineHelpers:
    """Tests for cached records and registry wiring."""

    def test_cached_source_record(self) -> None:
        cached = cached_source_record(_cached_venue())
        assert cached.source == CACHED_SOURCE
        assert cached.confidence == 0.9
        assert cached.address == "서울특별시 강남구 테헤란로 123"
        assert "cached_at" in cached.additional_info

    def test_from_registry_selects_kinds(self) -> None:
        registry = ConnectorRegistry()
        registry.add_connector(ConnectorConfig(name="api_source", type="static"))
        registry.add_connector(
            ConnectorConfig(name="page_source", type="static", kind=ConnectorKind.HTML)
        )
        registry.add_connector(ConnectorConfig(name="unknown", type="no_such_type"))

        structured = VenuePipeline.from_registry(registry, update_type=UpdateType.STRUCTURED)
        full = VenuePipeline.from_registry(registry, update_type=UpdateType.FULL)

        assert [c.connector_id for c in structured.connectors] == ["api_source"]
        assert [c.connector_id for c in full.connectors] == ["api_source", "page_source"]
        assert full.fetcher.max_retries == registry.batch.max_retries
