"""Tests for similarity scoring and grouping."""

import pytest

from venue_fusion.core.schema import SourceRecord
from venue_fusion.ingestion.grouping import (
    SimilarityEngine,
    geo_similarity,
    haversine_km,
    jaccard,
    name_similarity,
    phone_similarity,
)


def _record(name: str, source: str = "kakao", **kwargs) -> SourceRecord:
    return SourceRecord(name=name, source=source, **kwargs)


class TestFieldSimilarity:
    """Tests for the per-field similarity helpers."""

    def test_jaccard(self) -> None:
        assert jaccard("서울 강남구 테헤란로 123", "서울 강남구 테헤란로 123") == 1.0
        assert jaccard("서울 강남구 테헤란로 123", "서울 강남구 테헤란로 123 2층") == pytest.approx(0.8)
        assert jaccard("", "") == 1.0

    def test_name_similarity_ignores_spacing_and_corporate_tokens(self) -> None:
        assert name_similarity("(주)파워짐 강남점", "파워짐강남점") == 1.0

    def test_phone_similarity(self) -> None:
        assert phone_similarity("02-1234-5678", "0212345678") == 1.0
        assert phone_similarity("02-1234-5678", "02-1234-5679") == pytest.approx(0.9)
        assert phone_similarity("", "") == 0.0

    def test_haversine(self) -> None:
        # one thousandth of a degree of latitude is about 111 m
        assert haversine_km(37.5, 127.0, 37.501, 127.0) == pytest.approx(0.111, abs=0.001)

    def test_geo_buckets(self) -> None:
        assert geo_similarity(37.5, 127.0, 37.5003, 127.0) == 1.0
        assert geo_similarity(37.5, 127.0, 37.505, 127.0) == 0.8
        assert geo_similarity(37.5, 127.0, 37.53, 127.0) == 0.5
        assert geo_similarity(37.5, 127.0, 37.6, 127.0) == 0.0


class TestSimilarityEngine:
    """Tests for SimilarityEngine."""

    def test_bounds_and_symmetry(self) -> None:
        """Test similarity stays in [0, 1] and is symmetric."""
        engine = SimilarityEngine()
        records = [
            _record("파워짐", address="서울 강남구 테헤란로 123", phone="02-1234-5678"),
            _record("파워 짐", latitude=37.5, longitude=127.0),
            _record("요가원", address="서울 마포구 월드컵로 1", latitude=37.55, longitude=126.9),
            _record("x"),
        ]
        for a in records:
            for b in records:
                score = engine.similarity(a, b)
                assert 0.0 <= score <= 1.0
                assert score == pytest.approx(engine.similarity(b, a))

    def test_renormalizes_over_shared_fields(self) -> None:
        """Test missing fields do not drag the score down."""
        engine = SimilarityEngine()
        a = _record("파워짐", phone="02-1234-5678")
        b = _record("파워짐", address="서울 강남구 테헤란로 123")
        assert engine.similarity(a, b) == 1.0

    def test_unit_number_and_nearby_coordinates_group(self) -> None:
        """Test same name, address differing by a unit and 40 m apart group together."""
        engine = SimilarityEngine()
        a = _record(
            "강남 피트니스",
            source="kakao_map",
            address="서울 강남구 테헤란로 123",
            latitude=37.5012,
            longitude=127.0396,
        )
        b = _record(
            "강남 피트니스",
            source="naver_blog",
            address="서울 강남구 테헤란로 123 2층",
            latitude=37.50156,
            longitude=127.0396,
        )
        assert engine.similarity(a, b) >= 0.8
        groups = engine.group([a, b])
        assert len(groups) == 1
        assert len(groups[0]) == 2

    def test_complementary_records_group(self) -> None:
        """Test one record missing phone and another missing address still group."""
        engine = SimilarityEngine()
        a = _record("역삼 크로스핏", source="kakao_map", address="서울 강남구 역삼로 45")
        b = _record("역삼 크로스핏", source="naver_blog", phone="02-555-0101")
        groups = engine.group([a, b])
        assert len(groups) == 1

    def test_distinct_venues_stay_apart(self) -> None:
        """Test different venues form separate groups."""
        engine = SimilarityEngine()
        a = _record("강남 피트니스", address="서울 강남구 테헤란로 123", latitude=37.5012, longitude=127.0396)
        b = _record("마포 요가", address="서울 마포구 월드컵로 210", latitude=37.5563, longitude=126.9101)
        groups = engine.group([a, b])
        assert len(groups) == 2

    def test_grouping_is_a_partition(self) -> None:
        """Test every record lands in exactly one group, seeds in scan order."""
        engine = SimilarityEngine()
        records = [
            _record("파워짐"),
            _record("요가원"),
            _record("파워짐", source="naver"),
            _record("요가원", source="naver"),
            _record("크로스핏"),
        ]
        groups = engine.group(records)
        flattened = [r for g in groups for r in g.records]
        assert len(flattened) == len(records)
        assert {id(r) for r in flattened} == {id(r) for r in records}
        assert [g.seed.name for g in groups] == ["파워짐", "요가원", "크로스핏"]

    def test_grouping_is_not_transitive(self) -> None:
        """Test members are compared against the seed only."""
        engine = SimilarityEngine(threshold=0.5)
        seed = _record("a b")
        near = _record("a b c")
        far = _record("b c d")
        # near ~ seed (2/3), far ~ near (2/4) but far !~ seed (1/4)
        groups = engine.group([seed, near, far])
        assert [len(g) for g in groups] == [2, 1]

    def test_empty_input(self) -> None:
        assert SimilarityEngine().group([]) == []
