"""
Fusion Engine Module
====================

Merges each group of observations into one MergedRecord. Members are
ranked by a data score blending source trust, record confidence and
completeness; the best member seeds the result and the others fill in
or improve individual fields.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from venue_fusion.core.schema import SOURCE_PREFIX, MergedRecord, SourceRecord
from venue_fusion.core.scoring import QualityScorer, is_field_complete
from venue_fusion.ingestion.grouping import EntityGroup, haversine_km

logger = logging.getLogger(__name__)

SOURCE_WEIGHTS: dict[str, float] = {
    "seoul_opendata": 1.0,
    "google_places": 0.95,
    "kakao_map": 0.9,
    "facebook": 0.85,
    "naver_blog": 0.8,
    "gym_site": 0.8,
    "naver_kin": 0.75,
    "naver_cafe": 0.7,
    "daum_blog": 0.65,
    "local_community": 0.6,
    "instagram": 0.5,
    "twitter": 0.4,
    "cached": 0.9,
}
DEFAULT_SOURCE_WEIGHT = 0.5

FIELD_PRIORITIES: dict[str, float] = {
    "name": 1.0,
    "address": 0.95,
    "phone": 0.9,
    "latitude": 0.85,
    "longitude": 0.85,
    "is_24_hours": 0.8,
    "has_parking": 0.7,
    "has_shower": 0.7,
    "has_pt": 0.8,
    "has_gx": 0.8,
    "has_group_pt": 0.7,
    "open_hour": 0.6,
    "close_hour": 0.6,
    "price": 0.5,
    "rating": 0.8,
    "review_count": 0.7,
}

STRING_FIELDS = ("address", "phone", "open_hour", "close_hour", "price")
COUNTER_FIELDS = ("rating", "review_count")

FACILITY_LABELS: dict[str, str] = {
    "is_24_hours": "24시간",
    "has_parking": "주차",
    "has_shower": "샤워",
    "has_pt": "PT",
    "has_gx": "GX",
    "has_group_pt": "그룹PT",
}
BASIC_FACILITIES = "기본시설"

DIVERSITY_BONUS_PER_SOURCE = 0.02
MAX_DIVERSITY_BONUS = 0.1


def string_detail_score(value: str) -> float:
    """Heuristic for how specific a string value is."""
    score = 0.0
    if re.search(r"\d", value):
        score += 0.3
    if re.search(r"[-,()]", value):
        score += 0.2
    if len(value) > 10:
        score += 0.2
    if re.search(r"[가-힣]", value):
        score += 0.3
    return round(score, 2)


def describe_facilities(record: Any) -> str:
    """Human-readable list of the facilities a record has."""
    labels = [label for flag, label in FACILITY_LABELS.items() if getattr(record, flag, None)]
    return ", ".join(labels) if labels else BASIC_FACILITIES


@dataclass
class RejectedRecord:
    """A fused record that failed acceptance checks."""

    record: MergedRecord
    reasons: list[str]


@dataclass
class FusionOutcome:
    """Accepted and rejected records from one fusion pass."""

    accepted: list[MergedRecord] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)


class FusionEngine:
    """
    Field-level merge of grouped observations.

    Args:
        source_weights: Trust weight per connector id; unknown ids use 0.5
        confidence_threshold: Minimum fused confidence to accept a record
        coordinate_delta_meters: Distance beyond which a later member's
            coordinates replace the current pair
        scorer: QualityScorer used for data_quality
    """

    def __init__(
        self,
        source_weights: dict[str, float] | None = None,
        confidence_threshold: float = 0.6,
        coordinate_delta_meters: float = 100.0,
        scorer: QualityScorer | None = None,
    ) -> None:
        self.source_weights = dict(SOURCE_WEIGHTS)
        if source_weights:
            self.source_weights.update(source_weights)
        self.confidence_threshold = confidence_threshold
        self.coordinate_delta_meters = coordinate_delta_meters
        self.scorer = scorer or QualityScorer()

    def source_weight(self, source: str) -> float:
        return self.source_weights.get(source, DEFAULT_SOURCE_WEIGHT)

    @staticmethod
    def completeness(record: SourceRecord) -> float:
        """Priority-weighted share of fields the record fills in."""
        total = sum(FIELD_PRIORITIES.values())
        filled = sum(
            priority
            for name, priority in FIELD_PRIORITIES.items()
            if is_field_complete(getattr(record, name, None))
        )
        return filled / total

    def data_score(self, record: SourceRecord) -> float:
        """0.4 * source weight + 0.4 * confidence + 0.2 * completeness."""
        return (
            0.4 * self.source_weight(record.source)
            + 0.4 * record.confidence
            + 0.2 * self.completeness(record)
        )

    def rank(self, records: list[SourceRecord]) -> list[SourceRecord]:
        """Members ordered by data score, best first; ties keep scan order."""
        return sorted(records, key=self.data_score, reverse=True)

    def merge_group(self, group: EntityGroup | list[SourceRecord]) -> MergedRecord:
        """
        Merge one group into a MergedRecord.

        Args:
            group: Non-empty group of SourceRecords

        Returns:
            The fused record with facilities, provenance, confidence and
            data quality filled in
        """
        members: list[SourceRecord] = list(
            group.records if isinstance(group, EntityGroup) else group
        )
        if not members:
            raise ValueError("Cannot merge an empty group")

        ranked = self.rank(members)
        seed = ranked[0]
        values: dict[str, Any] = {name: getattr(seed, name) for name in FIELD_PRIORITIES}

        for other in ranked[1:]:
            self._merge_fields(values, other)

        sources = list(dict.fromkeys(m.source for m in members))
        merged = MergedRecord(
            **values,
            sources=sources,
            source=f"{SOURCE_PREFIX}{'+'.join(sources)}",
            confidence=self.final_confidence(members),
        )
        merged.facilities = describe_facilities(merged)
        merged.data_quality = self.scorer.score(merged)
        return merged

    def _merge_fields(self, values: dict[str, Any], other: SourceRecord) -> None:
        # coordinates move as a pair
        if other.has_coordinates:
            if values["latitude"] is None or values["longitude"] is None:
                values["latitude"], values["longitude"] = other.latitude, other.longitude
            else:
                distance_m = 1000 * haversine_km(
                    values["latitude"], values["longitude"], other.latitude, other.longitude
                )
                if distance_m > self.coordinate_delta_meters:
                    values["latitude"], values["longitude"] = other.latitude, other.longitude

        for name in FIELD_PRIORITIES:
            if name in ("name", "latitude", "longitude"):
                continue
            incoming = getattr(other, name)
            if not is_field_complete(incoming):
                continue
            current = values[name]
            if not is_field_complete(current):
                values[name] = incoming
            elif name in STRING_FIELDS:
                if string_detail_score(incoming) > string_detail_score(current):
                    values[name] = incoming
            elif name in COUNTER_FIELDS:
                if incoming > current:
                    values[name] = incoming

    def final_confidence(self, members: list[SourceRecord]) -> float:
        """Trust-weighted mean confidence plus a source diversity bonus, capped at 1."""
        total_weight = sum(self.source_weight(m.source) for m in members)
        if total_weight <= 0:
            return 0.0
        weighted = sum(m.confidence * self.source_weight(m.source) for m in members)
        distinct = len({m.source for m in members})
        bonus = min(MAX_DIVERSITY_BONUS, DIVERSITY_BONUS_PER_SOURCE * distinct)
        return round(min(1.0, weighted / total_weight + bonus), 4)

    def rejection_reasons(self, record: MergedRecord) -> list[str]:
        """Reasons a fused record may not be persisted; empty when acceptable."""
        reasons: list[str] = []
        if record.confidence < self.confidence_threshold:
            reasons.append(
                f"confidence {record.confidence:.2f} below {self.confidence_threshold:.2f}"
            )
        if not record.name or not record.name.strip():
            reasons.append("missing name")
        if not record.address or not record.address.strip():
            reasons.append("missing address")
        if not record.has_coordinates or (record.latitude == 0 and record.longitude == 0):
            reasons.append("missing coordinates")
        return reasons

    def fuse(self, groups: list[EntityGroup]) -> FusionOutcome:
        """
        Merge every group and split the results into accepted and rejected.

        Rejected records are logged and never returned as accepted.
        """
        outcome = FusionOutcome()
        for group in groups:
            merged = self.merge_group(group)
            reasons = self.rejection_reasons(merged)
            if reasons:
                logger.warning(f"Rejected fused record '{merged.name}': {', '.join(reasons)}")
                outcome.rejected.append(RejectedRecord(record=merged, reasons=reasons))
            else:
                outcome.accepted.append(merged)
        logger.info(
            f"Fused {len(groups)} groups: {len(outcome.accepted)} accepted, "
            f"{len(outcome.rejected)} rejected"
        )
        return outcome
