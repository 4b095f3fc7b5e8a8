"""Composite data quality scoring for venue records."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from venue_fusion.core.enums import Severity
from venue_fusion.core.schema import (
    QualityScore,
    ValidationIssue,
    ValidationResult,
    VenueFields,
)

FIELD_WEIGHTS: dict[str, float] = {
    "name": 0.2,
    "address": 0.2,
    "phone": 0.15,
    "latitude": 0.15,
    "longitude": 0.15,
    "is_24_hours": 0.05,
    "has_parking": 0.05,
    "has_shower": 0.05,
    "has_pt": 0.05,
    "has_gx": 0.05,
    "has_group_pt": 0.05,
    "open_hour": 0.05,
    "close_hour": 0.05,
    "price": 0.05,
    "rating": 0.05,
    "review_count": 0.05,
}

REQUIRED_FIELDS = frozenset({"name", "address", "latitude", "longitude"})

COMPONENT_WEIGHTS: dict[str, float] = {
    "completeness": 0.3,
    "accuracy": 0.3,
    "consistency": 0.2,
    "validity": 0.1,
    "timeliness": 0.1,
}

PHONE_PATTERN = re.compile(r"^\d{2,3}-\d{3,4}-\d{4}$")
NAME_PATTERN = re.compile(r"^[\w\s\-()&.·]+$")
HOUR_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")
ALL_DAY = "24시간"


def is_field_complete(value: Any) -> bool:
    """Return True if a field value counts as filled in."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, float):
        return value == value
    return True


def _parse_hour(value: str) -> int | None:
    """Parse ``H:MM`` into minutes past midnight."""
    match = HOUR_PATTERN.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 24 or minutes > 59:
        return None
    return hours * 60 + minutes


def is_valid_hour(value: str) -> bool:
    """Return True for ``H:MM`` strings or the all-day marker."""
    return value.strip() == ALL_DAY or _parse_hour(value) is not None


@dataclass
class QualityConfig:
    """Region bounds and thresholds used by the quality scorer."""

    region_keywords: list[str] = field(default_factory=lambda: ["서울"])
    latitude_range: tuple[float, float] = (37.4, 37.7)
    longitude_range: tuple[float, float] = (126.8, 127.2)
    min_overall: float = 0.7

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> QualityConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        defaults = cls()
        lat = data.get("latitude_range", defaults.latitude_range)
        lon = data.get("longitude_range", defaults.longitude_range)
        return cls(
            region_keywords=list(data.get("region_keywords", defaults.region_keywords)),
            latitude_range=(float(lat[0]), float(lat[1])),
            longitude_range=(float(lon[0]), float(lon[1])),
            min_overall=float(data.get("min_overall", defaults.min_overall)),
        )


@dataclass
class QualityStats:
    """Aggregate quality figures over a set of records."""

    total_records: int
    average_score: float
    distribution: dict[str, int]
    common_issues: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "average_score": self.average_score,
            "distribution": dict(self.distribution),
            "common_issues": list(self.common_issues),
        }


class QualityScorer:
    """
    Scores a venue record on completeness, accuracy, consistency,
    validity and timeliness.

    The same scorer audits freshly fused records and records already
    held by the persistence layer.
    """

    def __init__(self, config: QualityConfig | None = None) -> None:
        self.config = config or QualityConfig()

    def validate(self, record: VenueFields, now: datetime | None = None) -> ValidationResult:
        """
        Validate a record and compute its quality score.

        Args:
            record: Any venue record (source, merged or persisted).
            now: Reference time for timeliness; defaults to current UTC time.

        Returns:
            ValidationResult with component scores, issues and recommendations.
        """
        issues: list[ValidationIssue] = []

        completeness = self._score_completeness(record, issues)
        accuracy = self._score_accuracy(record, issues)
        consistency = self._score_consistency(record, issues)
        validity = self._score_validity(record, issues)
        timeliness = self._score_timeliness(record, issues, now)

        components = {
            "completeness": completeness,
            "accuracy": accuracy,
            "consistency": consistency,
            "validity": validity,
            "timeliness": timeliness,
        }
        overall = sum(components[k] * w for k, w in COMPONENT_WEIGHTS.items())
        overall = min(1.0, max(0.0, overall / sum(COMPONENT_WEIGHTS.values())))

        score = QualityScore(overall=round(overall, 4), **{k: round(v, 4) for k, v in components.items()})
        has_critical = any(i.severity == Severity.CRITICAL for i in issues)

        return ValidationResult(
            is_valid=score.overall >= self.config.min_overall and not has_critical,
            score=score,
            issues=issues,
            recommendations=self._recommendations(score, issues),
        )

    def score(self, record: VenueFields, now: datetime | None = None) -> float:
        """Shortcut returning only the overall score."""
        return self.validate(record, now).score.overall

    def _score_completeness(self, record: VenueFields, issues: list[ValidationIssue]) -> float:
        filled = 0.0
        total = 0.0
        for name, weight in FIELD_WEIGHTS.items():
            total += weight
            if is_field_complete(getattr(record, name, None)):
                filled += weight
            elif name in REQUIRED_FIELDS:
                issues.append(
                    ValidationIssue(
                        field=name,
                        message="Required field is missing",
                        severity=Severity.CRITICAL,
                        suggestion=f"Provide a value for {name}",
                    )
                )
            else:
                issues.append(
                    ValidationIssue(
                        field=name,
                        message="Optional field is missing",
                        severity=Severity.LOW,
                        suggestion=f"Adding {name} improves the record",
                    )
                )
        return filled / total if total else 0.0

    def _in_region(self, latitude: float, longitude: float) -> bool:
        lat_min, lat_max = self.config.latitude_range
        lon_min, lon_max = self.config.longitude_range
        return lat_min <= latitude <= lat_max and lon_min <= longitude <= lon_max

    def _is_valid_address(self, address: str) -> bool:
        address = address.strip()
        if not 10 <= len(address) <= 200:
            return False
        if not any(address.startswith(k) for k in self.config.region_keywords):
            return False
        return re.search(r"\d", address) is not None

    def _score_accuracy(self, record: VenueFields, issues: list[ValidationIssue]) -> float:
        checks: list[bool] = []

        if record.name:
            ok = 2 <= len(record.name) <= 100 and bool(NAME_PATTERN.match(record.name))
            checks.append(ok)
            if not ok:
                issues.append(
                    ValidationIssue(
                        field="name",
                        message="Venue name has an unexpected format",
                        severity=Severity.HIGH,
                        suggestion="Use the venue's registered name",
                    )
                )

        if record.address:
            ok = self._is_valid_address(record.address)
            checks.append(ok)
            if not ok:
                issues.append(
                    ValidationIssue(
                        field="address",
                        message="Address is outside the service region or malformed",
                        severity=Severity.HIGH,
                        suggestion="Use a full street address inside the service region",
                    )
                )

        if record.phone:
            ok = bool(PHONE_PATTERN.match(record.phone))
            checks.append(ok)
            if not ok:
                issues.append(
                    ValidationIssue(
                        field="phone",
                        message="Phone number has an unexpected format",
                        severity=Severity.MEDIUM,
                        suggestion="Use the form 02-1234-5678",
                    )
                )

        if record.latitude and record.longitude:
            ok = self._in_region(record.latitude, record.longitude)
            checks.append(ok)
            if not ok:
                issues.append(
                    ValidationIssue(
                        field="coordinates",
                        message="Coordinates are outside the service region",
                        severity=Severity.HIGH,
                        suggestion="Geocode the address again",
                    )
                )

        if record.rating is not None:
            ok = 0 <= record.rating <= 5
            checks.append(ok)
            if not ok:
                issues.append(
                    ValidationIssue(
                        field="rating",
                        message="Rating is outside 0-5",
                        severity=Severity.MEDIUM,
                        suggestion="Ratings must be between 0 and 5",
                    )
                )

        return sum(checks) / len(checks) if checks else 0.0

    def _score_consistency(self, record: VenueFields, issues: list[ValidationIssue]) -> float:
        checks: list[bool] = []

        all_day_with_hours = bool(record.is_24_hours) and bool(
            (record.open_hour and record.open_hour != ALL_DAY)
            or (record.close_hour and record.close_hour != ALL_DAY)
        )
        checks.append(not all_day_with_hours)
        if all_day_with_hours:
            issues.append(
                ValidationIssue(
                    field="operating_hours",
                    message="Venue is open 24 hours but has opening hours set",
                    severity=Severity.MEDIUM,
                    suggestion="Clear opening hours for 24 hour venues",
                )
            )

        if record.open_hour and record.close_hour:
            ok = self._is_valid_time_range(record.open_hour, record.close_hour)
            checks.append(ok)
            if not ok:
                issues.append(
                    ValidationIssue(
                        field="operating_hours",
                        message="Opening hours are not a valid range",
                        severity=Severity.MEDIUM,
                        suggestion="Check opening and closing times",
                    )
                )

        if record.review_count is not None and record.rating is not None:
            ok = (record.review_count > 0 and record.rating > 0) or (
                record.review_count == 0 and record.rating == 0
            )
            checks.append(ok)
            if not ok:
                issues.append(
                    ValidationIssue(
                        field="reviews",
                        message="Review count and rating disagree",
                        severity=Severity.LOW,
                        suggestion="Refresh rating and review count together",
                    )
                )

        # group PT without PT is contradictory
        facilities_ok = not (record.has_group_pt and record.has_pt is False)
        checks.append(facilities_ok)
        if not facilities_ok:
            issues.append(
                ValidationIssue(
                    field="facilities",
                    message="Facility flags contradict each other",
                    severity=Severity.LOW,
                    suggestion="Review the facility flags",
                )
            )

        return sum(checks) / len(checks)

    @staticmethod
    def _is_valid_time_range(open_hour: str, close_hour: str) -> bool:
        if open_hour.strip() == ALL_DAY or close_hour.strip() == ALL_DAY:
            return True
        start = _parse_hour(open_hour)
        end = _parse_hour(close_hour)
        if start is None or end is None:
            return False
        return start != end

    def _score_validity(self, record: VenueFields, issues: list[ValidationIssue]) -> float:
        rules: dict[str, bool] = {}
        if record.name is not None:
            rules["name"] = 2 <= len(record.name.strip()) <= 100
        if record.address is not None:
            rules["address"] = 10 <= len(record.address.strip()) <= 200
        if record.phone is not None:
            rules["phone"] = bool(PHONE_PATTERN.match(record.phone))
        if record.latitude is not None:
            rules["latitude"] = -90 <= record.latitude <= 90 and record.latitude != 0
        if record.longitude is not None:
            rules["longitude"] = -180 <= record.longitude <= 180 and record.longitude != 0
        if record.rating is not None:
            rules["rating"] = 0 <= record.rating <= 5
        if record.review_count is not None:
            rules["review_count"] = record.review_count >= 0
        if record.open_hour is not None:
            rules["open_hour"] = is_valid_hour(record.open_hour)
        if record.close_hour is not None:
            rules["close_hour"] = is_valid_hour(record.close_hour)

        for name, ok in rules.items():
            if not ok:
                issues.append(
                    ValidationIssue(
                        field=name,
                        message=f"{name} is not a valid value",
                        severity=Severity.MEDIUM,
                        suggestion=f"Correct the format of {name}",
                    )
                )
        return sum(rules.values()) / len(rules) if rules else 0.0

    def _score_timeliness(
        self, record: VenueFields, issues: list[ValidationIssue], now: datetime | None
    ) -> float:
        updated_at: datetime | None = getattr(record, "updated_at", None)
        if updated_at is None:
            return 1.0
        now = now or datetime.now(UTC)
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=UTC)
        age_days = (now - updated_at).total_seconds() / 86400

        if age_days > 365:
            issues.append(
                ValidationIssue(
                    field="updated_at",
                    message="Record has not been updated for over a year",
                    severity=Severity.MEDIUM,
                    suggestion="Refresh this venue",
                )
            )
            return 0.7
        if age_days > 180:
            issues.append(
                ValidationIssue(
                    field="updated_at",
                    message="Record has not been updated for over six months",
                    severity=Severity.LOW,
                    suggestion="Schedule a regular refresh",
                )
            )
            return 0.85
        return 1.0

    @staticmethod
    def _recommendations(score: QualityScore, issues: list[ValidationIssue]) -> list[str]:
        recommendations: list[str] = []
        if score.completeness < 0.8:
            recommendations.append("Fill in missing fields from additional sources")
        if score.accuracy < 0.8:
            recommendations.append("Verify address, phone and coordinates against a structured source")
        if score.consistency < 0.8:
            recommendations.append("Resolve contradictions between hours, ratings and facilities")
        if score.validity < 0.8:
            recommendations.append("Normalize field formats")
        if score.timeliness < 1.0:
            recommendations.append("Re-run the update for this venue")
        if any(i.severity == Severity.CRITICAL for i in issues):
            recommendations.append("Resolve critical issues before publishing")
        return recommendations

    def quality_stats(self, records: list[VenueFields], now: datetime | None = None) -> QualityStats:
        """
        Audit a set of records.

        Args:
            records: Records to score, usually loaded from persistence.
            now: Reference time for timeliness.

        Returns:
            QualityStats with average score, score distribution and the
            ten most common issues.
        """
        results = [self.validate(r, now) for r in records]
        distribution = {"excellent": 0, "good": 0, "fair": 0, "poor": 0, "bad": 0}
        issue_counts: Counter[str] = Counter()

        for result in results:
            overall = result.score.overall
            if overall >= 0.9:
                distribution["excellent"] += 1
            elif overall >= 0.8:
                distribution["good"] += 1
            elif overall >= 0.7:
                distribution["fair"] += 1
            elif overall >= 0.6:
                distribution["poor"] += 1
            else:
                distribution["bad"] += 1
            for issue in dict.fromkeys(f"{i.field}: {i.message}" for i in result.issues):
                issue_counts[issue] += 1

        total = len(results)
        average = sum(r.score.overall for r in results) / total if total else 0.0
        common = [
            {
                "issue": issue,
                "count": count,
                "percentage": round(count / total * 100, 1),
            }
            for issue, count in issue_counts.most_common(10)
        ]
        return QualityStats(
            total_records=total,
            average_score=round(average, 4),
            distribution=distribution,
            common_issues=common,
        )

    @staticmethod
    def improvement_suggestions(stats: QualityStats) -> list[dict[str, str]]:
        """Turn aggregate statistics into prioritized suggestions with impact and effort."""
        suggestions: list[dict[str, str]] = []
        total = stats.total_records
        if total == 0:
            return suggestions

        if any(issue["percentage"] > 50 for issue in stats.common_issues):
            suggestions.append(
                {
                    "priority": "high",
                    "category": "completeness",
                    "description": "More than half of the records share a common issue",
                    "impact": "Fixes the most visible gap for most venues",
                    "effort": "medium",
                }
            )
        if stats.distribution["bad"] > total * 0.2:
            suggestions.append(
                {
                    "priority": "high",
                    "category": "quality",
                    "description": "Over 20% of records scored below 0.6",
                    "impact": "Raises overall data quality substantially",
                    "effort": "high",
                }
            )
        if stats.average_score < 0.8:
            suggestions.append(
                {
                    "priority": "medium",
                    "category": "overall",
                    "description": "Average quality score is below 0.8",
                    "impact": "Improves trust in the data as a whole",
                    "effort": "medium",
                }
            )
        if stats.distribution["excellent"] < total * 0.3:
            suggestions.append(
                {
                    "priority": "low",
                    "category": "optimization",
                    "description": "Fewer than 30% of records are excellent",
                    "impact": "Polishes already usable records",
                    "effort": "low",
                }
            )
        return suggestions
