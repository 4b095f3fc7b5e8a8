"""Pydantic v2 models for venue observations and fused venue records."""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from venue_fusion.core.enums import Severity


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


Score = Annotated[float, Field(ge=0.0, le=1.0)]

SOURCE_PREFIX = "통합검색_"

FACILITY_FLAGS: tuple[str, ...] = (
    "is_24_hours",
    "has_parking",
    "has_shower",
    "has_pt",
    "has_gx",
    "has_group_pt",
)


class VenueFields(BaseModel):
    """Descriptive fields shared by raw observations and fused records."""

    name: str
    address: str | None = None
    phone: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_24_hours: bool | None = None
    has_parking: bool | None = None
    has_shower: bool | None = None
    has_pt: bool | None = None
    has_gx: bool | None = None
    has_group_pt: bool | None = None
    open_hour: str | None = None
    close_hour: str | None = None
    price: str | None = None
    rating: float | None = None
    review_count: int | None = None

    @property
    def has_coordinates(self) -> bool:
        """True when both coordinates are present."""
        return self.latitude is not None and self.longitude is not None


class SourceRecord(VenueFields):
    """
    One connector's observation of one venue.

    Immutable once produced by the result normalizer.
    """

    model_config = ConfigDict(frozen=True)

    source: str
    confidence: Score = 0.5
    additional_info: dict[str, Any] = Field(default_factory=dict)


class MergedRecord(VenueFields):
    """Canonical fused venue record handed to persistence."""

    facilities: str = ""
    source: str = ""
    sources: list[str] = Field(default_factory=list)
    confidence: Score = 0.0
    data_quality: Score = 0.0
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class ValidationIssue(BaseModel):
    """A single data quality finding."""

    field: str
    message: str
    severity: Severity
    suggestion: str = ""


class QualityScore(BaseModel):
    """Component quality scores, each in [0, 1]."""

    overall: Score = 0.0
    completeness: Score = 0.0
    accuracy: Score = 0.0
    consistency: Score = 0.0
    timeliness: Score = 0.0
    validity: Score = 0.0


class ValidationResult(BaseModel):
    """Outcome of validating a candidate or persisted venue record."""

    is_valid: bool
    score: QualityScore = Field(default_factory=QualityScore)
    issues: list[ValidationIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @property
    def critical_issues(self) -> list[ValidationIssue]:
        """Issues with critical severity."""
        return [i for i in self.issues if i.severity == Severity.CRITICAL]
