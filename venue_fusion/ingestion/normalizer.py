"""
Result Normalizer Module
========================

Validates and coerces raw connector output into SourceRecord objects.
Records that cannot be trusted (no name, impossible coordinates) are
rejected; fixable problems are coerced and reported as warnings.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from venue_fusion.core.enums import ConnectorKind
from venue_fusion.core.schema import FACILITY_FLAGS, SourceRecord
from venue_fusion.core.scoring import ALL_DAY, is_valid_hour

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE: dict[ConnectorKind, float] = {
    ConnectorKind.API: 0.9,
    ConnectorKind.HTML: 0.7,
}

COORDINATE_ALIASES: dict[str, tuple[str, ...]] = {
    "latitude": ("latitude", "lat", "y"),
    "longitude": ("longitude", "lon", "lng", "x"),
}

KNOWN_FIELDS = frozenset(
    {
        "name",
        "address",
        "phone",
        "open_hour",
        "close_hour",
        "price",
        "rating",
        "review_count",
        "confidence",
        "source",
        "additional_info",
        *FACILITY_FLAGS,
        *COORDINATE_ALIASES["latitude"],
        *COORDINATE_ALIASES["longitude"],
    }
)

TRUE_VALUES = frozenset({"true", "t", "yes", "y", "1", "예", "있음", "o"})
FALSE_VALUES = frozenset({"false", "f", "no", "n", "0", "아니오", "없음", "x"})


@dataclass
class NormalizationResult:
    """Outcome of normalizing one raw record."""

    is_valid: bool
    record: SourceRecord | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchNormalization:
    """Outcome of normalizing a connector's result set."""

    records: list[SourceRecord]
    results: list[NormalizationResult]

    @property
    def valid_count(self) -> int:
        return len(self.records)

    @property
    def invalid_count(self) -> int:
        return sum(1 for r in self.results if not r.is_valid)


def format_phone(value: Any) -> str | None:
    """
    Normalize a phone number to dash-separated digits.

    Returns None when the number has fewer than 8 or more than 15 digits.
    """
    digits = re.sub(r"\D", "", str(value))
    if digits.startswith("82") and len(digits) > 10:
        digits = "0" + digits[2:]
    if not 8 <= len(digits) <= 15:
        return None
    if len(digits) == 8:
        return f"{digits[:4]}-{digits[4:]}"
    if digits.startswith("02"):
        return f"02-{digits[2:-4]}-{digits[-4:]}"
    if len(digits) <= 11:
        return f"{digits[:3]}-{digits[3:-4]}-{digits[-4:]}"
    return digits


def _clean_string(value: Any) -> str | None:
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def _to_bool(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).replace(",", "").strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class ResultNormalizer:
    """
    Type guard between connectors and the fusion core.

    Coordinates must fall inside the configured national bounds when
    present. Address and coordinates are optional: a partial record
    from one connector can still complete another during fusion.
    """

    def __init__(
        self,
        latitude_bounds: tuple[float, float] = (33.0, 38.0),
        longitude_bounds: tuple[float, float] = (124.0, 132.0),
        default_confidence: dict[ConnectorKind, float] | None = None,
    ) -> None:
        self.latitude_bounds = latitude_bounds
        self.longitude_bounds = longitude_bounds
        self.default_confidence = default_confidence or dict(DEFAULT_CONFIDENCE)

    def normalize(
        self,
        raw: dict[str, Any],
        source: str,
        kind: ConnectorKind = ConnectorKind.API,
    ) -> NormalizationResult:
        """
        Normalize one raw record.

        Args:
            raw: Raw dict from a connector
            source: Connector id recorded on the SourceRecord
            kind: Connector kind, selects the default confidence

        Returns:
            NormalizationResult holding the record when valid
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not isinstance(raw, dict):
            return NormalizationResult(
                is_valid=False, errors=[f"Expected a dict, got {type(raw).__name__}"]
            )

        name = _clean_string(raw.get("name"))
        if not name:
            errors.append("name is required")

        data: dict[str, Any] = {
            "name": name or "",
            "address": _clean_string(raw.get("address")),
            "source": _clean_string(raw.get("source")) or source,
        }

        if raw.get("phone") not in (None, ""):
            phone = format_phone(raw["phone"])
            if phone is None:
                warnings.append(f"Dropped unusable phone number {raw['phone']!r}")
            data["phone"] = phone

        latitude, longitude = self._coordinates(raw, errors, warnings)
        data["latitude"], data["longitude"] = latitude, longitude

        for flag in FACILITY_FLAGS:
            if flag in raw:
                value = _to_bool(raw[flag])
                if value is None and raw[flag] is not None:
                    warnings.append(f"Ignored unreadable {flag} value {raw[flag]!r}")
                data[flag] = value

        for hour_field in ("open_hour", "close_hour"):
            value = _clean_string(raw.get(hour_field))
            if value is not None and not is_valid_hour(value):
                warnings.append(f"Dropped {hour_field} {value!r}: expected H:MM or {ALL_DAY}")
                value = None
            data[hour_field] = value

        data["price"] = _clean_string(raw.get("price"))
        data["rating"] = self._rating(raw.get("rating"), warnings)
        data["review_count"] = self._review_count(raw.get("review_count"), warnings)
        data["confidence"] = self._confidence(raw.get("confidence"), kind, warnings)

        extra = {k: v for k, v in raw.items() if k not in KNOWN_FIELDS}
        if isinstance(raw.get("additional_info"), dict):
            extra.update(raw["additional_info"])
        data["additional_info"] = extra

        if data.get("is_24_hours") and (data["open_hour"] or data["close_hour"]):
            if ALL_DAY not in (data["open_hour"], data["close_hour"]):
                warnings.append("Venue is marked 24 hours but has opening hours")
        if data["rating"] and data["review_count"] == 0:
            warnings.append("Rating is set but review count is zero")

        if errors:
            logger.debug(f"Rejected record from {source}: {'; '.join(errors)}")
            return NormalizationResult(is_valid=False, errors=errors, warnings=warnings, raw=raw)

        try:
            record = SourceRecord(**data)
        except ValidationError as e:
            return NormalizationResult(
                is_valid=False, errors=[str(e)], warnings=warnings, raw=raw
            )
        return NormalizationResult(is_valid=True, record=record, warnings=warnings, raw=raw)

    def normalize_batch(
        self,
        raw_records: list[dict[str, Any]],
        source: str,
        kind: ConnectorKind = ConnectorKind.API,
    ) -> BatchNormalization:
        """
        Normalize a connector result set.

        Returns:
            BatchNormalization with valid records and per-item results
        """
        results = [self.normalize(raw, source, kind) for raw in raw_records]
        records = [r.record for r in results if r.record is not None]
        invalid = len(results) - len(records)
        if invalid:
            logger.info(f"{source}: {len(records)} valid, {invalid} invalid records")
        return BatchNormalization(records=records, results=results)

    def _coordinates(
        self, raw: dict[str, Any], errors: list[str], warnings: list[str]
    ) -> tuple[float | None, float | None]:
        values: dict[str, Any] = {}
        for axis, aliases in COORDINATE_ALIASES.items():
            for alias in aliases:
                if raw.get(alias) not in (None, ""):
                    values[axis] = raw[alias]
                    break

        if not values:
            return None, None

        lat = _to_float(values.get("latitude"))
        lon = _to_float(values.get("longitude"))
        if ("latitude" in values and lat is None) or ("longitude" in values and lon is None):
            errors.append(
                f"invalid coordinates {values.get('latitude')!r}, {values.get('longitude')!r}"
            )
            return None, None

        if lat is None or lon is None:
            warnings.append("Only one coordinate present; ignoring both")
            return None, None

        if lat == 0 and lon == 0:
            warnings.append("Zero coordinates treated as missing")
            return None, None

        lat_min, lat_max = self.latitude_bounds
        lon_min, lon_max = self.longitude_bounds
        if not (lat_min <= lat <= lat_max and lon_min <= lon <= lon_max):
            errors.append(f"invalid coordinates {lat}, {lon}: outside service bounds")
            return None, None

        return lat, lon

    @staticmethod
    def _rating(value: Any, warnings: list[str]) -> float | None:
        if value in (None, ""):
            return None
        rating = _to_float(value)
        if rating is None:
            warnings.append(f"Dropped unreadable rating {value!r}")
            return None
        clamped = min(5.0, max(0.0, rating))
        if clamped != rating:
            warnings.append(f"Clamped rating {rating} to {clamped}")
        return clamped

    @staticmethod
    def _review_count(value: Any, warnings: list[str]) -> int | None:
        if value in (None, ""):
            return None
        count = _to_float(value)
        if count is None:
            warnings.append(f"Dropped unreadable review count {value!r}")
            return None
        if count < 0:
            warnings.append(f"Clamped negative review count {count}")
            return 0
        return int(count)

    def _confidence(self, value: Any, kind: ConnectorKind, warnings: list[str]) -> float:
        default = self.default_confidence.get(kind, 0.5)
        if value in (None, ""):
            return default
        confidence = _to_float(value)
        if confidence is None:
            warnings.append(f"Unreadable confidence {value!r}; using {default}")
            return default
        return min(1.0, max(0.0, confidence))
