"""
Similarity & Grouping Module
============================

Pairwise similarity between venue observations and greedy single-pass
clustering of observations that describe the same venue.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field

from venue_fusion.core.schema import VenueFields
from venue_fusion.ingestion.query_expander import clean_name

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

DEFAULT_WEIGHTS: dict[str, float] = {
    "name": 0.4,
    "address": 0.3,
    "phone": 0.2,
    "coordinates": 0.1,
}

# (max distance in km, score), checked in order
GEO_BUCKETS: tuple[tuple[float, float], ...] = (
    (0.1, 1.0),
    (1.0, 0.8),
    (5.0, 0.5),
)


def tokenize(text: str) -> set[str]:
    """Lower-cased word tokens."""
    return set(re.findall(r"\w+", text.lower()))


def jaccard(a: str, b: str) -> float:
    """Token Jaccard similarity of two strings."""
    tokens_a, tokens_b = tokenize(a), tokenize(b)
    if not tokens_a and not tokens_b:
        return 1.0 if a.strip() == b.strip() else 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def name_similarity(a: str, b: str) -> float:
    """Jaccard over cleaned names; names equal up to spacing score 1.0."""
    clean_a, clean_b = clean_name(a).lower(), clean_name(b).lower()
    if clean_a.replace(" ", "") == clean_b.replace(" ", "") and clean_a:
        return 1.0
    return jaccard(clean_a, clean_b)


def phone_similarity(a: str, b: str) -> float:
    """Share of digit positions that agree, over the longer number."""
    digits_a = re.sub(r"\D", "", a)
    digits_b = re.sub(r"\D", "", b)
    longest = max(len(digits_a), len(digits_b))
    if longest == 0:
        return 0.0
    matches = sum(1 for x, y in zip(digits_a, digits_b) if x == y)
    return matches / longest


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def geo_similarity(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Bucketed proximity score."""
    distance = haversine_km(lat1, lon1, lat2, lon2)
    for max_km, score in GEO_BUCKETS:
        if distance <= max_km:
            return score
    return 0.0


@dataclass
class EntityGroup:
    """Observations judged to describe one real venue, in scan order."""

    records: list[VenueFields] = field(default_factory=list)

    @property
    def seed(self) -> VenueFields:
        return self.records[0]

    def __len__(self) -> int:
        return len(self.records)


class SimilarityEngine:
    """
    Scores and clusters venue observations.

    Fields missing on either side drop out of both the numerator and the
    denominator, so weights renormalize over the fields both records have.
    """

    def __init__(
        self,
        threshold: float = 0.8,
        weights: dict[str, float] | None = None,
    ) -> None:
        self.threshold = threshold
        self.weights = weights or dict(DEFAULT_WEIGHTS)

    def similarity(self, a: VenueFields, b: VenueFields) -> float:
        """
        Weighted similarity of two records in [0, 1].

        Returns 0.0 when the records share no comparable field.
        """
        total = 0.0
        weight_sum = 0.0

        if a.name and b.name:
            total += self.weights["name"] * name_similarity(a.name, b.name)
            weight_sum += self.weights["name"]

        if a.address and b.address:
            total += self.weights["address"] * jaccard(a.address, b.address)
            weight_sum += self.weights["address"]

        if a.phone and b.phone:
            total += self.weights["phone"] * phone_similarity(a.phone, b.phone)
            weight_sum += self.weights["phone"]

        if a.has_coordinates and b.has_coordinates:
            total += self.weights["coordinates"] * geo_similarity(
                a.latitude, a.longitude, b.latitude, b.longitude
            )
            weight_sum += self.weights["coordinates"]

        return total / weight_sum if weight_sum > 0 else 0.0

    def group(self, records: list[VenueFields]) -> list[EntityGroup]:
        """
        Greedy single-pass grouping.

        Each unassigned record seeds a group and absorbs every later
        unassigned record whose similarity to the seed reaches the
        threshold. Membership is not transitive.

        Args:
            records: Records in scan order

        Returns:
            Groups covering every record exactly once
        """
        assigned = [False] * len(records)
        groups: list[EntityGroup] = []

        for i, seed in enumerate(records):
            if assigned[i]:
                continue
            assigned[i] = True
            group = EntityGroup(records=[seed])
            for j in range(i + 1, len(records)):
                if not assigned[j] and self.similarity(seed, records[j]) >= self.threshold:
                    assigned[j] = True
                    group.records.append(records[j])
            groups.append(group)

        logger.debug(f"Grouped {len(records)} records into {len(groups)} groups")
        return groups
