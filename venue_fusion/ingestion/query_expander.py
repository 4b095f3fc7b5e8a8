"""
Query Expander Module
=====================

Turns a canonical venue name into an ordered, de-duplicated list of
search queries. Pure string manipulation with no I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

CORPORATE_TOKENS = re.compile(r"㈜|\(주\)|\(유\)|\(사\)|（주）|주식회사|유한회사|\bInc\.?|\bCo\.,?\s*Ltd\.?|\bLtd\.?")
PUNCTUATION = re.compile(r"[()（）\[\]{}<>\"'`~!?@#$%^*=+|\\/:;,]")
WHITESPACE = re.compile(r"\s+")
BRANCH_SUFFIX = re.compile(r"\s+(?:\d+호점|\S+지점|\S+점|\S+\s+branch)$", re.IGNORECASE)

DEFAULT_SYNONYMS: list[tuple[str, str]] = [
    ("헬스장", "피트니스"),
    ("헬스", "피트니스"),
    ("피트니스", "헬스"),
    ("짐", "GYM"),
    ("짐", "헬스"),
    ("PT", "퍼스널트레이닝"),
    ("퍼스널트레이닝", "PT"),
    ("크로스핏", "CrossFit"),
    ("요가", "Yoga"),
    ("필라테스", "Pilates"),
    ("gym", "fitness center"),
    ("fitness center", "gym"),
]


def clean_name(name: str) -> str:
    """
    Strip corporate-entity tokens and punctuation, collapse whitespace.

    Args:
        name: Raw venue name

    Returns:
        Cleaned name (may be empty)
    """
    text = CORPORATE_TOKENS.sub(" ", name or "")
    text = PUNCTUATION.sub(" ", text)
    return WHITESPACE.sub(" ", text).strip()


def strip_branch_suffix(name: str) -> str:
    """Remove a trailing branch designator such as '강남점' or '2호점'."""
    return BRANCH_SUFFIX.sub("", name).strip()


@dataclass
class QueryExpander:
    """Generates search-query variants for a venue name."""

    keyword: str = "헬스"
    synonyms: list[tuple[str, str]] = field(default_factory=lambda: list(DEFAULT_SYNONYMS))
    max_variants: int | None = None

    def expand(self, name: str) -> list[str]:
        """
        Expand a venue name into query variants.

        Order: cleaned name, name plus keyword, first token plus keyword,
        synonym substitutions, then the branch-stripped name. The result
        always holds at least the cleaned name.
        """
        cleaned = clean_name(name if isinstance(name, str) else "")
        if not cleaned:
            return [cleaned]

        variants: list[str] = [cleaned]
        if self.keyword and self.keyword not in cleaned:
            variants.append(f"{cleaned} {self.keyword}")

        tokens = cleaned.split(" ")
        if len(tokens) > 1 and self.keyword:
            variants.append(f"{tokens[0]} {self.keyword}")

        lowered = cleaned.lower()
        for source_term, target_term in self.synonyms:
            if source_term.lower() in lowered:
                pattern = re.compile(re.escape(source_term), re.IGNORECASE)
                variants.append(pattern.sub(target_term, cleaned, count=1))

        stripped = strip_branch_suffix(cleaned)
        if stripped and stripped != cleaned:
            variants.append(stripped)
            if self.keyword and self.keyword not in stripped:
                variants.append(f"{stripped} {self.keyword}")

        unique = list(dict.fromkeys(v for v in variants if v))
        if self.max_variants is not None:
            unique = unique[: max(1, self.max_variants)]
        return unique


def expand_queries(name: str, keyword: str = "헬스") -> list[str]:
    """Expand a name with the default synonym table."""
    return QueryExpander(keyword=keyword).expand(name)
