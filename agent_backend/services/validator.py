"""
Groundedness validator.

Scores a generated answer against the evidence it was given. Four independent
25-point checks; the result only depends on the inputs and the reference date
fixed at construction.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import List, Optional, Set, Tuple

from ..models import EvidenceBundle, ValidationScore

CHECK_POINTS = 25
MIN_DOMAIN_TOKEN = 3
_WORD_RE = re.compile(r"[^\W_]+")
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")

RECENCY_PHRASES: Tuple[str, ...] = (
    "recent",
    "recently",
    "current",
    "currently",
    "latest",
    "according to current data",
    "reciente",
    "recientes",
    "actual",
    "actuales",
    "actualmente",
    "último",
    "últimos",
    "según datos actuales",
)

ATTRIBUTION_PHRASES: Tuple[str, ...] = (
    "according to",
    "source",
    "sources",
    "reports",
    "reported",
    "indicates",
    "según",
    "fuente",
    "fuentes",
    "reporta",
    "reportan",
    "indica",
    "indican",
    "de acuerdo con",
)


def domain_token(source: str) -> str:
    """'https://www.bloomberg.com/news/x' -> 'bloomberg'."""
    value = _SCHEME_RE.sub("", source.strip().lower())
    if value.startswith("www."):
        value = value[4:]
    value = value.split("/", 1)[0]
    return value.split(".", 1)[0].strip()


def long_words(text: str, min_length: int = 5) -> Set[str]:
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) >= min_length}


def mentions(text: str, term: str) -> bool:
    """Whole-word match of `term` in already lowercased `text`."""
    return re.search(rf"(?<![^\W_]){re.escape(term)}(?![^\W_])", text) is not None


class ResponseValidator:
    def __init__(
        self,
        *,
        pass_threshold: int = 100,
        min_shared_words: int = 10,
        reference_date: Optional[date] = None,
    ) -> None:
        self.pass_threshold = pass_threshold
        self.min_shared_words = min_shared_words
        self.reference_date = reference_date or datetime.now(tz=timezone.utc).date()
        year = self.reference_date.year
        self.recency_terms: Tuple[str, ...] = (str(year), str(year - 1)) + RECENCY_PHRASES

    def score(self, response_text: str, evidence: EvidenceBundle) -> ValidationScore:
        text = response_text.lower()
        issues: List[str] = []
        total = 0

        tokens = [domain_token(s) for s in evidence.sources]
        has_source_reference = any(
            mentions(text, token) for token in tokens if len(token) >= MIN_DOMAIN_TOKEN
        )
        if has_source_reference:
            total += CHECK_POINTS
        else:
            issues.append("Response does not reference any web source")

        shared = long_words(evidence.content) & long_words(response_text)
        has_specific_data = len(shared) > self.min_shared_words
        if has_specific_data:
            total += CHECK_POINTS
        else:
            issues.append(
                f"Response shares only {len(shared)} specific terms with the web data "
                f"(more than {self.min_shared_words} required)"
            )

        has_recency = any(mentions(text, term) for term in self.recency_terms)
        if has_recency:
            total += CHECK_POINTS
        else:
            issues.append("Response does not indicate use of current data")

        has_attribution = any(mentions(text, phrase) for phrase in ATTRIBUTION_PHRASES)
        if has_attribution:
            total += CHECK_POINTS
        else:
            issues.append("Response lacks source attribution")

        return ValidationScore(
            score=total,
            passed=total >= self.pass_threshold,
            issues=tuple(issues),
            has_source_reference=has_source_reference,
            has_specific_data=has_specific_data,
            has_recency=has_recency,
            has_attribution=has_attribution,
        )
