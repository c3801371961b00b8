"""
Hard and soft duplicate detection over normalized identity bags.

Hard duplicates share an exact normalized email, phone or domain. Soft
duplicates share a city and have business names within the Jaro-Winkler
threshold. Bags are plain mappings with the keys produced by
``normalize_lead_payload``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Mapping

from rapidfuzz.distance import JaroWinkler

from leads_app.utils.importer import DEFAULT_SOFT_MATCH_THRESHOLD

NAME_WEIGHT = 0.8
CITY_WEIGHT = 0.2

HARD_MATCH_KEYS = ("email_norm", "phone_norm", "domain_norm")

NormalizedBag = Mapping[str, object | None]


@dataclass(frozen=True)
class LeadCandidate:
    """A lead visible to dedupe: its id plus normalized identity fields."""

    lead_id: int
    bag: NormalizedBag


@dataclass(frozen=True)
class MatchResult:
    kind: Literal["hard", "soft", "none"]
    lead_id: int | None = None
    score: float | None = None
    matched_on: str | None = None


NO_MATCH = MatchResult(kind="none")


def _present(bag: NormalizedBag, key: str) -> str | None:
    value = bag.get(key)
    if value is None:
        return None
    text = str(value)
    return text or None


def hard_match_key(a: NormalizedBag, b: NormalizedBag) -> str | None:
    """Return the first identity key both bags share exactly, or ``None``."""

    for key in HARD_MATCH_KEYS:
        left = _present(a, key)
        if left is not None and left == _present(b, key):
            return key
    return None


def is_hard_duplicate(a: NormalizedBag, b: NormalizedBag) -> bool:
    return hard_match_key(a, b) is not None


def name_similarity(left: str | None, right: str | None) -> float:
    """Jaro-Winkler similarity between two normalized names (0..1)."""

    if not left or not right:
        return 0.0
    score = JaroWinkler.normalized_similarity(left, right)
    return float(max(0.0, min(1.0, score)))


def is_soft_duplicate(
    a: NormalizedBag,
    b: NormalizedBag,
    threshold: float = DEFAULT_SOFT_MATCH_THRESHOLD,
) -> bool:
    name_a, name_b = _present(a, "name_norm"), _present(b, "name_norm")
    city_a, city_b = _present(a, "city_norm"), _present(b, "city_norm")
    if not (name_a and name_b and city_a and city_b):
        return False
    if city_a != city_b:
        return False
    if name_a == name_b:
        return True
    return name_similarity(name_a, name_b) >= threshold


def soft_duplicate_score(a: NormalizedBag, b: NormalizedBag) -> float:
    """Ranking confidence for a soft match: weighted name similarity plus a city bonus."""

    name_a, name_b = _present(a, "name_norm"), _present(b, "name_norm")
    if not name_a or not name_b:
        return 0.0
    city_a = _present(a, "city_norm")
    city_equal = 1.0 if city_a is not None and city_a == _present(b, "city_norm") else 0.0
    return round(NAME_WEIGHT * name_similarity(name_a, name_b) + CITY_WEIGHT * city_equal, 4)


def find_best_match(
    bag: NormalizedBag,
    candidates: Iterable[LeadCandidate],
    *,
    threshold: float = DEFAULT_SOFT_MATCH_THRESHOLD,
) -> MatchResult:
    """
    Classify a normalized bag against visible leads.

    Any hard match wins outright (first in iteration order). Otherwise the
    highest-scoring soft match is returned; ties keep the earlier candidate.
    """

    pool = list(candidates)
    for candidate in pool:
        key = hard_match_key(bag, candidate.bag)
        if key is not None:
            return MatchResult(kind="hard", lead_id=candidate.lead_id, matched_on=key)

    best: MatchResult = NO_MATCH
    for candidate in pool:
        if not is_soft_duplicate(bag, candidate.bag, threshold):
            continue
        score = soft_duplicate_score(bag, candidate.bag)
        if best.kind == "none" or score > (best.score or 0.0):
            best = MatchResult(kind="soft", lead_id=candidate.lead_id, score=score, matched_on="name_city")
    return best
