"""Keyword based similarity between specifications.

Scores are relative to one designated "current" spec: the feature group and
title bonuses are computed against it, so ``score(a, b)`` and ``score(b, a)``
may differ.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Protocol, Sequence

from .models import RelationshipSuggestion

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "this", "that", "these", "those", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could", "should", "may",
    "might", "can", "must", "shall", "we", "you", "they", "it", "he", "she", "i", "me",
    "my", "your", "his", "her", "our", "their",
})

DEFAULT_MIN_SCORE = 0.2
DEFAULT_LIMIT = 10
PARENT_SCORE_THRESHOLD = 0.6
PARENT_LIMIT = 3
GROUP_BONUS = 0.15
TITLE_TOKEN_BONUS = 0.1
TECHNICAL_TERM_BONUS = 0.1

_PUNCTUATION_PATTERN = re.compile(r"[^\w\s-]")
_COMPOUND_PATTERN = re.compile(r"\b[a-z]+[-_][a-z]+\b")


class SpecLike(Protocol):
    """Anything with the fields the ranking reads."""

    id: int
    title: str
    body_md: str
    feature_group: Optional[str]


def extract_keywords(text: str) -> List[str]:
    """Meaningful lowercase terms of ``text`` in first-occurrence order."""
    lowered = (text or "").lower()
    words = [
        word for word in _PUNCTUATION_PATTERN.sub(" ", lowered).split()
        if len(word) > 2 and word not in STOP_WORDS and not word.isdigit()
    ]
    compounds = _COMPOUND_PATTERN.findall(lowered)
    return list(dict.fromkeys(words + compounds))


def _is_technical_term(term: str) -> bool:
    return "-" in term or "_" in term or len(term) > 8


def calculate_relationship_score(keywords_a: Iterable[str], keywords_b: Iterable[str]) -> float:
    """Jaccard similarity plus a boost per shared technical term, capped at 1.0."""
    set_a = set(keywords_a)
    set_b = set(keywords_b)
    if not set_a or not set_b:
        return 0.0

    shared = set_a & set_b
    jaccard = len(shared) / len(set_a | set_b)
    boost = TECHNICAL_TERM_BONUS * sum(1 for term in shared if _is_technical_term(term))
    return min(jaccard + boost, 1.0)


def _relationship_reason(title_match: bool, group_match: bool) -> str:
    if title_match and group_match:
        return "Same feature group + title and content similarity"
    if title_match:
        return "Title and content similarity"
    if group_match:
        return "Same feature group + content similarity"
    return "Content similarity"


def _rank(
    current: SpecLike,
    candidates: Sequence[SpecLike],
    min_score: float,
    limit: int,
    relationship_type: str,
) -> List[RelationshipSuggestion]:
    current_keywords = extract_keywords(f"{current.title} {current.body_md}")
    current_title_tokens = (current.title or "").lower().split()
    current_group = getattr(current, "feature_group", None)

    suggestions = []
    for candidate in candidates:
        if candidate.id == current.id:
            continue

        candidate_keywords = extract_keywords(f"{candidate.title} {candidate.body_md}")
        score = calculate_relationship_score(current_keywords, candidate_keywords)

        group_match = bool(current_group) and getattr(candidate, "feature_group", None) == current_group
        if group_match:
            score += GROUP_BONUS

        candidate_title_tokens = set((candidate.title or "").lower().split())
        title_overlap = sum(1 for token in current_title_tokens if token in candidate_title_tokens)
        score += TITLE_TOKEN_BONUS * title_overlap

        score = min(score, 1.0)
        if score < min_score:
            continue

        suggestions.append(RelationshipSuggestion(
            spec_id=candidate.id,
            score=score,
            reason=_relationship_reason(title_overlap > 0, group_match),
            relationship_type=relationship_type,
            title=candidate.title,
        ))

    suggestions.sort(key=lambda suggestion: (-suggestion.score, suggestion.spec_id))
    return suggestions[:max(limit, 0)]


def suggest_related_specs(
    current: SpecLike,
    candidates: Sequence[SpecLike],
    min_score: float = DEFAULT_MIN_SCORE,
    limit: int = DEFAULT_LIMIT,
) -> List[RelationshipSuggestion]:
    """Rank ``candidates`` by similarity to ``current``.

    Candidates below ``min_score`` are dropped; ties on score are ordered by
    ascending spec id. ``current`` itself is never suggested.
    """
    return _rank(current, candidates, min_score, limit, "related")


def suggest_parent_specs(
    current: SpecLike,
    candidates: Sequence[SpecLike],
    min_score: float = PARENT_SCORE_THRESHOLD,
    limit: int = PARENT_LIMIT,
) -> List[RelationshipSuggestion]:
    """Same ranking as :func:`suggest_related_specs` with a higher bar.

    No hierarchy or cycle checks are made.
    """
    return _rank(current, candidates, min_score, limit, "parent")
