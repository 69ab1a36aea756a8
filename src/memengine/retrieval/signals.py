"""Retrieval scoring signals.

Each signal maps a (query, record) pair to [0, 1]. They are combined with
the ScoringWeights of EngineOptions by combine_signals.
"""

import re
from datetime import datetime
from typing import Optional

from memengine.config import ScoringWeights
from memengine.memory.types import ScoreBreakdown
from memengine.text import STOPWORDS, important_nouns, term_variations

_NON_WORD_RE = re.compile(r"[^\w\s]")

# (seconds, score) buckets of record age, youngest first
RECENCY_BUCKETS: tuple[tuple[float, float], ...] = (
    (60, 1.0),
    (5 * 60, 0.95),
    (60 * 60, 0.85),
    (24 * 3600, 0.7),
    (7 * 86400, 0.5),
    (30 * 86400, 0.3),
    (90 * 86400, 0.2),
)
RECENCY_FLOOR = 0.1

# (seconds since last access, bonus)
ACCESS_BONUSES: tuple[tuple[float, float], ...] = (
    (60, 0.1),
    (60 * 60, 0.05),
    (7 * 86400, 0.03),
)

USAGE_SATURATION = 20


def meaningful_words(text: str) -> list[str]:
    """Lowercased words longer than 2 chars, excluding stopwords and pure numbers."""
    return [
        word.lower()
        for word in _NON_WORD_RE.sub(" ", text).split()
        if len(word) > 2 and word.lower() not in STOPWORDS and not word.isdigit()
    ]


def lexical_similarity(query: str, content: str) -> float:
    """Word-overlap similarity used when no embedding similarity is available.

    An exact phrase match scores 1.0. Otherwise each query word found in the
    content counts 1, a partial (substring) match counts 0.5, normalized by
    query length, plus up to 0.3 for shared important nouns.
    """
    if not query or not content:
        return 0.0
    query_lower = query.lower()
    content_lower = content.lower()
    if query_lower in content_lower:
        return 1.0

    query_words = meaningful_words(query_lower)
    content_words = meaningful_words(content_lower)
    if not query_words or not content_words:
        return 0.0

    matches = 0.0
    for word in query_words:
        if word in content_words:
            matches += 1.0
        elif any(word in cw or cw in word for cw in content_words):
            matches += 0.5

    query_nouns = important_nouns(query_lower)
    content_nouns = set(important_nouns(content_lower))
    noun_boost = 0.0
    if query_nouns:
        shared = sum(1 for noun in query_nouns if noun in content_nouns)
        noun_boost = (shared / len(query_nouns)) * 0.3

    return min(matches / len(query_words) + noun_boost, 1.0)


def keyword_match(query: str, content: str) -> float:
    """Share of the query's important nouns found in the content.

    A plural or suffix variation counts 0.7. Queries without important nouns
    score a neutral 0.5 for every record.
    """
    keywords = important_nouns(query)
    if not keywords:
        return 0.5
    content_lower = content.lower()
    score = 0.0
    for keyword in keywords:
        if keyword in content_lower:
            score += 1.0
        elif any(v in content_lower for v in term_variations(keyword) - {keyword}):
            score += 0.7
    return min(score / len(keywords), 1.0)


def recency_score(
    created_at: datetime,
    last_accessed_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> float:
    """Age bucket score plus a small bonus for recent access, capped at 1.0."""
    now = now or datetime.now()
    age = (now - created_at).total_seconds()
    score = RECENCY_FLOOR
    for limit, value in RECENCY_BUCKETS:
        if age < limit:
            score = value
            break

    since_access = (now - (last_accessed_at or created_at)).total_seconds()
    for limit, bonus in ACCESS_BONUSES:
        if since_access < limit:
            score += bonus
            break
    return min(score, 1.0)


def usage_score(usage_frequency: int) -> float:
    return min(max(usage_frequency, 0) / USAGE_SATURATION, 1.0)


def combine_signals(breakdown: ScoreBreakdown, weights: ScoringWeights) -> float:
    """Weighted sum of the five signals."""
    return (
        breakdown.semantic * weights.semantic
        + breakdown.keyword * weights.keyword
        + breakdown.recency * weights.recency
        + breakdown.importance * weights.importance
        + breakdown.usage * weights.usage
    )
