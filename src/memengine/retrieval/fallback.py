"""Cross-category fallback search.

Store-time and query-time routing can disagree ("I drive a Tesla" routed to
personal interests, "what car do I have?" routed to money). When the query's
routing is uncertain or its category holds too few records, the owner's
other categories are searched lexically and the hits are merged with a
penalty.

When that search finds nothing, or the query cannot be embedded, the
owner's most recent records from all categories join the pool.
"""

import logging
from typing import Any

from memengine.config import EngineOptions
from memengine.storage.hybrid import HybridStore
from memengine.storage.sqlite import build_match_query
from memengine.text import STOPWORDS, words

logger = logging.getLogger(__name__)

# Short nouns that carry the whole meaning of a personal-fact query
ENTITY_KEYWORDS = frozenset({
    "car", "dog", "cat", "pet", "vehicle", "phone", "name", "color", "favorite",
})


def extract_key_terms(query: str) -> list[str]:
    """Words longer than 3 chars that are not stopwords, plus entity keywords."""
    terms: list[str] = []
    for word in words(query):
        if (len(word) > 3 and word not in STOPWORDS) or word in ENTITY_KEYWORDS:
            if word not in terms:
                terms.append(word)
    return terms


def cross_category_search(
    store: HybridStore,
    owner_id: str,
    query: str,
    exclude_category: str,
    options: EngineOptions,
) -> list[dict[str, Any]]:
    """Search the owner's current records outside exclude_category.

    Returns:
        Matching record dicts ordered by lexical rank, each with
        "off_category" set to True
    """
    terms = extract_key_terms(query)
    match_query = build_match_query(terms)
    if match_query is None:
        logger.debug(f"No key terms for cross-category search: {query!r}")
        return []

    rows = store.search_fts(
        match_query,
        owner_id=owner_id,
        exclude_category=exclude_category,
        min_relevance=options.fallback_min_relevance,
        limit=options.fallback_limit,
    )
    for row in rows:
        row["off_category"] = True
    logger.debug(
        f"Cross-category search for {terms} outside {exclude_category}: {len(rows)} hits"
    )
    return rows


def recent_records(
    store: HybridStore,
    owner_id: str,
    primary_category: str,
    options: EngineOptions,
) -> list[dict[str, Any]]:
    """The owner's newest current records from every category.

    Used when neither vectors nor lexical search can surface candidates, so
    a query sharing no words with the stored facts still sees them. Records
    outside primary_category get "off_category" set and take the penalty.
    """
    rows = store.list_memories(
        owner_id, current_only=True, limit=options.recent_candidate_limit
    )
    for row in rows:
        row["off_category"] = row["category"] != primary_category
    logger.debug(f"Recent-record fallback for owner {owner_id}: {len(rows)} records")
    return rows
