"""Retrieval scoring, fallback search and selection for memengine."""

from memengine.retrieval.fallback import cross_category_search, extract_key_terms
from memengine.retrieval.retriever import MODE_HYBRID, MODE_KEYWORD_FALLBACK, Retriever
from memengine.retrieval.selection import select_candidates

__all__ = [
    "MODE_HYBRID",
    "MODE_KEYWORD_FALLBACK",
    "Retriever",
    "cross_category_search",
    "extract_key_terms",
    "select_candidates",
]
