"""Small text helpers shared by routing, reconcile, retrieval and correction."""

import re
import unicodedata

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "up", "about", "into", "through", "during", "before",
    "after", "above", "below", "between", "among", "is", "are", "was", "were",
    "be", "been", "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "could", "should", "may", "might", "must", "can", "i", "you", "he",
    "she", "it", "we", "they", "me", "him", "her", "us", "them", "my", "your",
    "his", "its", "our", "their", "this", "that", "these", "those", "what",
    "user", "users",
})

_WORD_RE = re.compile(r"\b\w+\b")
_LETTER_SPLIT_RE = re.compile(r"[^a-z]+")


def words(text: str) -> list[str]:
    """Lowercased word tokens (letters, digits, underscore)."""
    return _WORD_RE.findall(text.lower())


def content_terms(text: str) -> set[str]:
    """Distinct non-stopword terms of a text."""
    return {word for word in words(text) if word not in STOPWORDS}


def important_nouns(text: str) -> list[str]:
    """Letter-only words longer than 3 characters that are not stopwords."""
    return [
        word
        for word in _LETTER_SPLIT_RE.split(text.lower())
        if len(word) > 3 and word not in STOPWORDS
    ]


def strip_diacritics(text: str) -> str:
    """Remove combining marks after NFD decomposition ("José" -> "Jose")."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_for_match(text: str) -> str:
    return strip_diacritics(text).lower()


def term_variations(term: str) -> set[str]:
    """Simple plural and suffix variations of a term for fuzzy keyword hits."""
    variations = {term}
    if term.endswith("ies") and len(term) > 4:
        variations.add(term[:-3] + "y")
    elif term.endswith("es") and len(term) > 4:
        variations.add(term[:-2])
    elif term.endswith("s") and len(term) > 3:
        variations.add(term[:-1])
    else:
        variations.add(term + "s")
    for suffix in ("ing", "ed"):
        if term.endswith(suffix) and len(term) > len(suffix) + 2:
            variations.add(term[: -len(suffix)])
    return variations
