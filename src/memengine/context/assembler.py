"""Context budget assembler.

Builds the context handed to the response generator from three sources,
each under its own token ceiling and all under a total ceiling:

- memory: the records selected by retrieval, one "- fact" line each
- document: an excerpt of the document the user is working on
- reference: sections of a reference corpus chosen for the query

Everything the assembler needs arrives in a RequestContext built per
request, so nothing leaks between requests. Every selection and truncation
is recorded in AssembledContext.decisions and logged.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from memengine.config import ContextBudgets
from memengine.memory.types import MemoryRecord
from memengine.tokens import CHARS_PER_TOKEN, estimate_tokens, truncate_to_tokens

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[Reference content truncated - more available on request]"

_REFERENCE_STOPWORDS = frozenset({
    "what", "is", "the", "a", "an", "in", "on", "at", "to", "for", "of", "with",
    "by", "from", "are", "was", "were", "been", "be", "have", "has", "had", "do",
    "does", "did", "will", "would", "could", "should", "may", "might", "can",
    "about", "into", "through", "during", "before", "after", "above", "below",
    "between", "under", "again", "further", "then", "once", "show", "me", "list",
    "all",
})

INVENTORY_RES = (
    re.compile(r"what'?s?\s+(in|inside|stored|contained|within)\s+(the\s+)?(vault|corpus|reference)", re.I),
    re.compile(r"list\s+(all|everything|vault|contents)", re.I),
    re.compile(r"show\s+(me\s+)?(all|everything|vault|contents)", re.I),
)
FOLDER_QUERY_RE = re.compile(
    r"(?:folder|directory|files?|documents?)\s+(?:named|called|labeled|in)\s+(\w+)", re.I
)

_BOUNDARY_RES = (
    re.compile(r"={3,}"),
    re.compile(r"\n\n[A-Z][^\n]+\n={2,}"),
    re.compile(r"\[DOCUMENT:\s*[^\]]+\]", re.I),
    re.compile(r"FILE:\s*[^\n]+", re.I),
)
_FOLDER_NAME_RES = (
    re.compile(r"folder[:\s]+([^\n]{1,200})", re.I),
    re.compile(r"directory[:\s]+([^\n]{1,200})", re.I),
    re.compile(r"path[:\s]+([^\n/]{1,200})", re.I),
    re.compile(r"/([^/\n]{1,100})/"),
)
_FILE_NAME_RES = (
    re.compile(r"file:\s*([^\n]{1,200})", re.I),
    re.compile(r"document:\s*([^\n]{1,200})", re.I),
    re.compile(r"\[DOCUMENT:\s{0,5}([^\]]{1,200})\]", re.I),
)
_HEADER_RE = re.compile(r"^\s*[A-Z][^\n]+\n={2,}", re.M)
_DIRECTIVE_RE = re.compile(r"founder|directive|rule|policy|must|required", re.I)
_BUSINESS_RE = re.compile(r"pricing|price|cost|\$\d+|revenue|business", re.I)
_LEGAL_RE = re.compile(r"legal|contract|agreement|terms|privacy|policy", re.I)

MIN_SECTION_CHARS = 100
MIN_PARAGRAPH_CHARS = 200
CHUNK_CHARS = 4000
MIN_SECTION_SCORE = 10
PARTIAL_MIN_SCORE = 50
PARTIAL_MIN_REMAINING_TOKENS = 500


@dataclass
class RequestContext:
    """Per-request inputs of the assembler.

    Attributes:
        query: The user's query
        document_text: Text of the document the user is working on, if any
        reference_corpus: Full text of the reference corpus, if any
    """
    query: str
    document_text: Optional[str] = None
    reference_corpus: Optional[str] = None


@dataclass
class ContextDecision:
    """One selection or truncation made while assembling."""
    source: str
    action: str
    detail: str
    tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "action": self.action,
            "detail": self.detail,
            "tokens": self.tokens,
        }


@dataclass
class AssembledContext:
    """Budget-enforced context for the response generator."""
    memory_text: str = ""
    document_text: str = ""
    reference_text: str = ""
    memory_tokens: int = 0
    document_tokens: int = 0
    reference_tokens: int = 0
    decisions: list[ContextDecision] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.memory_tokens + self.document_tokens + self.reference_tokens

    def to_dict(self) -> dict[str, Any]:
        return {
            "memory": self.memory_text,
            "document": self.document_text,
            "reference": self.reference_text,
            "tokens": {
                "memory": self.memory_tokens,
                "document": self.document_tokens,
                "reference": self.reference_tokens,
                "total": self.total_tokens,
            },
            "decisions": [d.to_dict() for d in self.decisions],
        }


@dataclass
class _Section:
    content: str
    score: float
    tokens: int


def extract_reference_keywords(query: str) -> list[str]:
    """Query words longer than 2 chars that are not reference stopwords."""
    seen: list[str] = []
    for word in re.findall(r"\b\w+\b", query.lower()):
        if len(word) > 2 and word not in _REFERENCE_STOPWORDS and word not in seen:
            seen.append(word)
    return seen


def is_inventory_query(query: str) -> bool:
    return any(pattern.search(query) for pattern in INVENTORY_RES)


def split_sections(corpus: str) -> list[str]:
    """Split a corpus at structural boundaries, paragraphs or fixed chunks."""
    positions = sorted(
        {match.start() for pattern in _BOUNDARY_RES for match in pattern.finditer(corpus)}
    )
    sections: list[str] = []
    if positions:
        last = 0
        for position in positions:
            if position > last:
                section = corpus[last:position].strip()
                if len(section) > MIN_SECTION_CHARS:
                    sections.append(section)
            last = position
        final = corpus[last:].strip()
        if len(final) > MIN_SECTION_CHARS:
            sections.append(final)

    if not sections:
        sections = [p for p in re.split(r"\n\n+", corpus) if len(p) > MIN_PARAGRAPH_CHARS]

    if not sections:
        sections = [corpus[i : i + CHUNK_CHARS] for i in range(0, len(corpus), CHUNK_CHARS)]

    return [s for s in sections if s]


def score_section(section: str, keywords: list[str], query_lower: str) -> float:
    """Relevance of one corpus section to the query."""
    score = 0.0
    section_lower = section.lower()

    for pattern in _FOLDER_NAME_RES:
        for match in pattern.finditer(section):
            folder = match.group(1).lower().strip()
            for keyword in keywords:
                if folder and (keyword in folder or folder in keyword):
                    score += 50

    for pattern in _FILE_NAME_RES:
        match = pattern.search(section)
        if match:
            file_name = match.group(1).lower().strip()
            for keyword in keywords:
                if file_name and (keyword in file_name or file_name in keyword):
                    score += 30

    for keyword in keywords:
        score += section_lower.count(keyword) * 10

    if query_lower and query_lower in section_lower:
        score += 100
    if _HEADER_RE.search(section):
        score += 20
    if _DIRECTIVE_RE.search(section):
        score += 30
    if _BUSINESS_RE.search(section):
        score += 25
    if _LEGAL_RE.search(query_lower) and _LEGAL_RE.search(section_lower):
        score += 40
    return score


def truncate_at_boundary(text: str, max_tokens: int) -> str:
    """Cut text to max_tokens, preferring a paragraph break, and mark the cut."""
    if estimate_tokens(text) <= max_tokens:
        return text
    room = max_tokens * CHARS_PER_TOKEN - len(TRUNCATION_MARKER)
    if room <= 0:
        return truncate_to_tokens(text, max_tokens)
    cut = text[:room]
    last_break = cut.rfind("\n\n")
    if last_break > room * 0.8:
        cut = cut[:last_break]
    return cut + TRUNCATION_MARKER


class ContextAssembler:
    """Assembles memory, document and reference text under token budgets.

    Args:
        budgets: Per-source and total token ceilings
    """

    def __init__(self, budgets: Optional[ContextBudgets] = None):
        self.budgets = budgets or ContextBudgets()

    @staticmethod
    def format_memories(memory_set: list[MemoryRecord]) -> str:
        return "\n".join(f"- {record.content}" for record in memory_set)

    def assemble(
        self, memory_set: list[MemoryRecord], request: RequestContext
    ) -> AssembledContext:
        """Build the context for one request.

        Args:
            memory_set: Records selected by retrieval, in rank order
            request: Query plus optional document and reference corpus

        Returns:
            AssembledContext within every ceiling
        """
        budgets = self.budgets
        context = AssembledContext()

        memory_text = self.format_memories(memory_set)
        context.memory_text = self._enforce(memory_text, budgets.memory, "memory", context)
        context.memory_tokens = estimate_tokens(context.memory_text)
        if memory_set:
            context.decisions.append(ContextDecision(
                "memory", "included", f"{len(memory_set)} records", context.memory_tokens
            ))

        if request.document_text:
            context.document_text = self._enforce(
                request.document_text, budgets.document, "document", context
            )
            context.document_tokens = estimate_tokens(context.document_text)
            context.decisions.append(ContextDecision(
                "document", "included", "document excerpt", context.document_tokens
            ))

        if request.reference_corpus:
            text, reason = self.select_reference(
                request.reference_corpus, request.query, budgets.reference
            )
            context.reference_text = text
            context.reference_tokens = estimate_tokens(text)
            context.decisions.append(ContextDecision(
                "reference", "selected", reason, context.reference_tokens
            ))

        self._enforce_total(context)
        logger.info(
            f"Assembled context: memory={context.memory_tokens}t "
            f"document={context.document_tokens}t reference={context.reference_tokens}t "
            f"total={context.total_tokens}/{budgets.total}t"
        )
        return context

    def _enforce(
        self, text: str, max_tokens: int, source: str, context: AssembledContext
    ) -> str:
        tokens = estimate_tokens(text)
        if tokens <= max_tokens:
            return text
        logger.info(f"{source} exceeds budget ({tokens} > {max_tokens}), truncating")
        context.decisions.append(ContextDecision(
            source, "truncated", f"{tokens} -> {max_tokens} tokens", max_tokens
        ))
        return truncate_to_tokens(text, max_tokens)

    def _enforce_total(self, context: AssembledContext) -> None:
        overflow = context.total_tokens - self.budgets.total
        if overflow <= 0:
            return
        # Reference gives way first, then the document
        for source in ("reference", "document"):
            if overflow <= 0:
                break
            tokens = getattr(context, f"{source}_tokens")
            if tokens == 0:
                continue
            target = max(tokens - overflow, 0)
            text = truncate_to_tokens(getattr(context, f"{source}_text"), target)
            setattr(context, f"{source}_text", text)
            setattr(context, f"{source}_tokens", estimate_tokens(text))
            context.decisions.append(ContextDecision(
                source, "truncated", f"total budget {self.budgets.total} exceeded", target
            ))
            logger.info(f"Total budget exceeded, {source} cut from {tokens} to {target} tokens")
            overflow = context.total_tokens - self.budgets.total

    def select_reference(self, corpus: str, query: str, max_tokens: int) -> tuple[str, str]:
        """Choose the parts of a reference corpus relevant to the query.

        Returns:
            (selected text, human-readable selection reason)
        """
        query_lower = query.lower()
        keywords = extract_reference_keywords(query_lower)

        if is_inventory_query(query):
            if estimate_tokens(corpus) <= max_tokens:
                return corpus, "full corpus for inventory query"
            return truncate_at_boundary(corpus, max_tokens), "truncated corpus for inventory query"

        sections = split_sections(corpus)

        folder_match = FOLDER_QUERY_RE.search(query)
        if folder_match:
            folder = folder_match.group(1).lower()
            matching = [s for s in sections if folder in s.lower()]
            if matching:
                chosen: list[str] = []
                used = 0
                for section in matching:
                    cost = estimate_tokens(section)
                    if used + cost <= max_tokens:
                        chosen.append(section)
                        used += cost
                reason = f'folder "{folder}": {len(chosen)}/{len(matching)} sections'
                if not chosen and max_tokens > 0:
                    chosen.append(truncate_to_tokens(matching[0], max_tokens))
                    reason += ", first section truncated"
                text = truncate_to_tokens("\n\n".join(chosen), max_tokens)
                return text, reason

        scored = sorted(
            (
                _Section(s, score_section(s, keywords, query_lower), estimate_tokens(s))
                for s in sections
            ),
            key=lambda section: -section.score,
        )

        chosen = []
        used = 0
        for section in scored:
            if section.score < MIN_SECTION_SCORE and chosen:
                break
            if used + section.tokens <= max_tokens:
                chosen.append(section.content)
                used += section.tokens
                continue
            remaining = max_tokens - used
            if remaining > PARTIAL_MIN_REMAINING_TOKENS and section.score >= PARTIAL_MIN_SCORE:
                chosen.append(truncate_to_tokens(section.content, remaining))
                logger.debug(f"Partially included section scoring {section.score}")
            break

        reason = f"{len(chosen)}/{len(sections)} sections by relevance"
        if not chosen and scored and max_tokens > 0:
            # Nothing fit whole; the corpus is cut, never dropped
            chosen.append(truncate_to_tokens(scored[0].content, max_tokens))
            reason = f"top section of {len(sections)} truncated to {max_tokens} tokens"
            logger.info(f"Top reference section ({scored[0].tokens} tokens) truncated to {max_tokens}")

        text = truncate_to_tokens("\n\n".join(chosen), max_tokens)
        return text, reason
