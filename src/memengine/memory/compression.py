"""Fact compression with critical-token protection.

An exchange (user turn plus assistant reply) is compressed into a few short
fact lines by the summarizer. The summarizer output is then trimmed hard
(at most 3 facts, 5 words each) and finally every critical token of the
source (amounts, years, durations, brand names, personal names, identifiers,
ordinal values) that did not survive is re-injected verbatim with a little
source context. When the summarizer fails, the exchange is stored
uncompressed instead; compression never makes a store fail.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from memengine.config import EngineOptions
from memengine.errors import UpstreamServiceError
from memengine.memory.ordinals import detect_ordinals
from memengine.text import STOPWORDS
from memengine.tokens import estimate_tokens

logger = logging.getLogger(__name__)

HIGH_ENTROPY_RE = re.compile(
    r"\b[A-Z]+-\d+-[A-Z0-9]+\b|\b[A-Z]+-\d{10,}\b|\bDr\.\s*[A-Z]+-\d+\b|\b[A-Z0-9]{12,}\b",
    re.IGNORECASE,
)

NUMERIC_RES = (
    re.compile(r"[$€£]\s?\d[\d,]*(?:\.\d+)?(?:\s?(?:k|K|m|M|million|billion)\b)?"),
    re.compile(r"\b\d+(?:\.\d+)?\s?%"),
    re.compile(
        r"\b\d+(?:\.\d+)?\s*(?:years?|yrs?|months?|weeks?|days?|hours?|minutes?)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b\d{1,2}(?::\d{2})?\s?(?:am|pm)\b", re.IGNORECASE),
    re.compile(r"\b(?:19|20)\d{2}\b"),
)

# Letters of any script, allowing inner hyphens and apostrophes ("García-López", "O'Neil")
_WORD_TOKEN_RE = re.compile(r"[^\W\d_]+(?:[-'’][^\W\d_]+)*|\d+[A-Za-z]*")
_SENTENCE_END_RE = re.compile(r"[.!?:\n]\s*$")

_BULLET_RE = re.compile(r"^[-•*\d.)\]]+\s*")
_FACT_SPLIT_RE = re.compile(r"\n|\.(?=\s|[A-Z]|$)")
FILLER_WORDS = frozenset({
    "the", "a", "an", "this", "that", "these", "those", "is", "are", "was", "were",
    "has", "have", "had",
})

BOILERPLATE_RES = tuple(
    re.compile(source, re.IGNORECASE)
    for source in (
        r"I don't retain memory",
        r"session-based memory",
        r"this appears to be our first interaction",
        r"I'm an AI assistant",
        r"confidence is lower than ideal",
        r"I should clarify",
        r"I cannot access previous conversations",
        r"I don't have access to",
    )
)
_GREETING_RE = re.compile(
    r"^\s*(hi|hello|hey|thanks|thank you|ok|okay|bye|goodbye|cool|great|yes|no)\b[\s!.,]*$",
    re.IGNORECASE,
)

PRIORITY_RES = tuple(
    re.compile(source, re.IGNORECASE)
    for source in (
        r"(?:i |my )(?:priority|priorities|most important|care most about)",
        r"(?:always|never) (?:want|need|prefer)",
        r"(?:this is|that's) (?:important|critical|essential)",
        r"(?:don't|do not) ever",
        r"(?:make sure|ensure|remember that)",
        r"important to me",
    )
)

EXPLICIT_STORAGE_RE = re.compile(
    r"\b(remember (?:this|that|my)|please remember|don'?t forget|do not forget|"
    r"store this|save this|keep in mind|make a note|note that)\b",
    re.IGNORECASE,
)

FACT_PROMPT = """Extract ONLY the essential facts from this conversation. Be extremely brief but PRESERVE all identifiers and numeric values.

CRITICAL RULES:
1. ALWAYS preserve exact alphanumeric identifiers (e.g., ECHO-123-ABC, ALPHA-456)
2. ALWAYS preserve names exactly as written, including accents (e.g., José García, Dr. FOXTROT-123)
3. ALWAYS preserve numbers, codes, IDs, license plates, serial numbers VERBATIM
4. ALWAYS preserve salary amounts, prices, financial figures EXACTLY (e.g., $250,000, $95,000, $80K)
5. ALWAYS preserve times, dates, years and durations EXACTLY (e.g., 3pm, 2023, 5 years)
6. Never generalize unique identifiers into descriptions like "identifier" or "code"
7. If user says "My X is Y", output MUST contain Y exactly

Examples:
Input: "My license plate is ABC-123-XYZ"
Output: "License plate: ABC-123-XYZ"

Input: "I got a raise! They're now paying me $250,000"
Output: "Salary: $250,000"

Input: "Meeting moved to 4pm"
Output: "Meeting: 4pm"

Rules for compression:
- Maximum 3-5 facts total
- Each fact: 3-8 words (more if needed for identifiers or amounts)
- Include ONLY: Names, numbers, specific entities, user statements, amounts, times
- EXCLUDE: Questions, greetings, explanations, AI responses

User: {user_text}
Assistant: {reply_text}

Facts (preserve all identifiers and amounts):"""


@dataclass
class CompressionResult:
    """Output of FactCompressor.compress.

    Attributes:
        fact: Text to store
        compressed: True when the summarizer produced the fact
        anchor_keys: Critical tokens guaranteed to appear verbatim in fact
        metadata: Compression statistics and flags for the stored record
    """
    fact: str
    compressed: bool
    anchor_keys: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


def is_boilerplate(user_text: str, reply_text: str = "") -> bool:
    """Check whether an exchange carries nothing worth remembering."""
    text = (user_text or "").strip()
    if len(text) < 10 or _GREETING_RE.match(text):
        return True
    return bool(reply_text) and "i'm an ai" in text.lower()


def strip_boilerplate(reply_text: str) -> str:
    """Remove assistant boilerplate phrases from a reply."""
    cleaned = reply_text or ""
    for pattern in BOILERPLATE_RES:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def detect_user_priority(text: str) -> bool:
    return any(pattern.search(text or "") for pattern in PRIORITY_RES)


def detect_explicit_request(text: str) -> bool:
    """Whether the user explicitly asked for something to be remembered."""
    return bool(EXPLICIT_STORAGE_RE.search(text or ""))


def _name_sequences(text: str) -> list[str]:
    """Capitalized word runs: brand names ("Tesla Model 3") and personal names.

    Python's re has no Unicode uppercase class, so runs are built by walking
    letter tokens and checking str.isupper() on their first character.
    """
    found: list[str] = []
    run: list[re.Match] = []

    def flush() -> None:
        words = list(run)
        while words and words[0].group(0).lower() in STOPWORDS:
            words.pop(0)
        while words and words[-1].group(0)[0].isdigit() and len(words) == 1:
            words.pop()
        if not words:
            return
        at_sentence_start = (
            words[0].start() == 0 or bool(_SENTENCE_END_RE.search(text[: words[0].start()]))
        )
        if len(words) >= 2 or (not at_sentence_start and len(words[0].group(0)) > 1):
            found.append(text[words[0].start(): words[-1].end()])

    for match in _WORD_TOKEN_RE.finditer(text):
        token = match.group(0)
        contiguous = bool(run) and text[run[-1].end(): match.start()].isspace()
        if token[0].isupper() or (token[0].isdigit() and run and contiguous):
            if run and not contiguous:
                flush()
                run = []
            run.append(match)
        else:
            if run:
                flush()
            run = []
    if run:
        flush()
    return found


def extract_critical_tokens(text: str) -> list[str]:
    """Tokens that must survive compression verbatim, in source order.

    Covers currency amounts, percentages, durations, times, years,
    high-entropy identifiers, capitalized brand/product names (optionally
    containing digits), personal names in any script and ordinal values.
    """
    if not text:
        return []
    spans: list[tuple[int, str]] = []
    for pattern in (*NUMERIC_RES, HIGH_ENTROPY_RE):
        spans.extend((m.start(), m.group(0).strip()) for m in pattern.finditer(text))
    for name in _name_sequences(text):
        spans.append((text.find(name), name))
    for ordinal in detect_ordinals(text):
        if ordinal.value:
            spans.append((text.find(ordinal.value), ordinal.value))

    tokens: list[str] = []
    for _, token in sorted(spans, key=lambda item: item[0]):
        if not token or token.lower() in STOPWORDS:
            continue
        if any(token.lower() == existing.lower() for existing in tokens):
            continue
        tokens.append(token)
    # Drop tokens fully contained in a longer protected token
    return [
        token
        for token in tokens
        if not any(token != other and token.lower() in other.lower() for other in tokens)
    ]


def post_process_facts(facts: str) -> str:
    """Trim summarizer output to at most 3-5 short fact lines."""
    lines = [
        _BULLET_RE.sub("", line.strip()).strip()
        for line in _FACT_SPLIT_RE.split(facts or "")
    ]
    lines = [line for line in lines if line]

    identifier_lines = [line for line in lines if HIGH_ENTROPY_RE.search(line)]
    regular_lines = [line for line in lines if not HIGH_ENTROPY_RE.search(line)]
    max_facts = 5 if identifier_lines else 3

    regular_lines = [
        " ".join(line.split()[:5]) for line in regular_lines[: max(max_facts - len(identifier_lines), 0)]
    ]
    identifier_lines = [" ".join(line.split()[:8]) for line in identifier_lines]

    result: list[str] = []
    seen: set[str] = set()
    for line in identifier_lines + regular_lines:
        key = line.lower()
        if key in seen:
            continue
        seen.add(key)
        has_identifier = bool(HIGH_ENTROPY_RE.search(line))
        words = line.split()
        if len(words) < 3 and not has_identifier:
            continue
        if not has_identifier:
            words = [words[0]] + [w for w in words[1:] if w.lower() not in FILLER_WORDS]
        line = " ".join(words)
        if not re.search(r"[.!?]$", line):
            line += "."
        result.append(line)
    return "\n".join(result)


def protect_critical_tokens(source: str, fact: str, tokens: list[str]) -> tuple[str, list[str]]:
    """Re-inject every critical token missing from fact.

    Returns:
        (protected fact, tokens that had to be re-injected)
    """
    # Exact, case-sensitive: a lowercased brand is not the protected token
    missing = [token for token in tokens if token not in fact]
    for token in missing:
        if token in fact:
            # Covered by an earlier addition
            continue
        context = re.search(rf"(?:[\w.'’$,]+\s+){{0,3}}{re.escape(token)}", source)
        addition = context.group(0) if context else f"Identifier: {token}"
        fact = f"{fact}\n{addition}." if fact else f"{addition}."
    return fact, missing


class FactCompressor:
    """Compresses exchanges into short facts.

    Args:
        summarizer: Object with an async summarize(prompt, max_tokens) method
        options: Engine options (fact length caps, relevance defaults)
    """

    def __init__(self, summarizer: Any = None, options: Optional[EngineOptions] = None):
        self.summarizer = summarizer
        self.options = options or EngineOptions()

    async def compress(self, user_text: str, reply_text: str = "") -> CompressionResult:
        """Compress an exchange into a fact with protected critical tokens.

        Args:
            user_text: The user's turn
            reply_text: The assistant's reply (boilerplate is stripped)

        Returns:
            CompressionResult; compressed=False with fallback=True metadata when
            the summarizer failed and the raw exchange was kept instead
        """
        reply_text = strip_boilerplate(reply_text)
        # Critical tokens come from the user's own words
        critical = extract_critical_tokens(user_text)
        original_tokens = estimate_tokens(f"{user_text}\n{reply_text}")

        raw: Optional[str] = None
        if self.summarizer is not None:
            prompt = FACT_PROMPT.format(user_text=user_text, reply_text=reply_text)
            try:
                raw = await self.summarizer.summarize(prompt, max_tokens=100)
            except UpstreamServiceError as e:
                logger.warning(f"Summarizer failed, storing exchange uncompressed: {e}")
            except Exception as e:
                logger.warning(f"Unexpected summarizer error, storing uncompressed: {e}")

        fact = post_process_facts(raw) if raw and raw.strip() else ""
        if fact:
            # Cap the summary first; re-injected tokens are never cut
            fact = fact[: self.options.max_fact_chars].rstrip()
            fact, reinjected = protect_critical_tokens(user_text, fact, critical)
            compressed = True
        else:
            fact = f"User: {user_text.strip()}"
            if reply_text:
                fact += f"\nAssistant: {reply_text}"
            fact = fact[: self.options.max_uncompressed_chars]
            fact, reinjected = protect_critical_tokens(user_text, fact, critical)
            compressed = False

        compressed_tokens = estimate_tokens(fact)
        metadata: dict[str, Any] = {
            "compressed": compressed,
            "fallback": not compressed,
            "original_tokens": original_tokens,
            "compressed_tokens": compressed_tokens,
            "compression_ratio": round(original_tokens / max(compressed_tokens, 1), 2),
            "anchor_keys": critical,
            "reinjected_tokens": reinjected,
        }
        if reinjected:
            logger.info(f"Re-injected {len(reinjected)} critical tokens: {reinjected}")
        return CompressionResult(
            fact=fact, compressed=compressed, anchor_keys=critical, metadata=metadata
        )
