"""Fact fingerprints: canonical attribute keys for updatable facts.

A fingerprint names WHAT a fact is about ("user_salary", "user_phone_number")
independently of its value, so a newer value can supersede an older one.

Each attribute is recognised by capture patterns that pull the stated value
out of a sentence ("I have a dog named (Rex)", "my salary is ($95,000)").
Values are compared after normalization, never the surrounding wording, so
two unrelated sentences that merely share a word cannot replace each other.
A narrow set of indicator phrases ("my salary went up") still yields the
fingerprint without a value, at reduced confidence; such matches are
recorded but never claim or supersede anything.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# Subject forms of first-person text and third-person compressed facts
_POSS = r"(?:my|our|(?:the\s+)?user'?s)"
_I = r"(?:i|(?:the\s+)?user)"
_I_AM = r"(?:i'?m|i\s+am|(?:the\s+)?user\s+is)"
_I_HAVE = r"(?:i\s+have|i'?ve\s+got|(?:the\s+)?user\s+has)"

# Capitalized name, matched case-sensitively inside IGNORECASE patterns
_NAME = r"((?-i:[A-Z])[\w'-]+(?:\s+(?-i:[A-Z])[\w'-]+)?)"
_SINGLE_NAME = r"((?-i:[A-Z])[\w'-]+)"
_STOP = r"(?=\s+(?:(?:and|but|because|since|so|with|for|from|now)\b|in\s+\d)|\s*[.,;!?\n]|\s*$)"
_PLACE = rf"((?-i:[A-Z])[^.,;!?\n]*?){_STOP}"
_PHRASE = rf"(\w[^.,;!?\n]*?){_STOP}"
_MONEY = (
    r"(\$\s?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?(?:\s?[kK]\b)?"
    r"|\b\d+(?:\.\d+)?[kK]\b"
    r"|\b\d{1,3}(?:,\d{3})+(?:\.\d+)?\b"
    r"|\b\d{5,}\b)"
)
_PHONE = r"(\+?\(?\d[\d\s().-]{8,}\d)"
_EMAIL = r"([\w.+-]+@[\w-]+(?:\.[\w-]+)+)"
_TIME = r"(\d{1,2}:\d{2}\s?(?:am|pm)?|\d{1,2}\s?(?:am|pm)\b)"
_COUNT = r"(\d+|no|one|two|three|four|five|six|seven|eight|nine|ten)"
_ANIMAL = r"(?:dog|cat|puppy|kitten|bird|parrot|fish|hamster|rabbit|pet)"
_STATUS = r"(married|single|divorced|widowed|engaged|separated)"


@dataclass(frozen=True)
class FingerprintPattern:
    """Canonical attribute definition.

    Attributes:
        id: Fingerprint key stored on the record
        indicators: Phrases that name the attribute without stating a value
        confidence: Detection confidence when a value is captured
        value_patterns: Regexes whose single group captures the value
        multi_valued: Additive attributes (several allergies at once) that
            are deduplicated but never superseded
    """
    id: str
    indicators: tuple[str, ...]
    confidence: float
    value_patterns: tuple[re.Pattern, ...] = ()
    multi_valued: bool = False

    def indicator_regex(self) -> re.Pattern:
        alternatives = "|".join(re.escape(ind) for ind in self.indicators)
        return re.compile(rf"(?<!\w)(?:{alternatives})s?(?!\w)", re.IGNORECASE)


def _values(*sources: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


CANONICAL_PATTERNS: tuple[FingerprintPattern, ...] = (
    FingerprintPattern(
        "user_salary",
        ("salary", "income", "compensation", "wage", "earnings"),
        0.90,
        _values(
            rf"\b(?:salary|income|compensation|wages?|earnings|base pay)\b[^.\n$\d]{{0,40}}?{_MONEY}",
            rf"\b(?:make|makes|making|earn|earns|earning|(?:get|gets|getting)\s+paid)\s+"
            rf"(?:about\s+|around\s+|roughly\s+|over\s+)?{_MONEY}",
        ),
    ),
    FingerprintPattern(
        "user_job_title",
        ("job title", "occupation", "profession"),
        0.85,
        _values(
            rf"\b{_I}\s+works?\s+as\s+(?:an?\s+)?{_PHRASE}",
            rf"\b{_POSS}\s+(?:job|occupation|profession|role|job title|title|position)\s*(?:is|:)\s*"
            rf"(?:an?\s+)?{_PHRASE}",
            rf"\b{_I_AM}\s+an?\s+(developer|engineer|manager|designer|analyst|consultant|director"
            r"|ceo|cto|founder|doctor|lawyer|teacher|nurse|accountant)\b",
        ),
    ),
    FingerprintPattern(
        "user_employer",
        ("employer",),
        0.85,
        _values(
            rf"\b{_I}\s+works?\s+(?:at|for)\s+{_PLACE}",
            rf"\b{_POSS}\s+(?:company|employer|workplace)\s*(?:is|:)\s*{_PLACE}",
            rf"\bemployed\s+(?:by|at)\s+{_PLACE}",
        ),
    ),
    FingerprintPattern(
        "user_phone_number",
        ("phone number", "cell number", "mobile number", "telephone"),
        0.95,
        _values(
            rf"\b(?:phone|cell|mobile|telephone)(?:\s+number)?\b[^.\d\n]{{0,20}}?{_PHONE}",
            rf"\b(?:call|reach|text)\s+(?:me|us|(?:the\s+)?user)\s+(?:at|on)\s+{_PHONE}",
        ),
    ),
    FingerprintPattern(
        "user_email",
        ("email address", "e-mail address"),
        0.95,
        _values(
            rf"\be-?mail(?:\s+address)?\b[^@\n]{{0,20}}?{_EMAIL}",
            rf"\b(?:email|reach|contact)\s+(?:me|us|(?:the\s+)?user)\s+at\s+{_EMAIL}",
        ),
    ),
    FingerprintPattern(
        "user_location_residence",
        ("home address",),
        0.85,
        _values(
            rf"\b{_I}\s+(?:lives?|resides?)\s+in\s+{_PLACE}",
            rf"\b{_POSS}\s+(?:home|address|home address|residence)\s*(?:is|:)\s*{_PLACE}",
            rf"\b(?:moved|moving|relocated)\s+to\s+{_PLACE}",
            rf"\b{_I_AM}\s+(?:now\s+)?based\s+in\s+{_PLACE}",
        ),
    ),
    FingerprintPattern(
        "user_name",
        ("my name",),
        0.85,
        _values(
            rf"\b{_POSS}\s+name\s*(?:is|:)\s*{_NAME}",
            rf"\bcall\s+me\s+{_SINGLE_NAME}",
        ),
    ),
    FingerprintPattern(
        "user_allergy",
        ("allergy", "allergies", "allergic"),
        0.95,
        _values(
            rf"\b(?:allergic|intolerant)\s+to\s+{_PHRASE}",
            rf"\b{_POSS}\s+allerg(?:y|ies)\s*(?:is|are|:|to)\s*{_PHRASE}",
        ),
        multi_valued=True,
    ),
    FingerprintPattern(
        "user_medical",
        ("diagnosis", "medical condition"),
        0.90,
        _values(
            rf"\b(?:diagnosed\s+with|suffers?\s+from)\s+{_PHRASE}",
            rf"\b{_POSS}\s+(?:diagnosis|medical condition)\s*(?:is|:)\s*{_PHRASE}",
        ),
        multi_valued=True,
    ),
    FingerprintPattern(
        "user_age",
        ("years old", "my age"),
        0.90,
        _values(
            rf"\b{_I_AM}\s+(\d{{1,3}})\s*(?:years?\s*old|yo)\b",
            rf"\b{_POSS}\s+age\s*(?:is|:)\s*(\d{{1,3}})\b",
        ),
    ),
    FingerprintPattern(
        "user_marital_status",
        ("marital status",),
        0.90,
        _values(
            rf"\b{_I_AM}\s+(?:now\s+)?{_STATUS}\b",
            rf"\b{_POSS}\s+(?:marital\s+)?status\s*(?:is|:)\s*{_STATUS}\b",
            r"\bgot\s+(married|divorced|engaged)\b",
        ),
    ),
    FingerprintPattern(
        "user_spouse_name",
        ("spouse",),
        0.85,
        _values(
            rf"\b{_POSS}\s+(?:wife|husband|spouse|partner)(?:'s\s+name)?\s*(?:is|:)\s*"
            rf"(?:named\s+|called\s+)?{_SINGLE_NAME}",
            rf"\bmarried\s+to\s+{_SINGLE_NAME}",
        ),
    ),
    FingerprintPattern(
        "user_children_count",
        ("children", "kids"),
        0.85,
        _values(
            rf"\b{_I_HAVE}\s+{_COUNT}\s+(?:kids?|child(?:ren)?|sons?|daughters?)\b",
        ),
    ),
    FingerprintPattern(
        "user_pet",
        ("pet",),
        0.80,
        _values(
            rf"\b{_I_HAVE}\s+an?\s+{_ANIMAL}\s+(?:named|called)\s+{_SINGLE_NAME}",
            rf"\b{_POSS}\s+{_ANIMAL}(?:'s\s+name)?\s*(?:is\s+(?:named\s+|called\s+)?|:\s*){_SINGLE_NAME}",
        ),
    ),
    FingerprintPattern(
        "user_meeting_time",
        ("meeting", "appointment"),
        0.90,
        _values(
            rf"\b(?:meeting|appointment|standup|sync)\b[^.\n]{{0,40}}?\b(?:at|to|for|is)\s+{_TIME}",
        ),
    ),
    FingerprintPattern(
        "user_favorite_color",
        ("favorite color", "favourite color", "favorite colour", "favourite colour"),
        0.80,
        _values(
            rf"\b{_POSS}\s+fav(?:ou?rite)?\s+colou?r\s*(?:is|:)\s*(\w+)",
        ),
    ),
    FingerprintPattern(
        "user_timezone",
        ("timezone", "time zone"),
        0.85,
        _values(
            rf"\b{_POSS}\s+time\s?zone\s*(?:is|:)\s*([\w/+-]+)",
            rf"\b{_I_AM}\s+(?:in|on)\s+((?-i:EST|EDT|PST|PDT|CST|CDT|MST|MDT|UTC|GMT|CET))\b",
        ),
    ),
)

PATTERNS_BY_ID: dict[str, FingerprintPattern] = {p.id: p for p in CANONICAL_PATTERNS}

_INDICATOR_RES: dict[str, re.Pattern] = {p.id: p.indicator_regex() for p in CANONICAL_PATTERNS}

_NUMBER_WORDS = {
    "no": "0", "none": "0", "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9", "ten": "10",
}
_MONEY_VALUE_RE = re.compile(r"\$?\s?(\d[\d,]*(?:\.\d+)?)\s?(k)?")
_CLOCK_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s?(am|pm)")
_DIGITS_RE = re.compile(r"\+?[\d\s().-]+")


@dataclass
class FingerprintMatch:
    """Result of fingerprint detection.

    Attributes:
        fingerprint: Canonical attribute ID, or None
        confidence: Detection confidence (0.0 when nothing matched)
        method: "indicator_with_value", "indicator_without_value" or "no_match"
        values: Raw values captured from the text, in match order
    """
    fingerprint: Optional[str] = None
    confidence: float = 0.0
    method: str = "no_match"
    values: list[str] = field(default_factory=list)


def normalize_value(value: str) -> str:
    """Canonical form of a captured value.

    Amounts compare numerically ("$95,000" == "95k"), phone numbers by their
    digits, clock times as h:mm plus am/pm, and count words as digits.
    Everything else is lowercased with a leading article removed.
    """
    value = value.strip().lower()
    if value in _NUMBER_WORDS:
        return _NUMBER_WORDS[value]
    money = _MONEY_VALUE_RE.fullmatch(value)
    if money:
        amount = float(money.group(1).replace(",", ""))
        if money.group(2):
            amount *= 1000
        return str(int(amount)) if amount.is_integer() else str(amount)
    clock = _CLOCK_RE.fullmatch(value)
    if clock:
        return f"{int(clock.group(1))}:{clock.group(2) or '00'}{clock.group(3)}"
    if _DIGITS_RE.fullmatch(value):
        return re.sub(r"\D", "", value)
    value = re.sub(r"^(?:a|an|the)\s+", "", value)
    return re.sub(r"\s+", " ", value)


def _captures(pattern: FingerprintPattern, text: str) -> list[str]:
    found = []
    for value_re in pattern.value_patterns:
        for match in value_re.finditer(text):
            value = match.group(1).strip()
            if value:
                found.append(value)
    return found


def extract_values(pattern_id: str, text: str) -> set[str]:
    """Normalized values of a fingerprint stated in text (empty if none)."""
    pattern = PATTERNS_BY_ID.get(pattern_id)
    if pattern is None or not text:
        return set()
    return {normalize_value(value) for value in _captures(pattern, text)}


def values_conflict(pattern_id: str, old_values: set[str], new_values: set[str]) -> bool:
    """Whether new_values replace old_values for the fingerprint.

    Both sides must hold a value and the two sets must share nothing. An old
    record whose value cannot be read is never considered replaced, and
    additive attributes never conflict.
    """
    pattern = PATTERNS_BY_ID.get(pattern_id)
    if pattern is None or pattern.multi_valued:
        return False
    if not old_values or not new_values:
        return False
    return new_values.isdisjoint(old_values)


def values_differ(pattern_id: str, old_text: str, new_text: str) -> bool:
    """Whether new_text replaces the value old_text states for the fingerprint."""
    return values_conflict(
        pattern_id,
        extract_values(pattern_id, old_text),
        extract_values(pattern_id, new_text),
    )


def detect_fingerprint(fact: str, indicator_only_factor: float = 0.8) -> FingerprintMatch:
    """Detect the canonical attribute a fact is about.

    A captured value wins; otherwise the first attribute whose indicator
    phrase occurs is returned with its confidence multiplied by
    indicator_only_factor.

    Args:
        fact: Compressed fact text
        indicator_only_factor: Confidence multiplier for value-less matches

    Returns:
        FingerprintMatch (fingerprint None when nothing matched)
    """
    if not fact or not isinstance(fact, str):
        return FingerprintMatch()

    value_missing: Optional[FingerprintMatch] = None

    for pattern in CANONICAL_PATTERNS:
        values = _captures(pattern, fact)
        if values:
            logger.debug(f"Fingerprint {pattern.id} detected with value {values[0]}")
            return FingerprintMatch(
                fingerprint=pattern.id,
                confidence=pattern.confidence,
                method="indicator_with_value",
                values=values,
            )
        if value_missing is None and _INDICATOR_RES[pattern.id].search(fact):
            value_missing = FingerprintMatch(
                fingerprint=pattern.id,
                confidence=round(pattern.confidence * indicator_only_factor, 4),
                method="indicator_without_value",
            )

    if value_missing is not None:
        logger.debug(
            f"Fingerprint {value_missing.fingerprint} detected without a value "
            f"(confidence={value_missing.confidence})"
        )
        return value_missing
    return FingerprintMatch()
