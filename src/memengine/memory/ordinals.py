"""Ordinal fact detection ("my second code is DELTA")."""

import re
from dataclasses import dataclass
from typing import Optional

ORDINAL_WORDS: dict[str, int] = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
    "1st": 1, "2nd": 2, "3rd": 3, "4th": 4, "5th": 5,
    "6th": 6, "7th": 7, "8th": 8, "9th": 9, "10th": 10,
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

ORDINAL_NAMES = {
    1: "first", 2: "second", 3: "third", 4: "fourth", 5: "fifth",
    6: "sixth", 7: "seventh", 8: "eighth", 9: "ninth", 10: "tenth",
}

_ORDINAL_ALT = "|".join(ORDINAL_WORDS)
_ORDINAL_RE = re.compile(rf"\b(my|the|your|user'?s)\s+({_ORDINAL_ALT})\s+(\w+)", re.IGNORECASE)
_VALUE_RE = re.compile(r"^\s*(?:is|are|was|were|:|=)\s*[\"'`]?([\w][\w.\-@]*)", re.IGNORECASE)


@dataclass(frozen=True)
class OrdinalFact:
    """One ordinal mention.

    Attributes:
        ordinal: Position (1-based)
        subject: Lowercased noun after the ordinal ("code")
        value: The value assigned to it, when the text states one
        word: The ordinal as written ("second", "2nd")
    """
    ordinal: int
    subject: str
    value: Optional[str] = None
    word: str = ""


def normalize_subject(subject: str) -> str:
    """Singular lowercase form used to compare ordinal subjects."""
    subject = subject.lower()
    if subject.endswith("s") and len(subject) > 3 and not subject.endswith("ss"):
        return subject[:-1]
    return subject


def detect_ordinals(text: str) -> list[OrdinalFact]:
    """Find every "my/the <ordinal> <subject>" mention in text."""
    if not text:
        return []
    facts = []
    for match in _ORDINAL_RE.finditer(text):
        word = match.group(2).lower()
        value_match = _VALUE_RE.match(text[match.end():])
        facts.append(
            OrdinalFact(
                ordinal=ORDINAL_WORDS[word],
                subject=normalize_subject(match.group(3)),
                value=value_match.group(1).rstrip(".") if value_match else None,
                word=word,
            )
        )
    return facts


def detect_ordinal(text: str) -> Optional[OrdinalFact]:
    """First ordinal mention in text, if any."""
    facts = detect_ordinals(text)
    return facts[0] if facts else None
