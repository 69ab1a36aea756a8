"""Post-generation correctness primitives.

Each primitive checks a generated answer against the memories that were
injected for the query and repairs one class of mistake:

- TemporalArithmeticPrimitive: the answer hedges (or omits the year) although
  a duration and an anchor year in memory determine it
- ListCompletenessPrimitive: an enumeration answer leaves out named items
- OrdinalCorrectnessPrimitive: "my second code" answered with the first one

Primitives are pure and idempotent: applying one to its own output changes
nothing. Every call returns a PrimitiveLog, so "ran and did nothing" can be
told apart from "did not run".
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence, Union

from memengine.memory.ordinals import ORDINAL_NAMES, detect_ordinal, detect_ordinals
from memengine.memory.types import MemoryRecord
from memengine.text import normalize_for_match

logger = logging.getLogger(__name__)

MemoryItem = Union[MemoryRecord, str]

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass
class PrimitiveLog:
    """Structured execution log of one primitive run.

    Attributes:
        primitive: Primitive name
        fired: Whether the primitive changed the text
        reason: Why it fired or which gate stopped it
        layer_one_correct: Whether the generated text needed no repair
        details: Values the decision was based on
        timestamp: When the primitive ran (UTC)
    """
    primitive: str
    fired: bool = False
    reason: str = ""
    layer_one_correct: bool = True
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "primitive": self.primitive,
            "fired": self.fired,
            "reason": self.reason,
            "layer_one_correct": self.layer_one_correct,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PrimitiveResult:
    text: str
    log: PrimitiveLog


@dataclass
class CorrectionResult:
    """Final text after every primitive ran, with one log per primitive."""
    text: str
    logs: list[PrimitiveLog] = field(default_factory=list)

    @property
    def corrected(self) -> bool:
        return any(log.fired for log in self.logs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "corrected": self.corrected,
            "logs": [log.to_dict() for log in self.logs],
        }


def _contents(memory_set: Sequence[MemoryItem]) -> list[str]:
    return [item.content if isinstance(item, MemoryRecord) else str(item) for item in memory_set]


class CorrectionPrimitive:
    """Base class: apply(generated_text, memory_set, query) -> PrimitiveResult."""

    name = "primitive"

    def apply(
        self, generated_text: str, memory_set: Sequence[MemoryItem], query: str
    ) -> PrimitiveResult:
        raise NotImplementedError

    def _skip(self, text: str, reason: str, **details: Any) -> PrimitiveResult:
        return PrimitiveResult(text, PrimitiveLog(self.name, reason=reason, details=details))

    def _fire(self, text: str, reason: str, **details: Any) -> PrimitiveResult:
        logger.info(f"{self.name} fired: {reason} {details}")
        return PrimitiveResult(
            text,
            PrimitiveLog(
                self.name, fired=True, reason=reason, layer_one_correct=False, details=details
            ),
        )


class TemporalArithmeticPrimitive(CorrectionPrimitive):
    """Computes a start or end year from a duration and an anchor year.

    "worked 5 years" + "left in 2020" answers "when did I start?" with 2015;
    "started in 2015" + "5 years" answers "when did I leave?" with 2020.
    """

    name = "temporal_arithmetic"

    QUERY_RE = re.compile(
        r"\b(when|what year|how long ago|start date|when did|timeline|began|started)\b", re.I
    )
    END_QUERY_RE = re.compile(r"\b(leave|left|quit|end|ended|finish|finished|retire|retired|stop|stopped)\b", re.I)
    DURATION_RES = (
        re.compile(r"(\d+)\s*(?:year|yr)s?\b", re.I),
        re.compile(r"(?:worked|spent|been)\s+(?:for\s+)?(\d+)", re.I),
    )
    YEAR_RE = re.compile(r"\b(19\d{2}|20[0-3]\d)\b")
    START_CONTEXT_RE = re.compile(r"\b(start|started|began|begin|joined|hired|since)\b", re.I)
    HEDGING_RE = re.compile(
        r"haven't mentioned|not provided|unclear|don't have specific|not sure|"
        r"would need to know|can't determine|cannot determine|don't know|"
        r"haven't told me when|no information",
        re.I,
    )

    def apply(
        self, generated_text: str, memory_set: Sequence[MemoryItem], query: str
    ) -> PrimitiveResult:
        contents = _contents(memory_set)
        if not contents:
            return self._skip(generated_text, "no_memory_context")
        if not self.QUERY_RE.search(query or ""):
            return self._skip(generated_text, "not_temporal_query")

        duration = None
        for pattern in self.DURATION_RES:
            for content in contents:
                match = pattern.search(content)
                if match:
                    duration = int(match.group(1))
                    break
            if duration is not None:
                break

        anchor_year = None
        anchor_content = ""
        for content in contents:
            years = self.YEAR_RE.findall(content)
            if years:
                anchor_year, anchor_content = int(years[-1]), content
        if duration is None or anchor_year is None:
            return self._skip(generated_text, "no_duration_or_anchor_year")

        asks_end = bool(self.END_QUERY_RE.search(query))
        anchor_is_start = bool(self.START_CONTEXT_RE.search(anchor_content))
        if asks_end and anchor_is_start:
            year, kind = anchor_year + duration, "end"
        elif not asks_end and not anchor_is_start:
            year, kind = anchor_year - duration, "start"
        else:
            return self._skip(
                generated_text, "anchor_year_answers_directly", anchor_year=anchor_year
            )

        details = {"duration_years": duration, "anchor_year": anchor_year, "computed_year": year}
        if str(year) in self.YEAR_RE.findall(generated_text):
            return self._skip(generated_text, "layer_one_produced_correct_response", **details)

        if kind == "start":
            statement = (
                f"Based on {duration} years and leaving in {anchor_year}, "
                f"you started around {year}."
            )
        else:
            statement = (
                f"Based on starting in {anchor_year} and {duration} years, "
                f"you left around {year}."
            )

        sentences = _SENTENCE_SPLIT_RE.split(generated_text.strip()) if generated_text.strip() else []
        for index, sentence in enumerate(sentences):
            if self.HEDGING_RE.search(sentence):
                sentences[index] = statement
                return self._fire(
                    " ".join(sentences), "hedge_despite_computable_temporal_facts", **details
                )

        text = f"{generated_text.rstrip()}\n\n{statement}" if generated_text.strip() else statement
        return self._fire(text, "computed_year_missing_from_response", **details)


class ListCompletenessPrimitive(CorrectionPrimitive):
    """Makes sure every named item in memory appears in an enumeration answer."""

    name = "list_completeness"

    QUERY_RE = re.compile(
        r"\b(who are my|list my|what are my|show me my|tell me my|all my|every|everyone I)\b", re.I
    )
    SUBJECT_RE = re.compile(
        r"\b(?:who are|list|what are|show me|tell me|all)\s+my\s+([\w-]+)", re.I
    )
    # Capitalized (Latin-1 aware) name words followed by a parenthetical descriptor
    _NAME = r"[A-ZÀ-Þ][a-zß-ÿ]+"
    NAME_PAREN_RE = re.compile(rf"({_NAME}(?:[-\s']{_NAME})*)\s*\(")
    SEGMENT_SPLIT_RE = re.compile(r",|;|\band\b")
    EXCLUDED = frozenset({"User", "I", "My", "The", "Also", "And", "Assistant"})

    @classmethod
    def _trailing_name(cls, segment: str) -> str:
        tokens = re.sub(r"\([^)]*\)", " ", segment).split()
        run: list[str] = []
        for token in reversed(tokens):
            word = token.strip(".,;:!?\"'")
            if (
                word
                and word[0].isupper()
                and all(ch.isalpha() or ch in "-'’" for ch in word)
                and word not in cls.EXCLUDED
            ):
                run.insert(0, word)
            else:
                break
        return " ".join(run)

    @classmethod
    def extract_names(cls, contents: list[str]) -> list[str]:
        names: list[str] = []
        for content in contents:
            for match in cls.NAME_PAREN_RE.finditer(content):
                name = cls._trailing_name(match.group(1))
                if name and name not in names:
                    names.append(name)
        if names:
            return names
        for content in contents:
            segments = cls.SEGMENT_SPLIT_RE.split(content)
            if len(segments) < 2:
                continue
            for segment in segments:
                name = cls._trailing_name(segment)
                if name and name not in names:
                    names.append(name)
        return names

    def apply(
        self, generated_text: str, memory_set: Sequence[MemoryItem], query: str
    ) -> PrimitiveResult:
        contents = _contents(memory_set)
        if not contents:
            return self._skip(generated_text, "no_memory_context")
        if not self.QUERY_RE.search(query or ""):
            return self._skip(generated_text, "not_list_query")

        subject_match = self.SUBJECT_RE.search(query)
        subject = subject_match.group(1).lower() if subject_match else "items"
        stem = subject.rstrip("s")
        relevant = [c for c in contents if stem and stem in c.lower()] or contents

        names = self.extract_names(relevant)
        if len(names) < 2:
            return self._skip(generated_text, "fewer_than_two_items", items=names)

        normalized_text = normalize_for_match(generated_text)
        missing = [n for n in names if normalize_for_match(n) not in normalized_text]
        details = {"items_in_memory": names, "items_missing": missing}
        if not missing:
            return self._skip(generated_text, "layer_one_produced_complete_list", **details)

        if len(missing) == len(names):
            addition = f"Your {subject} are: {', '.join(names)}."
        else:
            addition = f"Also, your {subject} include: {', '.join(missing)}."
        text = f"{generated_text.rstrip()}\n\n{addition}" if generated_text.strip() else addition
        return self._fire(text, "response_missing_items_from_injected_memory", **details)


def _value_re(alternatives: str) -> re.Pattern:
    return re.compile(rf"(?<![\w-])(?:{alternatives})(?![\w-])", re.I)


class OrdinalCorrectnessPrimitive(CorrectionPrimitive):
    """Substitutes a sibling's value with the one for the requested ordinal."""

    name = "ordinal_correctness"

    @staticmethod
    def _ordinal_values(memory_set: Sequence[MemoryItem], subject: str) -> dict[int, str]:
        values: dict[int, str] = {}
        for item in memory_set:
            if isinstance(item, MemoryRecord) and item.ordinal_subject == subject and item.ordinal_value:
                values.setdefault(int(item.ordinal or 0), item.ordinal_value)
                continue
            content = item.content if isinstance(item, MemoryRecord) else str(item)
            for fact in detect_ordinals(content):
                if fact.subject == subject and fact.value:
                    values.setdefault(fact.ordinal, fact.value)
        return values

    def apply(
        self, generated_text: str, memory_set: Sequence[MemoryItem], query: str
    ) -> PrimitiveResult:
        if not memory_set:
            return self._skip(generated_text, "no_memory_context")
        requested = detect_ordinal(query or "")
        if requested is None:
            return self._skip(generated_text, "not_ordinal_query")

        values = self._ordinal_values(memory_set, requested.subject)
        correct = values.get(requested.ordinal)
        if correct is None:
            return self._skip(
                generated_text, "requested_ordinal_not_in_memory",
                subject=requested.subject, ordinal=requested.ordinal,
            )

        wrong = sorted(
            {v for o, v in values.items() if o != requested.ordinal and v.lower() != correct.lower()}
        )
        text = generated_text
        replaced: list[str] = []
        if wrong:
            # One pass, longest first: "DELTA" must not match inside "DELTA-2"
            alternatives = "|".join(re.escape(v) for v in sorted(wrong, key=len, reverse=True))
            replaced = [v for v in wrong if _value_re(re.escape(v)).search(text)]
            text = _value_re(alternatives).sub(lambda _: correct, text)

        details = {
            "subject": requested.subject,
            "ordinal": requested.ordinal,
            "correct_value": correct,
            "replaced_values": replaced,
        }
        injected = False
        if not _value_re(re.escape(correct)).search(text):
            word = ORDINAL_NAMES.get(requested.ordinal, requested.word)
            statement = f"Your {word} {requested.subject} is {correct}."
            text = f"{text.rstrip()}\n\n{statement}" if text.strip() else statement
            injected = True

        if not replaced and not injected:
            return self._skip(generated_text, "layer_one_produced_correct_ordinal", **details)
        reason = "wrong_ordinal_value_substituted" if replaced else "correct_ordinal_value_injected"
        return self._fire(text, reason, **details)


DEFAULT_PRIMITIVES: tuple[type[CorrectionPrimitive], ...] = (
    TemporalArithmeticPrimitive,
    ListCompletenessPrimitive,
    OrdinalCorrectnessPrimitive,
)


def run_correction_layer(
    generated_text: str,
    memory_set: Sequence[MemoryItem],
    query: str,
    primitives: Sequence[CorrectionPrimitive] = (),
) -> CorrectionResult:
    """Run every primitive in order, each on the previous one's output."""
    chain = list(primitives) or [cls() for cls in DEFAULT_PRIMITIVES]
    text = generated_text or ""
    logs: list[PrimitiveLog] = []
    for primitive in chain:
        result = primitive.apply(text, memory_set, query)
        text = result.text
        logs.append(result.log)
        logger.debug(f"{result.log.primitive}: fired={result.log.fired} reason={result.log.reason}")
    return CorrectionResult(text=text, logs=logs)
