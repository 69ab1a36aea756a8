"""Semantic analysis signal used by the category router.

The analyzer reads a text and reports intent, emotional weight, personal
context, urgency, time context and topic entities. It is pattern based and
deterministic; the router treats any exception from it as a missing signal
and scores on keywords alone.
"""

import re
from dataclasses import dataclass, field

from memengine.text import STOPWORDS

INTENT_PATTERNS: dict[str, tuple[float, tuple[re.Pattern, ...]]] = {
    "memory_recall": (0.9, (
        re.compile(r"\b(remember|recall|told you|mentioned|discussed|said before|talked about)\b", re.I),
        re.compile(r"\b(you know|as i said|like i mentioned|previously discussed)\b", re.I),
    )),
    "information_request": (0.7, (
        re.compile(r"\b(what|how|when|where|why|who|which|tell me|show me|explain)\b", re.I),
        re.compile(r"\?"),
        re.compile(r"\b(can you|could you|would you|do you know)\b", re.I),
    )),
    "personal_sharing": (0.8, (
        re.compile(r"\b(my |our |i have|i own|we have|we own|i am|we are)", re.I),
        re.compile(r"\b(personal|private|family)\b", re.I),
    )),
    "problem_solving": (0.85, (
        re.compile(r"\b(problem|issue|trouble|difficulty|challenge|stuck|help|solve|fix)\b", re.I),
        re.compile(r"\b(how do i|how can i|what should i|need help)\b", re.I),
    )),
    "emotional_expression": (0.75, (
        re.compile(r"\b(feel|feeling|felt|emotion|emotional|mood)\b", re.I),
        re.compile(r"\b(happy|sad|angry|worried|excited|frustrated|anxious|stressed)\b", re.I),
    )),
    "decision_making": (0.7, (
        re.compile(r"\b(should i|which|decision|decide|choice|choose|option|options)\b", re.I),
        re.compile(r"\b(thinking about|considering|wondering if|unsure)\b", re.I),
    )),
}

EMOTIONAL_WEIGHTS: dict[str, float] = {
    "stressed": 0.9,
    "anxious": 0.85,
    "worried": 0.8,
    "frustrated": 0.75,
    "angry": 0.8,
    "sad": 0.75,
    "depressed": 0.9,
    "overwhelmed": 0.85,
    "happy": 0.6,
    "excited": 0.6,
    "proud": 0.5,
    "confident": 0.4,
    "confused": 0.5,
    "uncertain": 0.6,
    "determined": 0.4,
}

TOPIC_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("health", re.compile(r"\b(health|medical|doctor|symptom|pain|fitness|exercise|diet)\b", re.I)),
    ("work", re.compile(r"\b(work|job|career|business|office|meeting|project)\b", re.I)),
    ("family", re.compile(
        r"\b(family|spouse|children|parents|relationship|marriage|wife|husband|partner)\b", re.I
    )),
    ("money", re.compile(
        r"\b(money|financial|budget|income|debt|investment|savings|bitcoin|btc|ethereum|eth"
        r"|crypto|cryptocurrency|stock|stocks|market|trading|price)\b",
        re.I,
    )),
    ("home", re.compile(
        r"\b(home|house|apartment|living|lifestyle|vehicle|car|truck|pet|dog|cat|hobby|interest)\b", re.I
    )),
    ("news", re.compile(
        r"\b(news|stories|headlines|current events|breaking|update|latest|weather|forecast"
        r"|temperature|gossip|celebrity|entertainment)\b",
        re.I,
    )),
)

_PERSONAL_RE = re.compile(r"\b(my|our|personal|private|family|i am|i have|we are|we have)\b", re.I)
_MEMORY_REF_RE = re.compile(
    r"\b(remember|recall|told you|mentioned|discussed|said before|talked about)\b", re.I
)
_URGENCY_RE = re.compile(r"\b(urgent|emergency|asap|immediately|critical|important|now|today)\b", re.I)
_IMMEDIATE_RE = re.compile(r"\b(now|today|currently|right now|at the moment)\b", re.I)
_RECENT_RE = re.compile(r"\b(this week|soon|upcoming|lately|recently)\b", re.I)
_FUTURE_RE = re.compile(r"\b(future|someday|eventually|long-term|planning)\b", re.I)


@dataclass
class SemanticAnalysis:
    """Signals extracted from one text.

    Attributes:
        intent: Dominant intent label ("general" when nothing matched)
        intent_confidence: Weight of the dominant intent
        emotional_weight: Strongest emotion weight found, 0.0 to 1.0
        personal_context: Text talks about the user's own life
        memory_reference: Text refers to something said before
        urgency: 0.8 when urgency markers are present, else 0.0
        time_context: "immediate", "recent", "future" or "general"
        topic_entities: Coarse topics (health, work, family, money, home, news)
        keyword_density: Share of meaningful words
    """
    intent: str = "general"
    intent_confidence: float = 0.5
    emotional_weight: float = 0.0
    personal_context: bool = False
    memory_reference: bool = False
    urgency: float = 0.0
    time_context: str = "general"
    topic_entities: set[str] = field(default_factory=set)
    keyword_density: float = 0.0

    @property
    def emotional_tone(self) -> str:
        if self.emotional_weight > 0.6:
            return "high"
        if self.emotional_weight > 0.3:
            return "moderate"
        return "low"


class HeuristicAnalyzer:
    """Pattern-based semantic analyzer."""

    def analyze(self, text: str) -> SemanticAnalysis:
        """Analyze a text into routing signals."""
        lowered = text.lower()
        analysis = SemanticAnalysis()

        best_intent = 0.0
        for intent, (weight, patterns) in INTENT_PATTERNS.items():
            if weight > best_intent and any(p.search(lowered) for p in patterns):
                best_intent = weight
                analysis.intent = intent
                analysis.intent_confidence = weight

        analysis.emotional_weight = max(
            (weight for emotion, weight in EMOTIONAL_WEIGHTS.items() if emotion in lowered),
            default=0.0,
        )
        analysis.personal_context = bool(_PERSONAL_RE.search(lowered))
        analysis.memory_reference = bool(_MEMORY_REF_RE.search(lowered))
        analysis.urgency = 0.8 if _URGENCY_RE.search(lowered) else 0.0

        if _IMMEDIATE_RE.search(lowered):
            analysis.time_context = "immediate"
        elif _RECENT_RE.search(lowered):
            analysis.time_context = "recent"
        elif _FUTURE_RE.search(lowered):
            analysis.time_context = "future"

        analysis.topic_entities = {
            topic for topic, pattern in TOPIC_PATTERNS if pattern.search(lowered)
        }

        tokens = [word for word in lowered.split() if len(word) > 2]
        meaningful = [word for word in tokens if word not in STOPWORDS]
        analysis.keyword_density = len(meaningful) / max(len(tokens), 1)
        return analysis
