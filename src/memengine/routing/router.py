"""Category routing.

CategoryRouter maps any text to exactly one category of the taxonomy with a
confidence and ranked alternates. The scoring itself lives behind the
ClassificationStrategy interface so a domain classifier can replace the
keyword heuristic without touching callers:

- HeuristicStrategy: semantic signal, keywords, patterns and entity
  alignment, followed by content overrides for emergencies and crises
- DomainStrategy: maps an external (domain, confidence, intent) classifier
  onto the taxonomy and falls back to the heuristic when it fails

The router never raises. Any unexpected failure yields a low-confidence
decision for the fallback category, which retrieval compensates for with the
cross-category search.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, Optional

from memengine.config import EngineOptions
from memengine.memory.types import RoutingDecision
from memengine.routing.analysis import HeuristicAnalyzer, SemanticAnalysis
from memengine.routing.taxonomy import CATEGORIES, FALLBACK_CATEGORY

logger = logging.getLogger(__name__)

FINANCIAL_KEYWORDS = (
    "bitcoin", "btc", "ethereum", "eth", "crypto", "cryptocurrency", "stock",
    "stocks", "market", "price", "trading", "investment",
)
NEWS_KEYWORDS = (
    "news", "stories", "headlines", "weather", "forecast", "temperature",
    "current events", "breaking",
)

TOPIC_CATEGORIES: dict[str, tuple[str, ...]] = {
    "health": ("health_wellness", "mental_emotional"),
    "work": ("work_career", "goals_active_current"),
    "family": ("relationships_social", "personal_life_interests"),
    "money": ("money_income_debt", "money_spending_goals", "work_career"),
    "home": ("personal_life_interests", "daily_routines_habits"),
    "news": ("personal_life_interests",),
}

# Topics that make a personal statement relevant to a category
PERSONAL_TOPIC_RELEVANCE: dict[str, tuple[str, ...]] = {
    "personal_life_interests": ("home", "family"),
    "relationships_social": ("family",),
    "work_career": ("work",),
    "health_wellness": ("health",),
    "mental_emotional": ("health",),
    "money_income_debt": ("money",),
    "money_spending_goals": ("money",),
}

EMOTIONAL_BOOSTS = {
    "mental_emotional": 4.0,
    "relationships_social": 2.0,
    "health_wellness": 1.8,
    "work_career": 1.5,
}

PERSONAL_BOOSTS = {
    "personal_life_interests": 2.0,
    "relationships_social": 1.5,
    "daily_routines_habits": 1.0,
    "mental_emotional": 0.5,
}

ENTITY_ALIGNMENT: dict[str, dict[str, float]] = {
    "health": {"health_wellness": 1.0, "mental_emotional": 0.4},
    "work": {"work_career": 1.0, "goals_active_current": 0.3, "tools_tech_workflow": 0.4},
    "family": {"relationships_social": 1.0, "mental_emotional": 0.3, "personal_life_interests": 0.3},
    "money": {"money_income_debt": 0.8, "money_spending_goals": 0.8, "work_career": 0.4},
    "home": {"personal_life_interests": 0.8, "daily_routines_habits": 0.5, "health_wellness": 0.3},
}

DOMAIN_CATEGORY_MAP: dict[str, tuple[str, tuple[str, ...]]] = {
    "technical": ("tools_tech_workflow", ("work_career", "goals_active_current")),
    "business": ("work_career", ("goals_active_current", "money_income_debt")),
    "personal": ("personal_life_interests", ("relationships_social", "daily_routines_habits")),
    "health": ("health_wellness", ("mental_emotional", "daily_routines_habits")),
    "financial": ("money_spending_goals", ("money_income_debt", "work_career")),
    "creative": ("personal_life_interests", ("goals_active_current",)),
    "general": ("personal_life_interests", ("daily_routines_habits",)),
}

_KEYWORD_RES: dict[str, tuple[re.Pattern, ...]] = {
    name: tuple(
        re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)") for keyword in sorted(definition.keywords)
    )
    for name, definition in CATEGORIES.items()
}

# (domain, confidence, intent)
DomainClassifier = Callable[[str], tuple[str, float, str]]


def _contains_any(text: str, terms: tuple[str, ...]) -> bool:
    return any(re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text) for term in terms)


class ClassificationStrategy(ABC):
    """Turns a text into a routing decision."""

    name: str = "base"

    @abstractmethod
    def classify(self, text: str) -> RoutingDecision:
        """Classify text into the taxonomy. May raise; the router guards it."""


class HeuristicStrategy(ClassificationStrategy):
    """Keyword, pattern and semantic-signal scoring over the taxonomy.

    Args:
        options: Engine options carrying the keyword, pattern and semantic weights
        analyzer: Semantic analyzer (default: HeuristicAnalyzer)
    """

    name = "heuristic"

    def __init__(
        self,
        options: Optional[EngineOptions] = None,
        analyzer: Optional[HeuristicAnalyzer] = None,
    ):
        self.options = options or EngineOptions()
        self.analyzer = analyzer or HeuristicAnalyzer()

    def classify(self, text: str) -> RoutingDecision:
        lowered = text.lower().strip()
        signal = "semantic"
        try:
            analysis = self.analyzer.analyze(lowered)
        except Exception as e:
            logger.warning(f"Semantic analysis failed, routing on keywords only: {e}")
            analysis = None
            signal = "keyword_only"

        scores = self.score_categories(lowered, analysis)
        decision = self._decide(scores, analysis)
        decision.signal = signal
        decision = self._apply_overrides(decision, lowered, analysis)

        definition = CATEGORIES[decision.primary_category]
        decision.subcategory = definition.select_subcategory(
            lowered, analysis.emotional_weight if analysis else 0.0
        )
        return decision

    def score_categories(
        self, text: str, analysis: Optional[SemanticAnalysis]
    ) -> dict[str, float]:
        """Score every category for an already lowercased text."""
        has_financial = _contains_any(text, FINANCIAL_KEYWORDS)
        has_news = _contains_any(text, NEWS_KEYWORDS)

        scores: dict[str, float] = {}
        for name, definition in CATEGORIES.items():
            score = 0.0
            if has_financial and name in ("money_spending_goals", "money_income_debt"):
                score += 15.0
            if has_news and name == "personal_life_interests":
                score += 10.0

            if analysis is not None:
                score += self._semantic_boost(name, analysis) * self.options.semantic_weight

            keyword_hits = sum(1 for pattern in _KEYWORD_RES[name] if pattern.search(text))
            score += keyword_hits * self.options.keyword_weight * definition.weight

            pattern_hits = sum(1 for pattern in definition.patterns if pattern.search(text))
            score += pattern_hits * self.options.pattern_weight * definition.weight

            if analysis is not None:
                score += sum(
                    ENTITY_ALIGNMENT.get(topic, {}).get(name, 0.0)
                    for topic in analysis.topic_entities
                )
                if definition.priority == "high" and analysis.urgency > 0.5:
                    score += 1.0

            if keyword_hits > 1:
                score += min(keyword_hits * 0.5, 2.0)

            if analysis is not None:
                score = self._semantic_override(name, analysis, score)

            scores[name] = max(score, 0.0)
        return scores

    @staticmethod
    def _semantic_boost(category: str, analysis: SemanticAnalysis) -> float:
        boost = 0.0
        for topic in analysis.topic_entities:
            if category in TOPIC_CATEGORIES.get(topic, ()):
                boost += 5.0
        if analysis.emotional_weight > 0.6:
            boost += EMOTIONAL_BOOSTS.get(category, 0.0) * analysis.emotional_weight
        if analysis.personal_context:
            boost += PERSONAL_BOOSTS.get(category, 0.0)
        return boost

    @staticmethod
    def _semantic_override(category: str, analysis: SemanticAnalysis, score: float) -> float:
        if analysis.emotional_weight > 0.7 and category == "mental_emotional":
            return 12.0 + analysis.emotional_weight * 3.0
        if analysis.personal_context and analysis.topic_entities:
            relevant = PERSONAL_TOPIC_RELEVANCE.get(category, ())
            if any(topic in relevant for topic in analysis.topic_entities):
                return score + 3.0
        return score

    def _decide(
        self, scores: dict[str, float], analysis: Optional[SemanticAnalysis]
    ) -> RoutingDecision:
        # Sort by score; ties keep taxonomy order so routing is deterministic
        ranked = sorted(scores.items(), key=lambda item: -item[1])
        best_name, best = ranked[0]
        second_name, second = ranked[1] if len(ranked) > 1 else ("", 0.0)

        if best <= 0.0:
            return RoutingDecision(
                primary_category=FALLBACK_CATEGORY,
                confidence=0.2,
                alternates=[name for name, _ in ranked if name != FALLBACK_CATEGORY][:2],
                strategy=self.name,
                reasoning="No category signal found",
            )

        confidence = min(best / 15.0, 0.7)
        confidence += min((best - second) / 8.0, 0.2)
        if analysis is not None:
            confidence += analysis.intent_confidence * 0.1
        if best > second * 1.5:
            confidence += 0.1
        if analysis is not None and analysis.topic_entities:
            confidence += min(len(analysis.topic_entities) * 0.05, 0.1)

        alternates = [name for name, score in ranked[1:3] if score > 0.0]
        return RoutingDecision(
            primary_category=best_name,
            confidence=confidence,
            alternates=alternates,
            strategy=self.name,
            reasoning=f"Primary: {best_name} ({best:.1f}) vs Secondary: {second_name} ({second:.1f})",
        )

    @staticmethod
    def _apply_overrides(
        decision: RoutingDecision, text: str, analysis: Optional[SemanticAnalysis]
    ) -> RoutingDecision:
        if analysis is None:
            analysis = SemanticAnalysis()

        def override(category: str, confidence: float, label: str) -> None:
            if decision.primary_category != category:
                decision.alternates = [decision.primary_category] + [
                    name for name in decision.alternates if name != category
                ][:1]
            decision.primary_category = category
            decision.confidence = max(decision.confidence, confidence)
            decision.override_applied = label
            decision.reasoning += f"; {label} override applied"

        if analysis.urgency > 0.7 and _contains_any(text, ("pain", "emergency", "hospital")):
            if decision.primary_category != "health_wellness":
                override("health_wellness", 0.9, "health emergency")

        if analysis.emotional_weight > 0.8 and _contains_any(
            text, ("crisis", "suicide", "can't take it")
        ):
            if decision.primary_category != "mental_emotional":
                override("mental_emotional", 0.95, "mental health crisis")

        if _contains_any(text, ("broke", "bankruptcy", "can't pay")) and not (
            decision.primary_category.startswith("money_")
        ):
            override("money_income_debt", 0.85, "financial crisis")

        if (
            decision.confidence < 0.4
            and decision.override_applied is None
            and analysis.personal_context
            and analysis.emotional_weight > 0.3
        ):
            override("mental_emotional", 0.5, "personal-emotional")
            decision.confidence = 0.5

        decision.confidence = max(0.2, min(1.0, decision.confidence))
        return decision


class DomainStrategy(ClassificationStrategy):
    """Routes through an external domain classifier.

    The classifier returns (domain, confidence, intent). Unknown domains map
    like "general". When the classifier raises, the heuristic strategy
    decides instead.

    Args:
        classifier: Callable returning (domain, confidence, intent) for a text
        fallback: Strategy used when the classifier fails
    """

    name = "domain"

    def __init__(
        self,
        classifier: DomainClassifier,
        fallback: Optional[ClassificationStrategy] = None,
    ):
        self.classifier = classifier
        self.fallback = fallback or HeuristicStrategy()

    def classify(self, text: str) -> RoutingDecision:
        try:
            domain, domain_confidence, intent = self.classifier(text)
        except Exception as e:
            logger.warning(f"Domain classifier failed, using {self.fallback.name} strategy: {e}")
            return self.fallback.classify(text)

        primary, alternates = DOMAIN_CATEGORY_MAP.get(domain, DOMAIN_CATEGORY_MAP["general"])
        confidence = domain_confidence
        if intent == "problem_solving" and domain == "technical":
            confidence = min(domain_confidence + 0.1, 1.0)
        elif intent == "emotional_expression" and domain == "personal":
            primary = "mental_emotional"
        elif intent == "decision_making" and domain == "business":
            primary = "goals_active_current"

        subcategory = CATEGORIES[primary].select_subcategory(text)
        if intent == "problem_solving" and primary == "tools_tech_workflow":
            subcategory = "Technical Issues"
        elif intent == "problem_solving" and primary == "work_career":
            subcategory = "Work Challenges"
        elif intent == "emotional_expression" and primary == "mental_emotional":
            subcategory = "Emotional State"

        return RoutingDecision(
            primary_category=primary,
            confidence=confidence,
            alternates=[name for name in alternates if name != primary],
            subcategory=subcategory,
            strategy=self.name,
            reasoning=f"Domain: {domain} ({domain_confidence:.3f}) -> {primary}",
        )


class CategoryRouter:
    """Routes texts into the category taxonomy.

    Args:
        strategy: Classification strategy (default: HeuristicStrategy)
        options: Engine options for the default strategy

    Example:
        >>> router = CategoryRouter()
        >>> router.route("I feel so stressed and overwhelmed").primary_category
        'mental_emotional'
    """

    def __init__(
        self,
        strategy: Optional[ClassificationStrategy] = None,
        options: Optional[EngineOptions] = None,
    ):
        self.strategy = strategy or HeuristicStrategy(options)

    def route(self, text: str) -> RoutingDecision:
        """Route text to one category. Never raises."""
        if not text or not isinstance(text, str) or not text.strip():
            return self._fallback_decision("Empty input")
        try:
            decision = self.strategy.classify(text)
        except Exception as e:
            logger.error(f"Routing failed, using fallback category: {e}", exc_info=True)
            return self._fallback_decision(f"Routing error: {e}")

        if decision.primary_category not in CATEGORIES:
            logger.warning(
                f"Strategy {self.strategy.name} returned unknown category "
                f"'{decision.primary_category}', using fallback"
            )
            return self._fallback_decision("Unknown category from strategy")

        logger.debug(
            f"Routed to {decision.primary_category}/{decision.subcategory} "
            f"(confidence={decision.confidence:.2f}, strategy={decision.strategy})"
        )
        return decision

    def _fallback_decision(self, reason: str) -> RoutingDecision:
        return RoutingDecision(
            primary_category=FALLBACK_CATEGORY,
            confidence=0.2,
            alternates=[],
            subcategory=CATEGORIES[FALLBACK_CATEGORY].default_subcategory,
            strategy="fallback",
            reasoning=reason,
        )
