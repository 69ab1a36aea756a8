"""The fixed category taxonomy.

Eleven life categories, each with a keyword set, regex patterns, a weight,
a priority and a token capacity. Subcategories are chosen by ordered term
rules with a per-category default.
"""

import re
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CategoryDefinition:
    """Routing vocabulary for one category."""
    name: str
    keywords: frozenset[str]
    patterns: tuple[re.Pattern, ...]
    priority: str = "medium"
    weight: float = 1.0
    token_capacity: int = 50000
    default_subcategory: str = "General"
    subcategory_rules: tuple[tuple[tuple[str, ...], str], ...] = field(default=())

    def select_subcategory(self, text: str, emotional_weight: float = 0.0) -> str:
        """Pick a subcategory from the first rule whose terms occur in text."""
        lowered = text.lower()
        if self.name == "mental_emotional" and emotional_weight > 0.7:
            return "High Emotional"
        for terms, label in self.subcategory_rules:
            if any(term in lowered for term in terms):
                return label
        return self.default_subcategory


def _patterns(*sources: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


CATEGORIES: dict[str, CategoryDefinition] = {
    definition.name: definition
    for definition in (
        CategoryDefinition(
            name="mental_emotional",
            keywords=frozenset({
                "stress", "stressed", "anxious", "anxiety", "worried", "worry",
                "feel", "feeling", "felt", "emotion", "emotional", "mood", "mental",
                "psychology", "therapy", "counseling", "identity", "self-talk",
                "mindset", "attitude", "perspective", "overwhelmed", "depressed",
                "depression", "bipolar", "panic", "fear", "confidence", "self-esteem",
            }),
            patterns=_patterns(
                r"\b(i feel|feeling|stressed|worried|anxious|emotional|mood|mental health|self-talk|overwhelmed)\b",
                r"\b(therapy|counseling|psychology|mindset|attitude|perspective|identity)\b",
                r"\b(depressed|depression|panic|fear|confidence|self-esteem|self-worth)\b",
            ),
            priority="high",
            default_subcategory="General Emotional",
            subcategory_rules=(
                (("therapy", "counseling"), "Professional Support"),
                (("stress", "overwhelmed"), "Stress Management"),
                (("confidence", "self-esteem"), "Self-Worth"),
            ),
        ),
        CategoryDefinition(
            name="health_wellness",
            keywords=frozenset({
                "health", "healthy", "medical", "doctor", "physician", "symptom",
                "symptoms", "pain", "illness", "sick", "disease", "medication",
                "medicine", "treatment", "diagnosis", "fitness", "exercise",
                "workout", "gym", "diet", "nutrition", "food", "eating", "sleep",
                "sleeping", "tired", "fatigue", "energy", "hospital", "clinic",
                "allergy", "allergic",
            }),
            patterns=_patterns(
                r"\b(health|medical|doctor|symptom|pain|illness|medication|fitness|exercise)\b",
                r"\b(diet|nutrition|sleep|energy|hospital|clinic|treatment|diagnosis)\b",
                r"\b(workout|gym|physical|body|weight|wellness|allerg(y|ic))\b",
            ),
            priority="high",
            default_subcategory="General Health",
            subcategory_rules=(
                (("doctor", "medical"), "Medical Care"),
                (("exercise", "fitness"), "Physical Activity"),
                (("diet", "nutrition"), "Nutrition"),
                (("sleep", "tired"), "Sleep Health"),
            ),
        ),
        CategoryDefinition(
            name="relationships_social",
            keywords=frozenset({
                "family", "spouse", "husband", "wife", "partner", "relationship",
                "marriage", "married", "boyfriend", "girlfriend", "children", "child",
                "kids", "son", "daughter", "parents", "mother", "father", "mom", "dad",
                "friend", "friends", "social", "friendship", "colleague", "coworker",
                "conflict", "argument", "communication", "love", "dating", "divorce",
                "breakup", "reunion", "pets", "pet", "dog", "cat", "contacts",
            }),
            patterns=_patterns(
                r"\b(family|spouse|husband|wife|partner|relationship|marriage|children|kids)\b",
                r"\b(parents|mother|father|mom|dad|friend|social|dating|love)\b",
                r"\b(conflict|argument|communication|divorce|breakup|pets|pet|contacts)\b",
            ),
            priority="high",
            default_subcategory="General Social",
            subcategory_rules=(
                (("family", "parents"), "Family Relations"),
                (("partner", "spouse"), "Romantic Relations"),
                (("friend", "social"), "Social Circle"),
                (("colleague",), "Professional Relations"),
            ),
        ),
        CategoryDefinition(
            name="work_career",
            keywords=frozenset({
                "work", "working", "worked", "job", "career", "profession", "business",
                "company", "corporation", "office", "workplace", "project", "meeting",
                "boss", "manager", "supervisor", "employee", "colleague", "coworker",
                "team", "department", "salary", "wage", "pay", "promotion",
                "performance", "deadline", "client", "customer", "interview",
                "employer",
            }),
            patterns=_patterns(
                r"\b(work|worked|job|career|business|company|office|project|meeting|boss)\b",
                r"\b(employee|colleague|team|salary|promotion|performance|deadline|client)\b",
                r"\b(interview|workplace|profession|manager|supervisor|employer)\b",
            ),
            default_subcategory="General Work",
            subcategory_rules=(
                (("project", "task"), "Current Projects"),
                (("promotion", "career"), "Career Development"),
                (("team", "colleague"), "Team Dynamics"),
                (("interview", "job search"), "Job Search"),
            ),
        ),
        CategoryDefinition(
            name="money_income_debt",
            keywords=frozenset({
                "income", "salary", "wage", "pay", "paycheck", "earnings", "debt",
                "loan", "loans", "credit", "mortgage", "payment", "payments", "bill",
                "bills", "owe", "owing", "financial crisis", "money problems",
                "broke", "bankruptcy", "foreclosure",
            }),
            patterns=_patterns(
                r"\b(income|salary|wage|pay|paycheck|earnings|debt|loan|credit)\b",
                r"\b(mortgage|payment|bill|owe|financial crisis|money problems|broke)\b",
                r"\b(bankruptcy|foreclosure|financial trouble)\b",
            ),
            priority="high",
            default_subcategory="Financial Pressure",
            subcategory_rules=(
                (("debt", "loan"), "Debt Management"),
                (("salary", "income"), "Income Issues"),
                (("bill", "payment"), "Payment Obligations"),
            ),
        ),
        CategoryDefinition(
            name="money_spending_goals",
            keywords=frozenset({
                "budget", "budgeting", "spending", "spend", "purchase", "buy",
                "buying", "bought", "savings", "save", "saving", "financial goals",
                "investment", "investing", "stocks", "portfolio", "retirement",
                "wealth", "money management", "financial planning", "emergency fund",
            }),
            patterns=_patterns(
                r"\b(budget|spending|purchase|buy|bought|savings|save|financial goals|investment)\b",
                r"\b(investing|stocks|portfolio|retirement|wealth|money management)\b",
                r"\b(financial planning|emergency fund|budgeting)\b",
            ),
            default_subcategory="Financial Goals",
            subcategory_rules=(
                (("budget", "spending"), "Budget Planning"),
                (("investment", "stocks"), "Investment Strategy"),
                (("save", "savings"), "Savings Goals"),
                (("retirement",), "Retirement Planning"),
            ),
        ),
        CategoryDefinition(
            name="goals_active_current",
            keywords=frozenset({
                "goal", "goals", "current goal", "objective", "target", "aim",
                "working on", "trying to", "project", "task", "deadline", "this week",
                "this month", "priority", "focus", "achievement", "accomplish",
                "complete", "finish",
            }),
            patterns=_patterns(
                r"\b(goal|goals|current goal|objective|target|working on|trying to)\b",
                r"\b(this week|this month|priority|focus|achievement|accomplish)\b",
                r"\b(complete|finish|deadline|task|project)\b",
            ),
            default_subcategory="Current Focus",
            subcategory_rules=(
                (("this week", "this month"), "Short-term Goals"),
                (("project", "task"), "Project Goals"),
            ),
        ),
        CategoryDefinition(
            name="goals_future_dreams",
            keywords=frozenset({
                "dream", "dreams", "someday", "future", "long-term", "vision",
                "aspiration", "aspirations", "bucket list", "hope", "wish",
                "want to", "plan to", "eventually", "retirement", "legacy",
                "life goals", "ambition",
            }),
            patterns=_patterns(
                r"\b(dream|someday|future|long-term|vision|aspiration|bucket list)\b",
                r"\b(hope|wish|want to|plan to|eventually|retirement|legacy)\b",
                r"\b(life goals|ambition|life dream|future plan)\b",
            ),
            priority="low",
            default_subcategory="Future Aspirations",
            subcategory_rules=(
                (("dream", "vision"), "Life Dreams"),
                (("retirement", "legacy"), "Long-term Vision"),
                (("travel", "bucket list"), "Experience Goals"),
            ),
        ),
        CategoryDefinition(
            name="tools_tech_workflow",
            keywords=frozenset({
                "software", "app", "application", "tool", "tools", "technology",
                "tech", "system", "platform", "website", "digital", "online",
                "computer", "laptop", "phone", "workflow", "process", "automation",
                "productivity", "efficiency", "program", "code", "password",
            }),
            patterns=_patterns(
                r"\b(software|app|tool|technology|system|platform|website|digital)\b",
                r"\b(computer|laptop|phone|workflow|automation|productivity|efficiency)\b",
                r"\b(program|application|online|process|code|password)\b",
            ),
            priority="low",
            default_subcategory="Digital Tools",
            subcategory_rules=(
                (("software", "app"), "Software Tools"),
                (("workflow", "productivity"), "Productivity Systems"),
                (("problem", "not working"), "Tech Issues"),
            ),
        ),
        CategoryDefinition(
            name="daily_routines_habits",
            keywords=frozenset({
                "routine", "routines", "habit", "habits", "daily", "morning",
                "evening", "night", "schedule", "consistency", "regular",
                "every day", "weekly", "pattern", "ritual", "practice", "discipline",
                "structure", "organization",
            }),
            patterns=_patterns(
                r"\b(routine|habit|daily|morning|evening|schedule|consistency)\b",
                r"\b(regular|every day|weekly|pattern|ritual|practice|discipline)\b",
                r"\b(structure|organization|time management)\b",
            ),
            default_subcategory="Routine Management",
            subcategory_rules=(
                (("morning", "evening"), "Daily Schedule"),
                (("habit", "routine"), "Habit Formation"),
                (("consistency", "discipline"), "Consistency Building"),
            ),
        ),
        CategoryDefinition(
            name="personal_life_interests",
            keywords=frozenset({
                "home", "house", "apartment", "living", "lifestyle", "personal",
                "hobby", "hobbies", "interest", "interests", "entertainment", "fun",
                "leisure", "gaming", "games", "creative", "art", "music", "reading",
                "books", "movies", "tv", "travel", "vacation", "sports", "cooking",
                "food", "garden", "gardening", "car", "vehicle", "truck", "drive",
                "drives", "color", "colour", "favorite", "favourite",
            }),
            patterns=_patterns(
                r"\b(home|house|apartment|lifestyle|hobby|interest|entertainment|fun)\b",
                r"\b(gaming|creative|art|music|reading|movies|travel|vacation|sports)\b",
                r"\b(cooking|garden|personal|leisure|activity|car|vehicle|drives?)\b",
            ),
            priority="low",
            default_subcategory="Lifestyle",
            subcategory_rules=(
                (("hobby", "interest"), "Personal Interests"),
                (("home", "house"), "Home Life"),
                (("entertainment", "fun"), "Entertainment"),
                (("travel", "vacation"), "Travel Experiences"),
            ),
        ),
    )
}

CATEGORY_NAMES: tuple[str, ...] = tuple(CATEGORIES)

FALLBACK_CATEGORY = "personal_life_interests"


def get_category(name: str) -> Optional[CategoryDefinition]:
    """Look up a category definition by name."""
    return CATEGORIES.get(name)


def is_valid_category(name: str) -> bool:
    return name in CATEGORIES
