"""Core data types for the memory engine.

This module defines the data structures used throughout memengine:
- MemoryRecord: a stored fact with routing, supersession and embedding state
- EmbeddingStatus: monotonic embedding lifecycle of a record
- CategoryProfile: token accounting for one taxonomy category
- RoutingDecision: output of the category router
- ScoreBreakdown / RetrievalCandidate: per-record retrieval scoring
- ReconcileAction / ReconcileResult: outcome of deduplication and supersession
- Exchange / StoreResult / RetrievalResult: entry point inputs and outputs
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class EmbeddingStatus(Enum):
    """Embedding lifecycle of a record.

    Transitions are monotonic: a record starts PENDING and moves once to
    READY or FAILED. Nothing ever returns to PENDING.
    """
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"

    def can_transition_to(self, target: "EmbeddingStatus") -> bool:
        """Check whether moving from this status to target is allowed."""
        return self is EmbeddingStatus.PENDING and target is not EmbeddingStatus.PENDING


class ReconcileAction(Enum):
    """What the reconcile step did with a new fact."""
    INSERT = "insert"
    BOOST = "boost"
    SUPERSEDE = "supersede"
    SKIPPED = "skipped"


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(float(value))


@dataclass
class MemoryRecord:
    """A durable fact stored for one owner.

    Attributes:
        id: Unique identifier for the record
        owner_id: Owner (user) the fact belongs to
        category: Taxonomy category the fact was routed to
        content: The compressed fact text (immutable after creation)
        token_count: Estimated tokens of content
        subcategory: Optional finer label inside the category
        relevance_score: Stored importance from 0.0 to 1.0
        usage_frequency: Dedup and retrieval hits
        created_at: When the record was created
        last_accessed_at: When the record was last boosted or retrieved
        is_current: False once superseded (records are never hard-deleted)
        superseded_by: ID of the record that replaced this one
        superseded_at: When the record was superseded
        fact_fingerprint: Canonical attribute key such as "user_salary"
        fingerprint_confidence: Confidence of the fingerprint detection
        embedding_status: Embedding lifecycle state
        embedding_vector: Embedding, when loaded from the vector index
        metadata: Explicit-storage flag, ordinal tags, anchor keys and
            compression statistics

    Raises:
        ValueError: If relevance is out of range or content is empty
    """
    id: str
    owner_id: str
    category: str
    content: str
    token_count: int = 0
    subcategory: Optional[str] = None
    relevance_score: float = 0.5
    usage_frequency: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    last_accessed_at: datetime = field(default_factory=datetime.now)
    is_current: bool = True
    superseded_by: Optional[str] = None
    superseded_at: Optional[datetime] = None
    fact_fingerprint: Optional[str] = None
    fingerprint_confidence: Optional[float] = None
    embedding_status: EmbeddingStatus = EmbeddingStatus.PENDING
    embedding_vector: Optional[list[float]] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate record fields after initialization."""
        if not self.content or not self.content.strip():
            raise ValueError("Memory content cannot be empty")
        if not 0.0 <= self.relevance_score <= 1.0:
            raise ValueError(
                f"Relevance must be between 0.0 and 1.0, got {self.relevance_score}"
            )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "MemoryRecord":
        """Build a record from a storage row dictionary."""
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            category=row["category"],
            content=row["content"],
            token_count=row.get("token_count") or 0,
            subcategory=row.get("subcategory"),
            relevance_score=row.get("relevance_score", 0.5),
            usage_frequency=row.get("usage_frequency") or 0,
            created_at=_to_datetime(row.get("created_at")) or datetime.now(),
            last_accessed_at=_to_datetime(row.get("last_accessed_at")) or datetime.now(),
            is_current=bool(row.get("is_current", 1)),
            superseded_by=row.get("superseded_by"),
            superseded_at=_to_datetime(row.get("superseded_at")),
            fact_fingerprint=row.get("fact_fingerprint"),
            fingerprint_confidence=row.get("fingerprint_confidence"),
            embedding_status=EmbeddingStatus(row.get("embedding_status") or "pending"),
            metadata=row.get("metadata") or {},
        )

    @property
    def is_explicit(self) -> bool:
        """Whether the user explicitly asked for this fact to be remembered."""
        return bool(self.metadata.get("explicit_storage_request"))

    @property
    def ordinal(self) -> Optional[int]:
        return self.metadata.get("ordinal")

    @property
    def ordinal_subject(self) -> Optional[str]:
        return self.metadata.get("ordinal_subject")

    @property
    def ordinal_value(self) -> Optional[str]:
        return self.metadata.get("ordinal_value")

    @property
    def anchor_keys(self) -> list[str]:
        return list(self.metadata.get("anchor_keys") or [])

    @property
    def supersedes_id(self) -> Optional[str]:
        return self.metadata.get("supersedes_id")


@dataclass
class CategoryProfile:
    """Token accounting for one category of one owner."""
    name: str
    token_capacity: int = 50000
    current_token_usage: int = 0

    @property
    def over_capacity(self) -> bool:
        return self.current_token_usage > self.token_capacity


@dataclass
class RoutingDecision:
    """Result of routing a text into the category taxonomy.

    Attributes:
        primary_category: Best category (never "unknown")
        confidence: Routing confidence, clamped to [0.2, 1.0]
        alternates: Other plausible categories, best first
        subcategory: Finer label for the primary category
        strategy: Name of the classification strategy that decided
        signal: "semantic" or "keyword_only" when the analyzer failed
        reasoning: Short human-readable explanation
        override_applied: Name of the content override, if any fired
    """
    primary_category: str
    confidence: float
    alternates: list[str] = field(default_factory=list)
    subcategory: Optional[str] = None
    strategy: str = "heuristic"
    signal: str = "semantic"
    reasoning: str = ""
    override_applied: Optional[str] = None

    def __post_init__(self) -> None:
        self.confidence = max(0.2, min(1.0, self.confidence))

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_category": self.primary_category,
            "confidence": round(self.confidence, 3),
            "alternates": list(self.alternates),
            "subcategory": self.subcategory,
            "strategy": self.strategy,
            "signal": self.signal,
            "reasoning": self.reasoning,
            "override_applied": self.override_applied,
        }


@dataclass
class ScoreBreakdown:
    """Individual retrieval signals of one candidate, each in [0, 1]."""
    semantic: float = 0.0
    keyword: float = 0.0
    recency: float = 0.0
    importance: float = 0.0
    usage: float = 0.0
    semantic_source: str = "lexical"

    def to_dict(self) -> dict[str, Any]:
        return {
            "semantic": round(self.semantic, 4),
            "keyword": round(self.keyword, 4),
            "recency": round(self.recency, 4),
            "importance": round(self.importance, 4),
            "usage": round(self.usage, 4),
            "semantic_source": self.semantic_source,
        }


@dataclass
class RetrievalCandidate:
    """A record under consideration for injection into the context.

    Attributes:
        record: The candidate record
        breakdown: Signal values used for scoring
        combined_score: Final score after penalties and overrides
        off_category: Found by the cross-category fallback search
        ordinal_adjustment: Boost or penalty applied for ordinal queries
        explicit_override: Ranked first because it was explicitly stored
    """
    record: MemoryRecord
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    combined_score: float = 0.0
    off_category: bool = False
    ordinal_adjustment: float = 0.0
    explicit_override: bool = False


@dataclass
class ReconcileResult:
    """Outcome of reconciling a new fact against the owner's records.

    Attributes:
        action: INSERT, BOOST or SUPERSEDE
        memory_id: New record ID, or the boosted record's ID
        superseded_ids: Records marked not-current by this write
        similarity: Lexical similarity of the best duplicate candidate
        attempts: Transaction attempts used (retries on contention)
    """
    action: ReconcileAction
    memory_id: str
    superseded_ids: list[str] = field(default_factory=list)
    similarity: float = 0.0
    attempts: int = 1


@dataclass
class Exchange:
    """One user turn and the assistant reply it produced."""
    user_text: str
    reply_text: str = ""


@dataclass
class StoreResult:
    """Result of store_fact.

    Attributes:
        success: Whether the fact is durably represented in storage
        action: What reconcile did (SKIPPED for rejected boilerplate)
        memory_id: ID of the inserted or boosted record
        category: Category the fact was routed to
        routing_confidence: Router confidence for the category
        content: Stored fact text
        superseded_ids: Records replaced by this fact
        compressed: Whether the summarizer produced the fact
        embedding_status: Embedding state right after the store
        reason: Why the fact was skipped, when it was
    """
    success: bool
    action: ReconcileAction
    memory_id: Optional[str] = None
    category: Optional[str] = None
    routing_confidence: Optional[float] = None
    content: Optional[str] = None
    superseded_ids: list[str] = field(default_factory=list)
    compressed: bool = False
    embedding_status: Optional[EmbeddingStatus] = None
    reason: Optional[str] = None


@dataclass
class RetrievalResult:
    """Result of retrieve_context.

    Attributes:
        records: Selected records in rank order
        candidates: Scored candidates for the selected records
        routing: Routing decision for the query
        context: Budget-enforced context for the response generator
        telemetry: Retrieval mode, fallback reasons, token usage and ids
    """
    records: list[MemoryRecord] = field(default_factory=list)
    candidates: list[RetrievalCandidate] = field(default_factory=list)
    routing: Optional[RoutingDecision] = None
    context: Any = None
    telemetry: dict[str, Any] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return self.telemetry.get("retrieval_mode") == "keyword_fallback"
