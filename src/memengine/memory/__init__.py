"""Memory data types and fact processing for memengine."""

from memengine.memory.types import (
    CategoryProfile,
    EmbeddingStatus,
    Exchange,
    MemoryRecord,
    ReconcileAction,
    ReconcileResult,
    RetrievalCandidate,
    RetrievalResult,
    RoutingDecision,
    ScoreBreakdown,
    StoreResult,
)

__all__ = [
    "CategoryProfile",
    "EmbeddingStatus",
    "Exchange",
    "MemoryRecord",
    "ReconcileAction",
    "ReconcileResult",
    "RetrievalCandidate",
    "RetrievalResult",
    "RoutingDecision",
    "ScoreBreakdown",
    "StoreResult",
]
