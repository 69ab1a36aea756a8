"""Retrieval scorer and selector.

Given a query, gather the owner's candidate records (primary category,
cross-category fallback, ordinal siblings, nearest vectors), score them with
five weighted signals, apply the explicit-storage and ordinal overrides and
select whole records under the count and token budget.

When the query cannot be embedded or the vector index fails, every
candidate is scored by deterministic keyword overlap alone and ordered with
stable tie-breaks, so repeated calls return the same list.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from memengine.config import EngineOptions
from memengine.embedding.ollama import EmbeddingError
from memengine.memory.ordinals import OrdinalFact, detect_ordinal
from memengine.memory.types import (
    MemoryRecord,
    RetrievalCandidate,
    RetrievalResult,
    RoutingDecision,
    ScoreBreakdown,
)
from memengine.retrieval.fallback import cross_category_search, recent_records
from memengine.retrieval.selection import select_candidates
from memengine.retrieval.signals import (
    combine_signals,
    keyword_match,
    lexical_similarity,
    recency_score,
    usage_score,
)
from memengine.routing.router import CategoryRouter
from memengine.storage.chromadb import VectorStoreError
from memengine.storage.hybrid import HybridStore

logger = logging.getLogger(__name__)

MODE_HYBRID = "hybrid"
MODE_KEYWORD_FALLBACK = "keyword_fallback"


def _rank_key(candidate: RetrievalCandidate) -> tuple:
    # Explicit first, then score, then newest, then id for a total order
    return (
        not candidate.explicit_override,
        -candidate.combined_score,
        -candidate.record.created_at.timestamp(),
        candidate.record.id,
    )


class Retriever:
    """Scores and selects an owner's records for a query.

    Args:
        store: HybridStore holding the records and vectors
        router: CategoryRouter used to route the query
        options: Engine options (weights, thresholds, budgets)
    """

    def __init__(
        self,
        store: HybridStore,
        router: CategoryRouter,
        options: Optional[EngineOptions] = None,
    ):
        self._store = store
        self._router = router
        self._options = options or EngineOptions()

    async def retrieve(
        self,
        owner_id: str,
        query: str,
        now: Optional[datetime] = None,
    ) -> RetrievalResult:
        """Select at most max_memories records within memory_token_budget.

        Args:
            owner_id: Owner whose records are searched
            query: The user's query
            now: Reference time for recency and diversity (default: now)

        Returns:
            RetrievalResult with records, scored candidates, routing and telemetry

        Raises:
            ValueError: If owner_id is empty
            StorageError: If the SQLite store cannot be read
        """
        if not owner_id:
            raise ValueError("Owner ID cannot be empty")
        opts = self._options
        now = now or datetime.now()

        if not query or not query.strip():
            return RetrievalResult(
                telemetry={"retrieval_mode": MODE_HYBRID, "fallback_reason": "empty_query",
                           "candidates_considered": 0, "tokens_used": 0,
                           "injected_memory_ids": []}
            )

        routing = self._router.route(query)
        pool = self._gather_candidates(owner_id, query, routing)
        ordinal = detect_ordinal(query)
        if ordinal is not None:
            for row in self._store.find_by_ordinal_subject(owner_id, ordinal.subject):
                pool.setdefault(row["id"], row)

        similarities, mode, fallback_reason = await self._semantic_similarities(owner_id, query)
        if similarities:
            self._add_vector_hits(pool, similarities, routing)
        elif mode == MODE_KEYWORD_FALLBACK:
            self._add_recent(pool, owner_id, routing)

        candidates = [
            self._score(row, query, routing, ordinal, similarities, mode, now)
            for row in pool.values()
        ]
        candidates.sort(key=_rank_key)

        selected = select_candidates(
            candidates,
            max_records=opts.max_memories,
            token_budget=opts.memory_token_budget,
            recent_window_days=opts.recent_window_days,
            recent_share=opts.recent_share,
            now=now,
        )
        selected_ids = [c.record.id for c in selected]
        if selected_ids:
            self._store.touch_memories(selected_ids)

        telemetry: dict[str, Any] = {
            "routing": routing.to_dict(),
            "candidates_considered": len(candidates),
            "cross_category_used": any(c.off_category for c in candidates),
            "retrieval_mode": mode,
            "fallback_reason": fallback_reason,
            "tokens_used": sum(c.record.token_count for c in selected),
            "injected_memory_ids": selected_ids,
            "ordinal_adjustments": {
                c.record.id: c.ordinal_adjustment for c in candidates if c.ordinal_adjustment
            },
            "score_breakdowns": {
                c.record.id: {**c.breakdown.to_dict(), "combined": round(c.combined_score, 4)}
                for c in selected
            },
        }
        logger.info(
            f"Retrieved {len(selected)}/{len(candidates)} memories for owner {owner_id} "
            f"(mode={mode}, category={routing.primary_category}, "
            f"tokens={telemetry['tokens_used']})"
        )
        return RetrievalResult(
            records=[c.record for c in selected],
            candidates=selected,
            routing=routing,
            telemetry=telemetry,
        )

    def _gather_candidates(
        self, owner_id: str, query: str, routing: RoutingDecision
    ) -> dict[str, dict[str, Any]]:
        opts = self._options
        pool: dict[str, dict[str, Any]] = {}
        for row in self._store.list_memories(
            owner_id,
            category=routing.primary_category,
            current_only=True,
            limit=opts.primary_candidate_limit,
        ):
            pool[row["id"]] = row

        if routing.confidence < opts.routing_confidence_cutoff or len(pool) < opts.min_primary_candidates:
            logger.debug(
                f"Cross-category fallback (confidence={routing.confidence:.2f}, "
                f"primary candidates={len(pool)})"
            )
            hits = cross_category_search(
                self._store, owner_id, query, routing.primary_category, opts
            )
            for row in hits:
                pool.setdefault(row["id"], row)
            if not hits:
                self._add_recent(pool, owner_id, routing)
        return pool

    def _add_recent(
        self, pool: dict[str, dict[str, Any]], owner_id: str, routing: RoutingDecision
    ) -> None:
        for row in recent_records(self._store, owner_id, routing.primary_category, self._options):
            pool.setdefault(row["id"], row)

    async def _semantic_similarities(
        self, owner_id: str, query: str
    ) -> tuple[Optional[dict[str, float]], str, Optional[str]]:
        try:
            vector = await self._store.embed_query(query, timeout=self._options.embedding_timeout)
        except EmbeddingError as e:
            logger.warning(f"Query embedding unavailable, using keyword fallback: {e}")
            return None, MODE_KEYWORD_FALLBACK, f"embedding_unavailable: {e}"
        try:
            similarities = self._store.vector_similarities(
                owner_id, vector, n_results=self._options.vector_candidates
            )
        except VectorStoreError as e:
            logger.warning(f"Vector index unavailable, using keyword fallback: {e}")
            return None, MODE_KEYWORD_FALLBACK, f"vector_index_unavailable: {e}"
        return similarities, MODE_HYBRID, None

    def _add_vector_hits(
        self,
        pool: dict[str, dict[str, Any]],
        similarities: dict[str, float],
        routing: RoutingDecision,
    ) -> None:
        wanted = [
            memory_id
            for memory_id, similarity in similarities.items()
            if memory_id not in pool and similarity >= self._options.min_semantic_similarity
        ]
        for row in self._store.get_memories(wanted):
            if not row.get("is_current", True):
                continue
            row["off_category"] = row["category"] != routing.primary_category
            pool[row["id"]] = row

    def _score(
        self,
        row: dict[str, Any],
        query: str,
        routing: RoutingDecision,
        ordinal: Optional[OrdinalFact],
        similarities: Optional[dict[str, float]],
        mode: str,
        now: datetime,
    ) -> RetrievalCandidate:
        opts = self._options
        record = MemoryRecord.from_row(row)
        off_category = bool(row.get("off_category"))

        if mode == MODE_KEYWORD_FALLBACK or similarities is None:
            keyword = keyword_match(query, record.content)
            breakdown = ScoreBreakdown(keyword=keyword, semantic_source="none")
            score = keyword
        else:
            if record.id in similarities:
                semantic, source = similarities[record.id], "embedding"
            else:
                semantic, source = lexical_similarity(query, record.content), "lexical"
            breakdown = ScoreBreakdown(
                semantic=semantic,
                keyword=keyword_match(query, record.content),
                recency=recency_score(record.created_at, record.last_accessed_at, now),
                importance=record.relevance_score,
                usage=usage_score(record.usage_frequency),
                semantic_source=source,
            )
            score = combine_signals(breakdown, opts.weights)

        if off_category:
            score *= opts.off_category_penalty

        adjustment = 0.0
        if ordinal is not None and record.ordinal_subject == ordinal.subject:
            if record.ordinal == ordinal.ordinal:
                adjustment = opts.ordinal_match_boost
            else:
                adjustment = -opts.ordinal_sibling_penalty
            score += adjustment

        explicit = record.is_explicit and record.category == routing.primary_category
        if explicit:
            score = max(score, opts.explicit_override_score)

        return RetrievalCandidate(
            record=record,
            breakdown=breakdown,
            combined_score=score,
            off_category=off_category,
            ordinal_adjustment=adjustment,
            explicit_override=explicit,
        )
