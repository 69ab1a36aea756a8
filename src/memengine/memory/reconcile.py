"""Deduplication and supersession of new facts.

Every new fact is reconciled against the owner's current records before it
is written:

- A record stating the same fingerprinted attribute with a different value is
  superseded: it stays in storage with is_current=0 and a link to the new
  record, which carries supersedes_id in its metadata.
- A lexically near-identical record (mutual term coverage >= threshold) is a
  duplicate: it is boosted instead of inserting a second copy, unless the new
  fact brings a high-entropy identifier or a different ordinal the old one
  lacks.
- Anything else is inserted.

The read-decide-write sequence runs in one BEGIN IMMEDIATE transaction under
an asyncio lock keyed by (owner, fingerprint), or by (owner, category) for
facts without a fingerprint. A partial unique index backs the "one current
record per fingerprint" rule; conflicts and lock contention retry the whole
sequence.
"""

import asyncio
import logging
import weakref
from typing import Any, Optional

from memengine.config import EngineOptions
from memengine.memory.compression import HIGH_ENTROPY_RE
from memengine.memory.fingerprint import (
    FingerprintMatch,
    extract_values,
    normalize_value,
    values_conflict,
)
from memengine.memory.types import ReconcileAction, ReconcileResult
from memengine.storage.hybrid import HybridStore
from memengine.storage.sqlite import (
    FingerprintConflictError,
    SQLiteStore,
    StoreBusyError,
    build_match_query,
    generate_memory_id,
)
from memengine.text import content_terms
from memengine.tokens import estimate_tokens

logger = logging.getLogger(__name__)


def lexical_similarity(a: str, b: str) -> float:
    """Mutual term coverage of two texts in [0, 1].

    The product of the share of a's terms found in b and the share of b's
    terms found in a. Identical term sets score 1.0; a short fact fully
    contained in a long one scores low.
    """
    terms_a = content_terms(a)
    terms_b = content_terms(b)
    if not terms_a or not terms_b:
        return 0.0
    shared = len(terms_a & terms_b)
    return (shared / len(terms_a)) * (shared / len(terms_b))


def should_prevent_merge(new_fact: str, existing_fact: str) -> bool:
    """True when the new fact carries an identifier the existing one lacks."""
    existing = existing_fact.lower()
    for match in HIGH_ENTROPY_RE.finditer(new_fact):
        if match.group(0).lower() not in existing:
            return True
    return False


def _holder_values(pattern_id: str, holder: dict[str, Any]) -> set[str]:
    stored = (holder.get("metadata") or {}).get("fingerprint_values")
    if stored:
        return set(stored)
    return extract_values(pattern_id, holder["content"])


def _ordinal_conflict(metadata: dict[str, Any], existing: dict[str, Any]) -> bool:
    new_ordinal = metadata.get("ordinal")
    old_ordinal = (existing.get("metadata") or {}).get("ordinal")
    return new_ordinal is not None and old_ordinal is not None and new_ordinal != old_ordinal


class Reconciler:
    """Decides whether a new fact is new, a duplicate or a replacement.

    Args:
        store: HybridStore whose SQLite store is the source of truth
        options: Engine options (thresholds, retry count)
    """

    def __init__(self, store: HybridStore, options: Optional[EngineOptions] = None):
        self._store = store
        self._options = options or EngineOptions()
        # Entries vanish once no coroutine holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, owner_id: str, key: str) -> asyncio.Lock:
        lock = self._locks.get((owner_id, key))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[(owner_id, key)] = lock
        return lock

    async def reconcile(
        self,
        owner_id: str,
        category: str,
        fact: str,
        subcategory: Optional[str] = None,
        relevance_score: float = 0.5,
        metadata: Optional[dict[str, Any]] = None,
        fingerprint: Optional[FingerprintMatch] = None,
    ) -> ReconcileResult:
        """Insert, boost or supersede for one compressed fact.

        Args:
            owner_id: Owner of the fact
            category: Category the fact was routed to
            fact: Compressed fact text
            subcategory: Optional subcategory label
            relevance_score: Relevance for a newly inserted record
            metadata: Metadata for a newly inserted record
            fingerprint: Fingerprint detected on the fact, if any

        Returns:
            ReconcileResult describing the action taken

        Raises:
            SQLiteStoreError: If the write fails, or contention persists after
                all retries
        """
        metadata = dict(metadata or {})
        if fingerprint is not None and fingerprint.fingerprint:
            lock_key = f"fingerprint:{fingerprint.fingerprint}"
        else:
            lock_key = f"category:{category}"

        max_attempts = self._options.reconcile_max_attempts
        async with self._lock_for(owner_id, lock_key):
            for attempt in range(1, max_attempts + 1):
                try:
                    with self._store.sqlite.transaction() as sqlite:
                        result = self._reconcile_once(
                            sqlite, owner_id, category, fact, subcategory,
                            relevance_score, metadata, fingerprint,
                        )
                except (StoreBusyError, FingerprintConflictError) as e:
                    if attempt == max_attempts:
                        raise
                    delay = 0.05 * (2 ** (attempt - 1))
                    logger.warning(
                        f"Reconcile conflict for owner {owner_id} "
                        f"(attempt {attempt}/{max_attempts}), retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                    continue

                result.attempts = attempt
                self._log_result(owner_id, category, result)
                if result.superseded_ids:
                    self._store.mark_superseded_in_index(result.superseded_ids)
                return result

        raise RuntimeError("unreachable")  # loop always returns or raises

    def _reconcile_once(
        self,
        sqlite: SQLiteStore,
        owner_id: str,
        category: str,
        fact: str,
        subcategory: Optional[str],
        relevance_score: float,
        metadata: dict[str, Any],
        fingerprint: Optional[FingerprintMatch],
    ) -> ReconcileResult:
        opts = self._options
        claim_fingerprint = False

        if fingerprint is not None and fingerprint.fingerprint:
            metadata["fingerprint_detected"] = fingerprint.fingerprint
            metadata["fingerprint_method"] = fingerprint.method

        # Only a captured value may claim or replace the current slot
        if (
            fingerprint is not None
            and fingerprint.fingerprint
            and fingerprint.values
            and fingerprint.confidence >= opts.supersession_min_confidence
        ):
            new_values = {normalize_value(v) for v in fingerprint.values}
            metadata["fingerprint_values"] = sorted(new_values)
            holders = sqlite.find_current_by_fingerprint(owner_id, fingerprint.fingerprint)
            if not holders:
                claim_fingerprint = True
            else:
                holder = holders[0]
                old_values = _holder_values(fingerprint.fingerprint, holder)
                if values_conflict(fingerprint.fingerprint, old_values, new_values):
                    return self._supersede(
                        sqlite, holder, owner_id, category, fact, subcategory,
                        relevance_score, metadata, fingerprint,
                    )
                if new_values == old_values:
                    # Same value restated
                    sqlite.boost_memory(holder["id"], opts.dedup_relevance_boost)
                    return ReconcileResult(
                        action=ReconcileAction.BOOST,
                        memory_id=holder["id"],
                        similarity=lexical_similarity(fact, holder["content"]),
                    )

        best, best_similarity = self._best_duplicate(sqlite, owner_id, category, fact, metadata)
        if best is not None and best_similarity >= opts.duplicate_threshold:
            sqlite.boost_memory(best["id"], opts.dedup_relevance_boost)
            return ReconcileResult(
                action=ReconcileAction.BOOST,
                memory_id=best["id"],
                similarity=best_similarity,
            )

        memory_id = sqlite.add_memory(
            owner_id=owner_id,
            category=category,
            content=fact,
            token_count=estimate_tokens(fact),
            subcategory=subcategory,
            relevance_score=relevance_score,
            metadata=metadata,
            fact_fingerprint=fingerprint.fingerprint if claim_fingerprint and fingerprint else None,
            fingerprint_confidence=fingerprint.confidence if claim_fingerprint and fingerprint else None,
        )
        return ReconcileResult(
            action=ReconcileAction.INSERT,
            memory_id=memory_id,
            similarity=best_similarity,
        )

    def _supersede(
        self,
        sqlite: SQLiteStore,
        holder: dict[str, Any],
        owner_id: str,
        category: str,
        fact: str,
        subcategory: Optional[str],
        relevance_score: float,
        metadata: dict[str, Any],
        fingerprint: FingerprintMatch,
    ) -> ReconcileResult:
        new_id = generate_memory_id()
        metadata["supersedes_id"] = holder["id"]
        # Old record must leave the current slot before the new one takes it
        sqlite.supersede_memories([holder["id"]], new_id)
        sqlite.add_memory(
            owner_id=owner_id,
            category=category,
            content=fact,
            token_count=estimate_tokens(fact),
            subcategory=subcategory,
            relevance_score=relevance_score,
            metadata=metadata,
            fact_fingerprint=fingerprint.fingerprint,
            fingerprint_confidence=fingerprint.confidence,
            memory_id=new_id,
        )
        return ReconcileResult(
            action=ReconcileAction.SUPERSEDE,
            memory_id=new_id,
            superseded_ids=[holder["id"]],
            similarity=lexical_similarity(fact, holder["content"]),
        )

    def _best_duplicate(
        self,
        sqlite: SQLiteStore,
        owner_id: str,
        category: str,
        fact: str,
        metadata: dict[str, Any],
    ) -> tuple[Optional[dict[str, Any]], float]:
        match_query = build_match_query(content_terms(fact), prefix=False)
        if match_query is None:
            return None, 0.0

        candidates = sqlite.search_fts(
            match_query,
            owner_id=owner_id,
            category=category,
            limit=self._options.duplicate_candidates,
        )
        best: Optional[dict[str, Any]] = None
        best_similarity = 0.0
        for candidate in candidates:
            if should_prevent_merge(fact, candidate["content"]):
                continue
            if _ordinal_conflict(metadata, candidate):
                continue
            similarity = lexical_similarity(fact, candidate["content"])
            if similarity > best_similarity:
                best, best_similarity = candidate, similarity
        return best, best_similarity

    @staticmethod
    def _log_result(owner_id: str, category: str, result: ReconcileResult) -> None:
        if result.action is ReconcileAction.SUPERSEDE:
            logger.info(
                f"Superseded {result.superseded_ids} with {result.memory_id} "
                f"(owner {owner_id}, category {category})"
            )
        elif result.action is ReconcileAction.BOOST:
            logger.info(
                f"Duplicate fact boosted {result.memory_id} "
                f"(similarity {result.similarity:.2f}, owner {owner_id})"
            )
        else:
            logger.debug(f"Inserted {result.memory_id} into {category} for owner {owner_id}")
