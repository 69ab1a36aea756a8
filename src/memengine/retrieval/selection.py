"""Budget-bounded selection with temporal diversity."""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from memengine.memory.types import RetrievalCandidate

logger = logging.getLogger(__name__)


def select_candidates(
    ranked: list[RetrievalCandidate],
    max_records: int,
    token_budget: int,
    recent_window_days: int = 30,
    recent_share: float = 0.7,
    now: Optional[datetime] = None,
) -> list[RetrievalCandidate]:
    """Pick whole records in rank order under a count and token budget.

    About recent_share of the slots go to records created within the recent
    window and the rest to older ones, so a burst of new facts cannot crowd
    out durable older ones. Quota left unused by one pool is back-filled
    from the other. Explicitly stored records are never held back by the
    quota. A record that does not fit the remaining budget is skipped and
    smaller ones after it may still be taken.

    Args:
        ranked: Candidates in final rank order
        max_records: Maximum number of records to return
        token_budget: Maximum summed token_count of the returned records
        recent_window_days: Size of the recent window
        recent_share: Target share of recent records
        now: Reference time (default: now)

    Returns:
        Selected candidates, in rank order
    """
    if max_records <= 0 or token_budget <= 0:
        return []

    cutoff = (now or datetime.now()) - timedelta(days=recent_window_days)
    recent_quota = min(max_records, math.floor(max_records * recent_share + 0.5))
    quotas = {True: recent_quota, False: max_records - recent_quota}

    chosen: set[int] = set()
    tokens_used = 0

    def take(index: int, candidate: RetrievalCandidate) -> bool:
        nonlocal tokens_used
        cost = candidate.record.token_count
        if tokens_used + cost > token_budget:
            logger.debug(
                f"Skipping {candidate.record.id}: {cost} tokens exceed remaining "
                f"{token_budget - tokens_used}"
            )
            return False
        chosen.add(index)
        tokens_used += cost
        return True

    # First pass: honour the recent/older quotas
    for index, candidate in enumerate(ranked):
        if len(chosen) >= max_records:
            break
        is_recent = candidate.record.created_at >= cutoff
        if quotas[is_recent] <= 0 and not candidate.explicit_override:
            continue
        if take(index, candidate):
            quotas[is_recent] -= 1

    # Second pass: back-fill unused slots from either pool
    for index, candidate in enumerate(ranked):
        if len(chosen) >= max_records:
            break
        if index not in chosen:
            take(index, candidate)

    return [candidate for index, candidate in enumerate(ranked) if index in chosen]
