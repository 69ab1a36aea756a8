"""Unit tests for fact reconciliation (insert, boost, supersede)."""

import asyncio
import gc
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from memengine.config import EngineOptions
from memengine.embedding.ollama import OllamaClient
from memengine.memory.fingerprint import detect_fingerprint
from memengine.memory.reconcile import Reconciler, lexical_similarity, should_prevent_merge
from memengine.memory.types import ReconcileAction, ReconcileResult
from memengine.storage.chromadb import ChromaStore
from memengine.storage.hybrid import HybridStore
from memengine.storage.sqlite import SQLiteStore, StoreBusyError


def unique_collection_name() -> str:
    """Generate a unique collection name for test isolation."""
    return f"test_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def store():
    """HybridStore over ephemeral stores with a mocked embedding client."""
    sqlite = SQLiteStore(ephemeral=True)
    chroma = ChromaStore(ephemeral=True, collection_name=unique_collection_name())
    client = MagicMock(spec=OllamaClient)
    client.embed = AsyncMock(return_value=[1.0, 0.0, 0.0])
    hybrid = HybridStore(sqlite_store=sqlite, chroma_store=chroma, embedding_client=client)
    yield hybrid
    sqlite.close()


@pytest.fixture
def reconciler(store):
    return Reconciler(store, EngineOptions())


async def _reconcile(reconciler, fact, category="money_income_debt", **kwargs):
    return await reconciler.reconcile(
        "u1", category, fact, fingerprint=detect_fingerprint(fact), **kwargs
    )


class TestSimilarity:
    """Tests for the lexical helpers."""

    def test_identical_terms(self):
        assert lexical_similarity("User drives Tesla.", "user DRIVES tesla") == 1.0

    def test_partial_overlap(self):
        # {drives, tesla, model, 3} vs {drives, tesla}: 2/4 * 2/2
        assert lexical_similarity("User drives Tesla Model 3", "User drives Tesla") == 0.5

    def test_no_terms(self):
        assert lexical_similarity("the a", "Tesla") == 0.0

    def test_prevent_merge_on_new_identifier(self):
        assert should_prevent_merge("Plate ECHO-123-XYZ.", "Plate ECHO-123-ABC.")
        assert not should_prevent_merge("Plate ECHO-123-ABC.", "plate echo-123-abc")
        assert not should_prevent_merge("User likes tea.", "User likes green tea.")


class TestInsert:
    """Tests for plain inserts."""

    @pytest.mark.asyncio
    async def test_new_fact_inserted_with_fingerprint(self, reconciler, store):
        result = await _reconcile(reconciler, "Salary: $80,000.")

        assert result.action is ReconcileAction.INSERT
        assert result.attempts == 1
        memory = store.get_memory(result.memory_id)
        assert memory["fact_fingerprint"] == "user_salary"
        assert memory["metadata"]["fingerprint_detected"] == "user_salary"
        assert memory["embedding_status"] == "pending"

    @pytest.mark.asyncio
    async def test_low_confidence_fingerprint_not_claimed(self, reconciler, store):
        fact = "My salary went up"
        result = await reconciler.reconcile(
            "u1", "money_income_debt", fact,
            fingerprint=detect_fingerprint(fact, indicator_only_factor=0.5),
        )

        memory = store.get_memory(result.memory_id)
        assert memory["fact_fingerprint"] is None
        assert memory["metadata"]["fingerprint_method"] == "indicator_without_value"

    @pytest.mark.asyncio
    async def test_fingerprint_without_value_never_claims(self, reconciler, store):
        result = await _reconcile(reconciler, "My salary went up")

        memory = store.get_memory(result.memory_id)
        assert memory["fact_fingerprint"] is None
        assert memory["metadata"]["fingerprint_detected"] == "user_salary"
        assert "fingerprint_values" not in memory["metadata"]

    @pytest.mark.asyncio
    async def test_claimed_fingerprint_stores_normalized_values(self, reconciler, store):
        result = await _reconcile(reconciler, "I make $80,000 a year as a teacher")

        memory = store.get_memory(result.memory_id)
        assert memory["fact_fingerprint"] == "user_salary"
        assert memory["metadata"]["fingerprint_values"] == ["80000"]

    @pytest.mark.asyncio
    async def test_unrelated_facts_both_inserted(self, reconciler, store):
        await _reconcile(reconciler, "User likes green tea.", category="health_wellness")
        await _reconcile(reconciler, "User runs marathons.", category="health_wellness")
        assert store.count_memories(owner_id="u1") == 2


class TestBoost:
    """Tests for duplicate detection."""

    @pytest.mark.asyncio
    async def test_duplicate_is_boosted(self, reconciler, store):
        first = await reconciler.reconcile("u1", "personal_life_interests", "User drives Tesla Model 3.")
        second = await reconciler.reconcile("u1", "personal_life_interests", "User drives a Tesla Model 3")

        assert second.action is ReconcileAction.BOOST
        assert second.memory_id == first.memory_id
        assert store.count_memories(owner_id="u1") == 1
        assert store.get_memory(first.memory_id)["relevance_score"] == pytest.approx(0.55)

    @pytest.mark.asyncio
    async def test_duplicates_scoped_to_owner(self, reconciler, store):
        await reconciler.reconcile("u1", "personal_life_interests", "User drives Tesla Model 3.")
        other = await reconciler.reconcile("u2", "personal_life_interests", "User drives Tesla Model 3.")
        assert other.action is ReconcileAction.INSERT

    @pytest.mark.asyncio
    async def test_same_fingerprint_value_boosts_holder(self, reconciler):
        first = await _reconcile(reconciler, "Salary: $95,000.")
        again = await _reconcile(reconciler, "My salary is $95,000")

        assert again.action is ReconcileAction.BOOST
        assert again.memory_id == first.memory_id

    @pytest.mark.asyncio
    async def test_new_identifier_prevents_merge(self, reconciler, store):
        await reconciler.reconcile("u1", "tools_tech_workflow", "Locker code ECHO-123-ABC.")
        result = await reconciler.reconcile("u1", "tools_tech_workflow", "Locker code ECHO-123-XYZ.")

        assert result.action is ReconcileAction.INSERT
        assert store.count_memories(owner_id="u1") == 2

    @pytest.mark.asyncio
    async def test_different_ordinal_prevents_merge(self, reconciler):
        await reconciler.reconcile(
            "u1", "general", "User's first code: CHARLIE.", metadata={"ordinal": 1}
        )
        result = await reconciler.reconcile(
            "u1", "general", "User's second code: CHARLIE.", metadata={"ordinal": 2}
        )
        assert result.action is ReconcileAction.INSERT


class TestSupersede:
    """Tests for fingerprint supersession."""

    @pytest.mark.asyncio
    async def test_changed_value_supersedes(self, reconciler, store):
        old = await _reconcile(reconciler, "Salary: $80,000.")
        new = await _reconcile(reconciler, "Salary: $95,000.")

        assert new.action is ReconcileAction.SUPERSEDE
        assert new.superseded_ids == [old.memory_id]

        old_record = store.get_memory(old.memory_id)
        assert not old_record["is_current"]
        assert old_record["superseded_by"] == new.memory_id

        new_record = store.get_memory(new.memory_id)
        assert new_record["is_current"]
        assert new_record["metadata"]["supersedes_id"] == old.memory_id
        assert [m["id"] for m in store.list_memories("u1")] == [new.memory_id]

    @pytest.mark.asyncio
    async def test_history_keeps_both_records(self, reconciler, store):
        await _reconcile(reconciler, "Salary: $80,000.")
        await _reconcile(reconciler, "Salary: $95,000.")

        history = store.fingerprint_history("u1", "user_salary")
        assert [m["content"] for m in history] == ["Salary: $80,000.", "Salary: $95,000."]

    @pytest.mark.asyncio
    async def test_superseded_vector_flagged(self, reconciler, mocker):
        spy = mocker.spy(reconciler._store, "mark_superseded_in_index")
        old = await _reconcile(reconciler, "Salary: $80,000.")
        await _reconcile(reconciler, "Salary: $95,000.")
        spy.assert_called_once_with([old.memory_id])

    @pytest.mark.asyncio
    async def test_concurrent_updates_leave_one_current(self, reconciler, store):
        await asyncio.gather(
            _reconcile(reconciler, "Salary: $80,000."),
            _reconcile(reconciler, "Salary: $95,000."),
            _reconcile(reconciler, "Salary: $120,000."),
        )
        current = store.sqlite.find_current_by_fingerprint("u1", "user_salary")
        assert len(current) == 1
        assert store.count_memories(owner_id="u1") == 3

    @pytest.mark.asyncio
    async def test_unrelated_family_facts_stay_current(self, reconciler, store):
        son = await _reconcile(
            reconciler, "My son is named Tom and he plays soccer", category="personal_life_interests"
        )
        daughter = await _reconcile(
            reconciler, "My daughter is named Anna and she loves painting",
            category="personal_life_interests",
        )

        assert daughter.action is ReconcileAction.INSERT
        assert store.get_memory(son.memory_id)["is_current"]
        assert store.count_memories(owner_id="u1") == 2

    @pytest.mark.asyncio
    async def test_hobby_not_replaced_by_salary(self, reconciler, store):
        hobby = await _reconcile(reconciler, "I make pottery every weekend in my garage")
        salary = await _reconcile(reconciler, "I make $80,000 a year as a teacher")

        assert salary.action is ReconcileAction.INSERT
        assert store.get_memory(hobby.memory_id)["is_current"]
        assert store.get_memory(salary.memory_id)["fact_fingerprint"] == "user_salary"

    @pytest.mark.asyncio
    async def test_additive_attribute_keeps_both_values(self, reconciler, store):
        first = await _reconcile(reconciler, "Allergic to peanuts.", category="health_wellness")
        second = await _reconcile(reconciler, "Allergic to shellfish.", category="health_wellness")

        assert second.action is ReconcileAction.INSERT
        assert store.get_memory(first.memory_id)["is_current"]
        assert store.get_memory(second.memory_id)["is_current"]

    @pytest.mark.asyncio
    async def test_holder_without_readable_value_not_superseded(self, reconciler, store):
        holder_id = store.sqlite.add_memory(
            "u1", "money_income_debt", "User got a raise.", fact_fingerprint="user_salary"
        )
        result = await _reconcile(reconciler, "Salary: $95,000.")

        assert result.action is ReconcileAction.INSERT
        assert store.get_memory(holder_id)["is_current"]
        assert store.get_memory(result.memory_id)["fact_fingerprint"] is None


class TestLocks:
    """Tests for the per-key reconcile locks."""

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self, reconciler):
        await _reconcile(reconciler, "Salary: $80,000.")
        await _reconcile(reconciler, "User likes green tea.", category="health_wellness")
        gc.collect()
        assert len(reconciler._locks) == 0

    @pytest.mark.asyncio
    async def test_lock_shared_while_in_use(self, reconciler):
        lock = reconciler._lock_for("u1", "fingerprint:user_salary")
        assert reconciler._lock_for("u1", "fingerprint:user_salary") is lock
        assert reconciler._lock_for("u2", "fingerprint:user_salary") is not lock


class TestRetries:
    """Tests for the conflict retry loop."""

    @pytest.mark.asyncio
    async def test_busy_store_retried(self, reconciler, mocker):
        sleep = mocker.patch("asyncio.sleep", new_callable=AsyncMock)
        outcome = ReconcileResult(action=ReconcileAction.INSERT, memory_id="mem_1")
        mocker.patch.object(
            reconciler, "_reconcile_once", side_effect=[StoreBusyError("locked"), outcome]
        )

        result = await reconciler.reconcile("u1", "general", "User likes tea.")

        assert result.memory_id == "mem_1"
        assert result.attempts == 2
        sleep.assert_awaited_once_with(0.05)

    @pytest.mark.asyncio
    async def test_persistent_contention_raises(self, reconciler, mocker):
        mocker.patch("asyncio.sleep", new_callable=AsyncMock)
        mocker.patch.object(
            reconciler, "_reconcile_once", side_effect=StoreBusyError("locked")
        )

        with pytest.raises(StoreBusyError):
            await reconciler.reconcile("u1", "general", "User likes tea.")
        assert reconciler._reconcile_once.call_count == 3
