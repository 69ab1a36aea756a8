"""End-to-end tests of MemoryEngine over ephemeral storage.

The embedding service is replaced by a deterministic bag-of-words embedder
and the summarizer by an AsyncMock (or None for uncompressed storage), so the
whole store -> reconcile -> retrieve -> assemble -> correct pipeline runs
without an Ollama server.
"""

import re
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from memengine.config import EngineOptions
from memengine.embedding.ollama import EmbeddingError, OllamaClient
from memengine.engine import MemoryEngine
from memengine.memory.types import EmbeddingStatus, Exchange, ReconcileAction, RoutingDecision
from memengine.routing.router import CategoryRouter
from memengine.storage.chromadb import ChromaStore
from memengine.storage.hybrid import HybridStore
from memengine.storage.sqlite import SQLiteStore, SQLiteStoreError
from memengine.summarizer import SummarizerError

pytestmark = pytest.mark.integration

DIMENSIONS = 64


def unique_collection_name() -> str:
    """Generate a unique collection name for test isolation."""
    return f"test_{uuid.uuid4().hex[:8]}"


def fake_embedding(text, is_query=False, deadline=None):
    """Deterministic bag-of-words vector."""
    vector = [0.0] * DIMENSIONS
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        vector[sum(map(ord, word)) % DIMENSIONS] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


@pytest.fixture
def embedding_client():
    client = MagicMock(spec=OllamaClient)
    client.embed = AsyncMock(side_effect=fake_embedding)
    client.embed_batch = AsyncMock(
        side_effect=lambda texts, is_query=False: [fake_embedding(t) for t in texts]
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def store(embedding_client):
    sqlite = SQLiteStore(ephemeral=True)
    chroma = ChromaStore(ephemeral=True, collection_name=unique_collection_name())
    hybrid = HybridStore(sqlite_store=sqlite, chroma_store=chroma, embedding_client=embedding_client)
    yield hybrid
    sqlite.close()


@pytest.fixture
def engine(store):
    """Engine storing uncompressed facts (no summarizer)."""
    return MemoryEngine(store=store, summarizer=None)


def make_summarizer(response):
    summarizer = MagicMock()
    summarizer.summarize = AsyncMock(return_value=response)
    return summarizer


class TestScenarios:
    """The four reference conversations."""

    @pytest.mark.asyncio
    async def test_brand_and_model_survive_store_and_retrieval(self, store):
        engine = MemoryEngine(store=store, summarizer=make_summarizer("User drives a Tesla car"))

        stored = await engine.store_fact("u1", "I drive a Tesla Model 3")
        await store.drain_embeddings()
        result = await engine.retrieve_context("u1", "What car do I drive?")

        assert stored.success
        assert stored.compressed
        assert "Tesla Model 3" in stored.content
        assert stored.memory_id in result.telemetry["injected_memory_ids"]
        assert "Tesla Model 3" in result.context.memory_text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("embedding_down", [False, True], ids=["hybrid", "degraded"])
    async def test_start_year_computed_from_duration_and_end_year(
        self, engine, store, embedding_client, embedding_down
    ):
        if embedding_down:
            embedding_client.embed.side_effect = EmbeddingError("connection refused")
        await engine.store_fact("u1", "I worked 5 years")
        await engine.store_fact("u1", "I left in 2020")
        await store.drain_embeddings()

        query = "When did I start?"
        result = await engine.retrieve_context("u1", query)
        correction = engine.correct_response("I'm not sure when you started.", result.records, query)

        assert result.degraded is embedding_down
        assert len(result.records) == 2
        assert correction.corrected
        assert "you started around 2015" in correction.text

    @pytest.mark.asyncio
    async def test_second_code_replaces_first(self, engine, store):
        first = await engine.store_fact("u1", "My first code is CHARLIE")
        second = await engine.store_fact("u1", "My second code is DELTA")
        await store.drain_embeddings()

        query = "What is my second code?"
        result = await engine.retrieve_context("u1", query)
        correction = engine.correct_response("Your second code is CHARLIE.", result.records, query)

        assert engine.get_memory(first.memory_id).ordinal_value == "CHARLIE"
        assert result.records[0].id == second.memory_id
        assert correction.text == "Your second code is DELTA."

    @pytest.mark.asyncio
    async def test_near_identical_store_boosts_usage(self, engine, store):
        first = await engine.store_fact("u1", "I really love hiking in the mountains")
        again = await engine.store_fact("u1", "I really love hiking in the mountains!")
        await store.drain_embeddings()

        assert again.action is ReconcileAction.BOOST
        assert again.memory_id == first.memory_id
        assert engine.count_memories("u1") == 1
        assert engine.get_memory(first.memory_id).usage_frequency == 1


class TestProperties:
    """Cross-cutting guarantees of the pipeline."""

    @pytest.mark.asyncio
    async def test_critical_tokens_stored_verbatim(self, store):
        engine = MemoryEngine(store=store, summarizer=make_summarizer("User has a new colleague"))

        stored = await engine.store_fact(
            "u1", "My colleague José García-López joined in 2019 after 3 years at Initech"
        )

        for token in ("José García-López", "2019", "3 years", "Initech"):
            assert token in stored.content

    @pytest.mark.asyncio
    async def test_one_current_record_per_fingerprint(self, engine, store):
        old = await engine.store_fact("u1", "My salary is $80,000")
        new = await engine.store_fact("u1", "My salary is $95,000")
        await store.drain_embeddings()

        assert new.action is ReconcileAction.SUPERSEDE
        assert new.superseded_ids == [old.memory_id]
        assert engine.count_memories("u1") == 1
        assert engine.count_memories("u1", current_only=False) == 2

        superseded = engine.get_memory(old.memory_id)
        assert superseded is not None
        assert not superseded.is_current
        assert superseded.superseded_by == new.memory_id

        result = await engine.retrieve_context("u1", "What is my salary?")
        assert old.memory_id not in result.telemetry["injected_memory_ids"]
        assert new.memory_id in result.telemetry["injected_memory_ids"]

        history = engine.fingerprint_history("u1", "user_salary")
        assert [r.id for r in history] == [old.memory_id, new.memory_id]

    @pytest.mark.asyncio
    async def test_retrieval_respects_count_and_token_budget(self, store):
        options = EngineOptions(max_memories=3, memory_token_budget=40)
        engine = MemoryEngine(store=store, summarizer=None, options=options)
        for fact in (
            "I drive a Tesla Model 3 to work",
            "I bought a new car battery last week",
            "My car insurance renews in March",
            "I wash the car every Sunday morning",
            "The car dealership is on Main Street",
            "I want to sell my old car soon",
        ):
            await engine.store_fact("u1", fact)
        await store.drain_embeddings()

        result = await engine.retrieve_context("u1", "Tell me about my car")

        assert 0 < len(result.records) <= 3
        assert result.telemetry["tokens_used"] <= 40
        assert sum(r.token_count for r in result.records) <= 40

    @pytest.mark.asyncio
    async def test_keyword_fallback_is_deterministic(self, engine, store, embedding_client):
        embedding_client.embed.side_effect = EmbeddingError("connection refused")
        for fact in (
            "I drive a Tesla Model 3",
            "My partner drives a Volvo wagon",
            "I used to drive a Honda Civic",
        ):
            await engine.store_fact("u1", fact)
        await store.drain_embeddings()

        first = await engine.retrieve_context("u1", "What car do I drive?")
        second = await engine.retrieve_context("u1", "What car do I drive?")

        assert first.records
        assert first.degraded
        assert first.telemetry["injected_memory_ids"] == second.telemetry["injected_memory_ids"]

    @pytest.mark.asyncio
    async def test_explicit_record_ranks_first(self, store):
        router = MagicMock(spec=CategoryRouter)
        router.route.return_value = RoutingDecision(
            primary_category="personal_life_interests", confidence=0.9
        )
        engine = MemoryEngine(store=store, summarizer=None, router=router)

        await engine.store_fact("u1", "I drive a Tesla Model 3")
        explicit = await engine.store_fact("u1", "Remember this: my locker number is 4512")
        await store.drain_embeddings()

        result = await engine.retrieve_context("u1", "What car do I drive?")

        assert result.records[0].id == explicit.memory_id
        assert result.candidates[0].explicit_override


class TestStorePipeline:
    """Behaviour of store_fact around its collaborators."""

    @pytest.mark.asyncio
    async def test_boilerplate_skipped(self, engine):
        result = await engine.store_fact("u1", "ok thanks")
        assert not result.success
        assert result.action is ReconcileAction.SKIPPED
        assert engine.count_memories("u1") == 0

    @pytest.mark.asyncio
    async def test_empty_owner_rejected(self, engine):
        with pytest.raises(ValueError):
            await engine.store_fact("", "I drive a Tesla Model 3")

    @pytest.mark.asyncio
    async def test_exchange_with_reply(self, engine):
        result = await engine.store_fact(
            "u1", Exchange(user_text="I moved to Lisbon in 2022", reply_text="Noted, Lisbon is lovely.")
        )
        assert result.content.startswith("User: I moved to Lisbon in 2022")
        assert "Assistant: Noted, Lisbon is lovely." in result.content

    @pytest.mark.asyncio
    async def test_explicit_store_embeds_before_returning(self, engine, embedding_client):
        result = await engine.store_fact("u1", "Please remember this exactly: gate code 7391", explicit=True)

        assert result.embedding_status is EmbeddingStatus.READY
        assert embedding_client.embed.await_args.kwargs["deadline"] == 5.0
        assert engine.get_memory(result.memory_id).is_explicit

    @pytest.mark.asyncio
    async def test_ordinary_store_embeds_in_background(self, engine, store):
        result = await engine.store_fact("u1", "I drive a Tesla Model 3")
        assert result.embedding_status is EmbeddingStatus.PENDING

        await store.drain_embeddings()
        assert engine.get_memory(result.memory_id).embedding_status is EmbeddingStatus.READY

    @pytest.mark.asyncio
    async def test_embedding_failure_does_not_fail_store(self, engine, store, embedding_client):
        embedding_client.embed.side_effect = EmbeddingError("timeout")

        result = await engine.store_fact("u1", "I drive a Tesla Model 3")
        await store.drain_embeddings()

        assert result.success
        assert engine.get_memory(result.memory_id).embedding_status is EmbeddingStatus.FAILED

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, engine, mocker):
        mocker.patch.object(
            engine.store.sqlite, "add_memory", side_effect=SQLiteStoreError("disk I/O error")
        )
        with pytest.raises(SQLiteStoreError):
            await engine.store_fact("u1", "I drive a Tesla Model 3")

    @pytest.mark.asyncio
    async def test_summarizer_failure_stores_uncompressed(self, store):
        summarizer = MagicMock()
        summarizer.summarize = AsyncMock(side_effect=SummarizerError("model not found"))
        engine = MemoryEngine(store=store, summarizer=summarizer)

        result = await engine.store_fact("u1", "I drive a Tesla Model 3")

        assert result.success
        assert not result.compressed
        assert result.content == "User: I drive a Tesla Model 3"
        assert engine.get_memory(result.memory_id).metadata["fallback"] is True

    @pytest.mark.asyncio
    async def test_process_pending_embeddings(self, engine, store, mocker):
        mocker.patch.object(store, "schedule_embedding")
        result = await engine.store_fact("u1", "I drive a Tesla Model 3")

        counts = await engine.process_pending_embeddings()

        assert counts == {"ready": 1, "failed": 0, "pending": 0}
        assert engine.get_memory(result.memory_id).embedding_status is EmbeddingStatus.READY
