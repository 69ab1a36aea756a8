"""Integration tests for the memengine MCP server.

These tests verify that the MCP server exposes the engine operations as tools
and that the tools work end-to-end over ephemeral storage.
"""

import json
import uuid
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from memengine.embedding.ollama import OllamaClient
from memengine.engine import MemoryEngine
from memengine.storage.chromadb import ChromaStore
from memengine.storage.hybrid import HybridStore
from memengine.storage.sqlite import SQLiteStore

pytestmark = pytest.mark.integration


def unique_collection_name() -> str:
    """Generate a unique collection name for test isolation."""
    return f"test_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def mock_embedding_client():
    """Create mock OllamaClient for testing."""
    client = MagicMock(spec=OllamaClient)
    client.embed = AsyncMock(return_value=[0.1] * 8)
    client.embed_batch = AsyncMock(side_effect=lambda texts, is_query=False: [[0.1] * 8 for _ in texts])
    client.close = AsyncMock()
    return client


@pytest.fixture
def ephemeral_engine(mock_embedding_client):
    """Create a MemoryEngine over ephemeral stores, without a summarizer."""
    sqlite = SQLiteStore(ephemeral=True)
    chroma = ChromaStore(ephemeral=True, collection_name=unique_collection_name())
    store = HybridStore(
        sqlite_store=sqlite,
        chroma_store=chroma,
        embedding_client=mock_embedding_client,
    )
    yield MemoryEngine(store=store, summarizer=None)
    sqlite.close()


class TestArguments:
    """Tests for CLI argument parsing and settings overrides."""

    def test_defaults_from_settings(self, monkeypatch):
        from memengine.__main__ import parse_arguments

        monkeypatch.delenv("MEMENGINE_COLLECTION_NAME", raising=False)
        args = parse_arguments([])

        assert args.call is None
        assert args.args == "{}"
        assert args.collection == "facts"
        assert args.ollama_host == "http://localhost:11434"
        assert args.log_level == "INFO"

    def test_env_feeds_defaults(self, monkeypatch):
        from memengine.__main__ import parse_arguments

        monkeypatch.setenv("MEMENGINE_SUMMARIZER_MODEL", "qwen2.5")
        assert parse_arguments([]).summarizer_model == "qwen2.5"

    def test_cli_overrides_settings(self):
        from memengine.__main__ import parse_arguments, settings_from_args

        args = parse_arguments(
            ["--sqlite-path", "/tmp/mem.db", "--collection", "alt", "--log-level", "DEBUG"]
        )
        settings = settings_from_args(args)

        assert settings.sqlite_path == Path("/tmp/mem.db")
        assert settings.collection_name == "alt"
        assert settings.log_level == "DEBUG"

    def test_direct_call_flags(self):
        from memengine.__main__ import parse_arguments

        args = parse_arguments(["--call", "memory_count", "--args", '{"owner_id": "u1"}'])
        assert args.call == "memory_count"
        assert json.loads(args.args) == {"owner_id": "u1"}


class TestStoreAndRetrieveTools:
    """Tests for the store, retrieve and correct tools."""

    @pytest.mark.asyncio
    async def test_memory_store_tool_success(self, ephemeral_engine):
        from memengine.__main__ import memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            result = await memory_store_tool(owner_id="u1", user_text="I drive a Tesla Model 3")
            await ephemeral_engine.store.drain_embeddings()

        assert result["success"] is True
        assert result["action"] == "insert"
        assert result["id"].startswith("mem_")
        assert "Tesla Model 3" in result["content"]
        assert result["embedding_status"] == "pending"

    @pytest.mark.asyncio
    async def test_memory_store_tool_boilerplate(self, ephemeral_engine):
        from memengine.__main__ import memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            result = await memory_store_tool(owner_id="u1", user_text="thanks")

        assert result["success"] is False
        assert result["action"] == "skipped"
        assert result["reason"] == "boilerplate"

    @pytest.mark.asyncio
    async def test_memory_store_tool_error(self, ephemeral_engine):
        from memengine.__main__ import memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            result = await memory_store_tool(owner_id="", user_text="I drive a Tesla Model 3")

        assert result["success"] is False
        assert "Owner ID cannot be empty" in result["error"]

    @pytest.mark.asyncio
    async def test_memory_store_tool_not_initialized(self):
        from memengine.__main__ import memory_store_tool

        with patch("memengine.__main__.engine", None):
            result = await memory_store_tool(owner_id="u1", user_text="I drive a Tesla Model 3")

        assert result == {"success": False, "error": "Server not initialized"}

    @pytest.mark.asyncio
    async def test_memory_retrieve_tool(self, ephemeral_engine):
        from memengine.__main__ import memory_retrieve_tool, memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            stored = await memory_store_tool(owner_id="u1", user_text="I drive a Tesla Model 3")
            await ephemeral_engine.store.drain_embeddings()
            result = await memory_retrieve_tool(
                owner_id="u1", query="What car do I drive?", document="Trip notes for Lisbon."
            )

        assert result["success"] is True
        assert [m["id"] for m in result["memories"]] == [stored["id"]]
        assert "Tesla Model 3" in result["context"]["memory"]
        assert result["context"]["document"] == "Trip notes for Lisbon."
        assert result["telemetry"]["injected_memory_ids"] == [stored["id"]]

    @pytest.mark.asyncio
    async def test_memory_correct_tool_with_raw_memories(self, ephemeral_engine):
        from memengine.__main__ import memory_correct_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            result = await memory_correct_tool(
                generated_text="Your second code is CHARLIE.",
                query="What is my second code?",
                memories=["User's first code: CHARLIE.", "User's second code: DELTA."],
            )

        assert result["success"] is True
        assert result["corrected"] is True
        assert result["text"] == "Your second code is DELTA."
        assert len(result["logs"]) == 3

    @pytest.mark.asyncio
    async def test_memory_correct_tool_with_ids(self, ephemeral_engine):
        from memengine.__main__ import memory_correct_tool, memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            first = await memory_store_tool(owner_id="u1", user_text="I worked at Globex for 5 years")
            second = await memory_store_tool(owner_id="u1", user_text="I left Globex in 2020")
            await ephemeral_engine.store.drain_embeddings()
            result = await memory_correct_tool(
                generated_text="I don't know when you started.",
                query="When did I start at Globex?",
                memory_ids=[first["id"], second["id"], "mem_missing"],
            )

        assert "2015" in result["text"]


class TestInspectionTools:
    """Tests for get, history, count and embedding maintenance tools."""

    @pytest.mark.asyncio
    async def test_memory_get_tool(self, ephemeral_engine):
        from memengine.__main__ import memory_get_tool, memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            stored = await memory_store_tool(owner_id="u1", user_text="I drive a Tesla Model 3")
            await ephemeral_engine.store.drain_embeddings()
            result = await memory_get_tool(memory_id=stored["id"])
            missing = await memory_get_tool(memory_id="mem_missing")

        assert result["success"] is True
        assert result["memory"]["owner_id"] == "u1"
        assert result["memory"]["embedding_status"] == "ready"
        assert missing == {"success": False, "error": "Memory not found: mem_missing"}

    @pytest.mark.asyncio
    async def test_memory_history_tool(self, ephemeral_engine):
        from memengine.__main__ import memory_history_tool, memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            await memory_store_tool(owner_id="u1", user_text="My salary is $80,000")
            await memory_store_tool(owner_id="u1", user_text="My salary is $95,000")
            await ephemeral_engine.store.drain_embeddings()
            result = await memory_history_tool(owner_id="u1", fingerprint="user_salary")

        history = result["history"]
        assert [h["is_current"] for h in history] == [False, True]
        assert history[0]["superseded_by"] == history[1]["id"]

    @pytest.mark.asyncio
    async def test_memory_count_tool(self, ephemeral_engine):
        from memengine.__main__ import memory_count_tool, memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine):
            await memory_store_tool(owner_id="u1", user_text="I drive a Tesla Model 3")
            await memory_store_tool(owner_id="u2", user_text="I live in Porto since 2018")
            await ephemeral_engine.store.drain_embeddings()
            total = await memory_count_tool()
            mine = await memory_count_tool(owner_id="u1")

        assert total["count"] == 2
        assert mine["count"] == 1

    @pytest.mark.asyncio
    async def test_memory_process_embeddings_tool(self, ephemeral_engine):
        from memengine.__main__ import memory_process_embeddings_tool, memory_store_tool

        with patch("memengine.__main__.engine", ephemeral_engine), \
                patch.object(ephemeral_engine.store, "schedule_embedding"):
            await memory_store_tool(owner_id="u1", user_text="I drive a Tesla Model 3")
            result = await memory_process_embeddings_tool(batch_size=5)

        assert result == {"success": True, "ready": 1, "failed": 0, "pending": 0}


class TestDirectCall:
    """Tests for --call direct invocation."""

    @pytest.mark.asyncio
    async def test_call_tool_directly(self, ephemeral_engine):
        from memengine.__main__ import call_tool_directly

        result = await call_tool_directly(
            "memory_store",
            json.dumps({"owner_id": "u1", "user_text": "I drive a Tesla Model 3"}),
            ephemeral_engine,
        )
        await ephemeral_engine.store.drain_embeddings()

        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_invalid_json(self, ephemeral_engine):
        from memengine.__main__ import call_tool_directly

        result = await call_tool_directly("memory_count", "{not json", ephemeral_engine)
        assert result["success"] is False
        assert "Invalid JSON arguments" in result["error"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, ephemeral_engine):
        from memengine.__main__ import call_tool_directly

        result = await call_tool_directly("memory_forget", "{}", ephemeral_engine)
        assert result["error"].startswith("Unknown tool: memory_forget")

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, ephemeral_engine):
        from memengine.__main__ import call_tool_directly

        result = await call_tool_directly("memory_get", '{"id": "x"}', ephemeral_engine)
        assert result["error"].startswith("Invalid arguments for memory_get")
