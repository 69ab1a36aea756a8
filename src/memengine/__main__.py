"""MCP server entry point for the memengine memory system.

This module provides the main entry point for the MCP server with:
- CLI argument parsing for flexible configuration
- Pydantic Settings for environment variable support
- Tool registration for the store, retrieve and correct operations
- Direct tool invocation (--call/--args) without the MCP protocol
- Signal handling for graceful shutdown
- Logging to stderr (stdout carries the MCP stdio transport)

Usage:
    python -m memengine [options]

    Options:
        --sqlite-path PATH        SQLite database path
        --chroma-path PATH        ChromaDB storage path
        --collection NAME         Collection name (default: facts)
        --ollama-host HOST        Ollama server host (default: http://localhost:11434)
        --embedding-model MODEL   Embedding model name (default: mxbai-embed-large)
        --summarizer-model MODEL  Summarizer model name (default: llama3.2)
        --log-level LEVEL         Logging level (default: INFO)
        --call TOOL --args JSON   Invoke one tool and print its JSON result
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from mcp.server.fastmcp import FastMCP

from memengine.config import EngineSettings
from memengine.engine import MemoryEngine
from memengine.memory.types import Exchange, MemoryRecord

# Initialize FastMCP server
mcp = FastMCP("memengine")

# Initialized in main (or by call_tool_directly)
engine: Optional[MemoryEngine] = None

logger = logging.getLogger(__name__)


def setup_logging(log_level: str) -> None:
    """Configure logging to stderr (never stdout for MCP servers).

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,  # stdout is the JSON-RPC channel
    )
    logger.info(f"Logging initialized at {log_level.upper()} level")


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments with configuration defaults.

    Configuration precedence:
        1. CLI arguments (highest priority)
        2. Environment variables (MEMENGINE_ prefix)
        3. Defaults (lowest priority)
    """
    settings = EngineSettings()

    parser = argparse.ArgumentParser(
        description="memengine MCP server for conversational long-term memory",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--call",
        type=str,
        metavar="TOOL_NAME",
        help="Directly invoke a tool by name (memory_store, memory_retrieve, memory_correct, ...)",
    )
    parser.add_argument(
        "--args",
        type=str,
        default="{}",
        help="JSON arguments for the tool (used with --call)",
    )
    parser.add_argument(
        "--sqlite-path",
        type=str,
        default=str(settings.sqlite_path) if settings.sqlite_path else None,
        help="SQLite database path (default: ~/.memengine/memengine.db)",
    )
    parser.add_argument(
        "--chroma-path",
        type=str,
        default=str(settings.chroma_path) if settings.chroma_path else None,
        help="ChromaDB storage path (default: ~/.memengine/chroma_db)",
    )
    parser.add_argument(
        "--collection",
        type=str,
        default=settings.collection_name,
        help="ChromaDB collection name",
    )
    parser.add_argument(
        "--ollama-host",
        type=str,
        default=settings.ollama_host,
        help="Ollama server host URL",
    )
    parser.add_argument(
        "--embedding-model",
        type=str,
        default=settings.embedding_model,
        help="Ollama embedding model name",
    )
    parser.add_argument(
        "--summarizer-model",
        type=str,
        default=settings.summarizer_model,
        help="Ollama model used to compress exchanges into facts",
    )
    parser.add_argument(
        "--ollama-timeout",
        type=int,
        default=settings.ollama_timeout,
        help="Ollama request timeout in seconds",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> EngineSettings:
    """Environment settings with CLI overrides applied."""
    return EngineSettings().model_copy(
        update={
            "sqlite_path": Path(args.sqlite_path) if args.sqlite_path else None,
            "chroma_path": Path(args.chroma_path) if args.chroma_path else None,
            "collection_name": args.collection,
            "ollama_host": args.ollama_host,
            "embedding_model": args.embedding_model,
            "summarizer_model": args.summarizer_model,
            "ollama_timeout": args.ollama_timeout,
            "log_level": args.log_level,
        }
    )


async def initialize_components(args: argparse.Namespace) -> MemoryEngine:
    """Create the MemoryEngine with all its dependencies.

    Raises:
        Exception: If any component initialization fails
    """
    settings = settings_from_args(args)
    logger.info(
        f"Configuration: "
        f"sqlite_path={settings.sqlite_path}, "
        f"chroma_path={settings.chroma_path}, "
        f"collection={settings.collection_name}, "
        f"ollama_host={settings.ollama_host}, "
        f"embedding_model={settings.embedding_model}, "
        f"summarizer_model={settings.summarizer_model}"
    )
    memory_engine = await MemoryEngine.create(settings)
    logger.info("MemoryEngine initialized successfully")
    return memory_engine


def _record_to_dict(record: MemoryRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "owner_id": record.owner_id,
        "category": record.category,
        "subcategory": record.subcategory,
        "content": record.content,
        "token_count": record.token_count,
        "relevance_score": record.relevance_score,
        "usage_frequency": record.usage_frequency,
        "created_at": record.created_at.isoformat(),
        "last_accessed_at": record.last_accessed_at.isoformat(),
        "is_current": record.is_current,
        "superseded_by": record.superseded_by,
        "fact_fingerprint": record.fact_fingerprint,
        "embedding_status": record.embedding_status.value,
        "metadata": record.metadata,
    }


# =============================================================================
# MCP Tool Handlers
# =============================================================================


@mcp.tool()
async def memory_store_tool(
    owner_id: str,
    user_text: str,
    reply_text: str = "",
    explicit: Optional[bool] = None,
) -> dict[str, Any]:
    """Store the durable facts of one conversation exchange.

    The exchange is routed to a category, compressed into a short fact with
    its critical tokens protected, and reconciled against the owner's
    existing facts (inserted, boosted as a duplicate, or superseding an older
    value of the same attribute).

    Args:
        owner_id: Owner (user) the fact belongs to
        user_text: The user's turn
        reply_text: The assistant's reply (optional)
        explicit: Force the explicit-storage flag (None detects it)

    Returns:
        Result dictionary with success, action, id, category, content,
        superseded_ids and embedding_status (or error)
    """
    if engine is None:
        return {"success": False, "error": "Server not initialized"}
    try:
        result = await engine.store_fact(
            owner_id, Exchange(user_text=user_text, reply_text=reply_text), explicit=explicit
        )
        return {
            "success": result.success,
            "action": result.action.value,
            "id": result.memory_id,
            "category": result.category,
            "routing_confidence": result.routing_confidence,
            "content": result.content,
            "superseded_ids": result.superseded_ids,
            "compressed": result.compressed,
            "embedding_status": result.embedding_status.value if result.embedding_status else None,
            "reason": result.reason,
        }
    except Exception as e:
        logger.error(f"memory_store_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool()
async def memory_retrieve_tool(
    owner_id: str,
    query: str,
    document: Optional[str] = None,
    reference_corpus: Optional[str] = None,
) -> dict[str, Any]:
    """Retrieve the owner's most relevant facts for a query.

    Args:
        owner_id: Owner whose facts are searched
        query: The user's query
        document: Optional document excerpt to include in the context
        reference_corpus: Optional reference corpus to select sections from

    Returns:
        Dictionary with success, memories, the assembled context and telemetry
    """
    if engine is None:
        return {"success": False, "error": "Server not initialized"}
    try:
        result = await engine.retrieve_context(
            owner_id, query, document=document, reference_corpus=reference_corpus
        )
        return {
            "success": True,
            "memories": [_record_to_dict(r) for r in result.records],
            "context": result.context.to_dict() if result.context else None,
            "telemetry": result.telemetry,
        }
    except Exception as e:
        logger.error(f"memory_retrieve_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool()
async def memory_correct_tool(
    generated_text: str,
    query: str,
    memory_ids: Optional[list[str]] = None,
    memories: Optional[list[str]] = None,
) -> dict[str, Any]:
    """Check a generated answer against the memories injected for the query.

    Args:
        generated_text: The answer produced by the response generator
        query: The user's query
        memory_ids: IDs of the injected records (optional)
        memories: Raw fact texts, when records are not available (optional)

    Returns:
        Dictionary with success, the corrected text and one log per primitive
    """
    if engine is None:
        return {"success": False, "error": "Server not initialized"}
    try:
        memory_set: list[Any] = []
        for memory_id in memory_ids or []:
            record = engine.get_memory(memory_id)
            if record is not None:
                memory_set.append(record)
        memory_set.extend(memories or [])
        result = engine.correct_response(generated_text, memory_set, query)
        return {"success": True, **result.to_dict()}
    except Exception as e:
        logger.error(f"memory_correct_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool()
async def memory_get_tool(memory_id: str) -> dict[str, Any]:
    """Get one fact by ID, including superseded facts."""
    if engine is None:
        return {"success": False, "error": "Server not initialized"}
    try:
        record = engine.get_memory(memory_id)
        if record is None:
            return {"success": False, "error": f"Memory not found: {memory_id}"}
        return {"success": True, "memory": _record_to_dict(record)}
    except Exception as e:
        logger.error(f"memory_get_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool()
async def memory_history_tool(owner_id: str, fingerprint: str) -> dict[str, Any]:
    """List every value an owner ever stated for one attribute, oldest first.

    Args:
        owner_id: Owner of the facts
        fingerprint: Canonical attribute key such as "user_salary"
    """
    if engine is None:
        return {"success": False, "error": "Server not initialized"}
    try:
        history = engine.fingerprint_history(owner_id, fingerprint)
        return {"success": True, "history": [_record_to_dict(r) for r in history]}
    except Exception as e:
        logger.error(f"memory_history_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool()
async def memory_count_tool(
    owner_id: Optional[str] = None,
    current_only: bool = True,
) -> dict[str, Any]:
    """Count stored facts, optionally for one owner."""
    if engine is None:
        return {"success": False, "error": "Server not initialized"}
    try:
        return {"success": True, "count": engine.count_memories(owner_id, current_only)}
    except Exception as e:
        logger.error(f"memory_count_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


@mcp.tool()
async def memory_process_embeddings_tool(batch_size: int = 10) -> dict[str, Any]:
    """Embed facts whose embedding is still pending."""
    if engine is None:
        return {"success": False, "error": "Server not initialized"}
    try:
        counts = await engine.process_pending_embeddings(batch_size=batch_size)
        return {"success": True, **counts}
    except Exception as e:
        logger.error(f"memory_process_embeddings_tool failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


# =============================================================================
# Direct Tool Invocation
# =============================================================================


TOOL_HANDLERS = {
    "memory_store": memory_store_tool,
    "memory_retrieve": memory_retrieve_tool,
    "memory_correct": memory_correct_tool,
    "memory_get": memory_get_tool,
    "memory_history": memory_history_tool,
    "memory_count": memory_count_tool,
    "memory_process_embeddings": memory_process_embeddings_tool,
}


async def call_tool_directly(
    tool_name: str,
    args_json: str,
    memory_engine: MemoryEngine,
) -> dict[str, Any]:
    """Invoke a tool without MCP protocol overhead.

    Args:
        tool_name: Name of the tool (memory_store, memory_retrieve, ...)
        args_json: JSON string of arguments for the tool
        memory_engine: Initialized MemoryEngine

    Returns:
        Tool result as dictionary
    """
    global engine
    engine = memory_engine

    try:
        tool_args = json.loads(args_json)
    except json.JSONDecodeError as e:
        return {"success": False, "error": f"Invalid JSON arguments: {e}"}

    handler = TOOL_HANDLERS.get(tool_name)
    if not handler:
        return {
            "success": False,
            "error": f"Unknown tool: {tool_name}. Available: {list(TOOL_HANDLERS.keys())}",
        }

    try:
        return await handler(**tool_args)
    except TypeError as e:
        return {"success": False, "error": f"Invalid arguments for {tool_name}: {e}"}


def run_direct_call(args: argparse.Namespace) -> None:
    """Run a direct tool call and print the result to stdout."""
    setup_logging("WARNING")

    async def _run() -> None:
        memory_engine = await initialize_components(args)
        try:
            result = await call_tool_directly(args.call, args.args, memory_engine)
            print(json.dumps(result, default=str))
        finally:
            await memory_engine.close()

    asyncio.run(_run())


# =============================================================================
# Signal Handling
# =============================================================================


def handle_shutdown(signum: int, frame: Any) -> None:
    """Handle SIGINT/SIGTERM for graceful shutdown."""
    logger.info(f"Received signal {signum}, shutting down gracefully...")
    sys.exit(0)


# =============================================================================
# Main Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the MCP server.

    Workflow:
    1. Parse CLI arguments
    2. If --call provided, run direct tool invocation and exit
    3. Setup logging, initialize the engine, register signal handlers
    4. Run the MCP server with stdio transport
    """
    global engine

    args = parse_arguments()

    if args.call:
        run_direct_call(args)
        return

    setup_logging(args.log_level)
    logger.info("Starting memengine MCP server...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        engine = loop.run_until_complete(initialize_components(args))

        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

        logger.info("MCP server ready, starting stdio transport...")
        # Blocks until shutdown; FastMCP runs its own event loop
        mcp.run(transport="stdio")

    except Exception as e:
        logger.error(f"Server failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if engine is not None:
            try:
                loop.run_until_complete(engine.close())
            except Exception as e:
                logger.warning(f"Cleanup failed: {e}")


if __name__ == "__main__":
    main()
