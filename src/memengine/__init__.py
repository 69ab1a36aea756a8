"""memengine - long-term memory intelligence for conversational assistants.

This package stores durable facts extracted from conversations, routes them
into a fixed taxonomy of life categories, retrieves the most relevant facts
for a new query under strict token budgets, and checks generated answers
against stored memory.

Main components:
- engine: MemoryEngine with store_fact, retrieve_context and correct_response
- routing.router: Category routing with swappable classification strategies
- memory.reconcile: Deduplication and fingerprint-based supersession
- retrieval.retriever: Multi-signal scoring and budget-bounded selection
- context.assembler: Token budget enforcement for the final prompt context
- correction.primitives: Post-generation correctness checks
- config: Pydantic Settings for configuration management

Usage:
    # Run as MCP server
    python -m memengine

    # Or use the CLI
    memengine --help
"""

__all__ = ["main"]
__version__ = "0.1.0"


def main() -> None:
    """Main entry point for the memengine MCP server."""
    from memengine.__main__ import main as _main
    _main()
