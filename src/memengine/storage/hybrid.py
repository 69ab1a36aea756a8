"""Hybrid storage layer coordinating SQLite and ChromaDB.

Key principles:
- SQLite is the source of truth for every record and its embedding status
- ChromaDB holds one vector per record plus the fields needed for filtering
- Embeddings are produced after the record is durable; ordinary facts are
  embedded in the background, explicit facts block up to their own deadline
- Vector index failures never fail a write: the record is marked FAILED and
  retrieval degrades to keyword scoring
- Records left PENDING (for example by a restart) are picked up by
  process_pending_embeddings
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from memengine.embedding.ollama import EmbeddingError, OllamaClient
from memengine.errors import StorageError
from memengine.memory.types import EmbeddingStatus
from memengine.storage.chromadb import ChromaStore, VectorStoreError
from memengine.storage.sqlite import SQLiteStore, SQLiteStoreError

logger = logging.getLogger(__name__)


class HybridStoreError(StorageError):
    """Custom exception for hybrid storage operations."""

    pass


def _vector_metadata(memory: dict[str, Any]) -> dict[str, Any]:
    return {
        "owner_id": memory["owner_id"],
        "category": memory["category"],
        "is_current": bool(memory.get("is_current", True)),
    }


class HybridStore:
    """Coordinated storage layer combining SQLite and ChromaDB.

    Args:
        sqlite_store: SQLiteStore instance for records and FTS
        chroma_store: ChromaStore instance for vectors
        embedding_client: OllamaClient for generating embeddings
        embedding_timeout: Default deadline for background embeddings (seconds)

    Example:
        >>> store = await HybridStore.create(ephemeral=True)
        >>> status = await store.embed_memory(memory_id, timeout=5.0)
        >>> await store.close()
    """

    def __init__(
        self,
        sqlite_store: SQLiteStore,
        chroma_store: ChromaStore,
        embedding_client: OllamaClient,
        embedding_timeout: float = 3.0,
    ):
        self._sqlite = sqlite_store
        self._chroma = chroma_store
        self._embedding_client = embedding_client
        self._embedding_timeout = embedding_timeout
        self._chroma_available = True
        self._pending_tasks: set[asyncio.Task] = set()

    @classmethod
    async def create(
        cls,
        sqlite_path: Optional[Path] = None,
        chroma_path: Optional[Path] = None,
        collection_name: str = "facts",
        ollama_host: str = "http://localhost:11434",
        ollama_model: str = "mxbai-embed-large",
        ollama_timeout: float = 30.0,
        embedding_timeout: float = 3.0,
        ephemeral: bool = False,
    ) -> "HybridStore":
        """Create a HybridStore with new component instances.

        Args:
            sqlite_path: Path to SQLite database (default: ~/.memengine/memengine.db)
            chroma_path: Path to ChromaDB storage (default: ~/.memengine/chroma_db)
            collection_name: ChromaDB collection name (default: "facts")
            ollama_host: Ollama server host (default: http://localhost:11434)
            ollama_model: Embedding model name (default: mxbai-embed-large)
            ollama_timeout: HTTP timeout of the embedding client
            embedding_timeout: Deadline for background embeddings
            ephemeral: Use in-memory storage for testing (default: False)

        Raises:
            HybridStoreError: If store initialization fails
        """
        try:
            sqlite_store = SQLiteStore(db_path=sqlite_path, ephemeral=ephemeral)
            chroma_store = ChromaStore(
                db_path=chroma_path,
                collection_name=collection_name,
                ephemeral=ephemeral,
            )
            embedding_client = OllamaClient(
                host=ollama_host,
                model=ollama_model,
                timeout=ollama_timeout,
            )
            return cls(
                sqlite_store=sqlite_store,
                chroma_store=chroma_store,
                embedding_client=embedding_client,
                embedding_timeout=embedding_timeout,
            )
        except (SQLiteStoreError, VectorStoreError) as e:
            raise HybridStoreError(f"Failed to create HybridStore: {e}") from e

    @property
    def sqlite(self) -> SQLiteStore:
        """The underlying SQLite store (used directly by reconcile transactions)."""
        return self._sqlite

    @property
    def chroma_available(self) -> bool:
        """Whether the last vector index operation succeeded."""
        return self._chroma_available

    async def close(self) -> None:
        """Wait for background embeddings, then close all stores and clients."""
        await self.drain_embeddings()
        await self._embedding_client.close()
        self._sqlite.close()
        # ChromaDB doesn't require explicit close

    async def __aenter__(self) -> "HybridStore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # =========================================================================
    # Embedding lifecycle
    # =========================================================================

    async def embed_memory(
        self, memory_id: str, timeout: Optional[float] = None
    ) -> EmbeddingStatus:
        """Embed one PENDING record and index it.

        Args:
            memory_id: Record to embed
            timeout: Deadline in seconds (default: the background deadline)

        Returns:
            READY on success, FAILED when embedding or indexing failed, or the
            record's existing status when it was no longer pending
        """
        memory = self._sqlite.get_memory(memory_id)
        if memory is None:
            logger.warning(f"Cannot embed unknown memory {memory_id}")
            return EmbeddingStatus.FAILED

        status = EmbeddingStatus(memory["embedding_status"])
        if status is not EmbeddingStatus.PENDING:
            return status

        deadline = timeout if timeout is not None else self._embedding_timeout
        try:
            embedding = await self._embedding_client.embed(
                memory["content"], is_query=False, deadline=deadline
            )
            self._chroma.upsert(
                memory_id, embedding, memory["content"], _vector_metadata(memory)
            )
        except EmbeddingError as e:
            logger.warning(f"Embedding generation failed for memory {memory_id}: {e}")
            self._sqlite.set_embedding_status(memory_id, EmbeddingStatus.FAILED, str(e))
            return EmbeddingStatus.FAILED
        except VectorStoreError as e:
            logger.warning(f"Vector index write failed for memory {memory_id}: {e}")
            self._chroma_available = False
            self._sqlite.set_embedding_status(memory_id, EmbeddingStatus.FAILED, str(e))
            return EmbeddingStatus.FAILED

        self._chroma_available = True
        self._sqlite.set_embedding_status(memory_id, EmbeddingStatus.READY)
        logger.debug(f"Embedded memory {memory_id}")
        return EmbeddingStatus.READY

    def schedule_embedding(self, memory_id: str) -> asyncio.Task:
        """Embed a record in the background; the task is tracked until done."""
        task = asyncio.create_task(self.embed_memory(memory_id))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)
        return task

    async def drain_embeddings(self) -> None:
        """Wait for every scheduled background embedding to finish."""
        if not self._pending_tasks:
            return
        results = await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Background embedding task failed: {result}")

    async def process_pending_embeddings(self, batch_size: int = 10) -> dict[str, int]:
        """Embed records still PENDING, one batch request at a time.

        A failed batch request leaves its records PENDING for a later run;
        a failed index write marks the record FAILED.

        Returns:
            Counts of "ready", "failed" and "pending" records after the run
        """
        counts = {"ready": 0, "failed": 0, "pending": 0}
        pending = self._sqlite.list_pending_embeddings(limit=batch_size)
        if not pending:
            return counts

        try:
            vectors = await self._embedding_client.embed_batch(
                [memory["content"] for memory in pending], is_query=False
            )
        except EmbeddingError as e:
            logger.warning(f"Batch embedding failed, {len(pending)} records stay pending: {e}")
            counts["pending"] = len(pending)
            return counts

        for memory, vector in zip(pending, vectors):
            try:
                self._chroma.upsert(
                    memory["id"], vector, memory["content"], _vector_metadata(memory)
                )
            except VectorStoreError as e:
                logger.warning(f"Vector index write failed for memory {memory['id']}: {e}")
                self._chroma_available = False
                self._sqlite.set_embedding_status(memory["id"], EmbeddingStatus.FAILED, str(e))
                counts["failed"] += 1
                continue
            self._sqlite.set_embedding_status(memory["id"], EmbeddingStatus.READY)
            counts["ready"] += 1

        return counts

    # =========================================================================
    # Vector search
    # =========================================================================

    async def embed_query(self, query: str, timeout: Optional[float] = None) -> list[float]:
        """Embed a retrieval query under a deadline.

        Raises:
            EmbeddingError: If the embedding fails or misses the deadline
        """
        deadline = timeout if timeout is not None else self._embedding_timeout
        return await self._embedding_client.embed(query, is_query=True, deadline=deadline)

    def vector_similarities(
        self, owner_id: str, query_embedding: list[float], n_results: int = 20
    ) -> dict[str, float]:
        """Cosine similarity of the owner's nearest records to a query vector.

        Returns:
            Mapping of record ID to similarity in [0, 1]

        Raises:
            VectorStoreError: If the vector index query fails
        """
        try:
            results = self._chroma.query(
                query_embedding=query_embedding,
                n_results=n_results,
                where={"owner_id": owner_id},
            )
        except VectorStoreError:
            self._chroma_available = False
            raise
        self._chroma_available = True

        similarities: dict[str, float] = {}
        for memory_id, distance in zip(results["ids"], results["distances"]):
            # Cosine distance: 0 = identical, 2 = opposite
            similarities[memory_id] = max(0.0, min(1.0, 1 - (distance / 2)))
        return similarities

    def mark_superseded_in_index(self, memory_ids: list[str]) -> None:
        """Flag superseded records in the vector index (best effort)."""
        try:
            self._chroma.update_metadata(memory_ids, {"is_current": False})
        except VectorStoreError as e:
            logger.warning(f"Failed to flag superseded vectors {memory_ids}: {e}")

    # =========================================================================
    # Record operations (delegated to SQLite)
    # =========================================================================

    def get_memory(self, memory_id: str) -> Optional[dict[str, Any]]:
        """Get a record by ID, current or superseded.

        Raises:
            HybridStoreError: If the lookup fails
        """
        try:
            return self._sqlite.get_memory(memory_id)
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Failed to get memory: {e}") from e

    def get_memories(self, memory_ids: list[str]) -> list[dict[str, Any]]:
        try:
            return self._sqlite.get_memories(memory_ids)
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Failed to get memories: {e}") from e

    def list_memories(
        self,
        owner_id: str,
        category: Optional[str] = None,
        current_only: bool = True,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """List an owner's records, newest first."""
        try:
            return self._sqlite.list_memories(
                owner_id=owner_id,
                category=category,
                current_only=current_only,
                limit=limit,
            )
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Failed to list memories: {e}") from e

    def search_fts(
        self,
        query: str,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        exclude_category: Optional[str] = None,
        min_relevance: Optional[float] = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Full-text search over current records."""
        try:
            return self._sqlite.search_fts(
                query=query,
                owner_id=owner_id,
                category=category,
                exclude_category=exclude_category,
                min_relevance=min_relevance,
                limit=limit,
            )
        except SQLiteStoreError as e:
            raise HybridStoreError(f"FTS search failed: {e}") from e

    def find_by_ordinal_subject(self, owner_id: str, subject: str) -> list[dict[str, Any]]:
        try:
            return self._sqlite.find_by_ordinal_subject(owner_id, subject)
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Ordinal lookup failed: {e}") from e

    def fingerprint_history(self, owner_id: str, fingerprint: str) -> list[dict[str, Any]]:
        try:
            return self._sqlite.fingerprint_history(owner_id, fingerprint)
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Failed to read fingerprint history: {e}") from e

    def touch_memories(self, memory_ids: list[str]) -> int:
        """Record retrieval hits for the given records."""
        try:
            return self._sqlite.touch_memories(memory_ids)
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Failed to touch memories: {e}") from e

    def count_memories(
        self,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        current_only: bool = False,
    ) -> int:
        try:
            return self._sqlite.count_memories(
                owner_id=owner_id, category=category, current_only=current_only
            )
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Failed to count memories: {e}") from e

    async def clear(self) -> int:
        """Delete all data from both stores. Returns the number of records deleted."""
        try:
            count = self._sqlite.clear()
            try:
                self._chroma.clear()
            except VectorStoreError as e:
                logger.warning(f"Failed to clear ChromaDB: {e}")
            return count
        except SQLiteStoreError as e:
            raise HybridStoreError(f"Failed to clear stores: {e}") from e
