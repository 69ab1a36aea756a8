"""ChromaDB vector index for fact embeddings.

The index holds one vector per record ID together with the owner, category
and current flag needed to filter queries. SQLite stays the source of truth;
the index only answers "which of this owner's facts are nearest to this
query vector". Collections use cosine distance; a PersistentClient backs
the server and an EphemeralClient backs the tests.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import chromadb  # type: ignore[import-not-found]
from chromadb.api.models.Collection import Collection  # type: ignore[import-not-found]

from memengine.errors import StorageError

logger = logging.getLogger(__name__)


class VectorStoreError(StorageError):
    """Raised when the vector index cannot be read or written."""

    pass


class ChromaStore:
    """Vector index using ChromaDB.

    Args:
        db_path: Path to ChromaDB persistent storage directory.
                 Defaults to ~/.memengine/chroma_db.
        collection_name: Name of the collection (default: "facts")
        ephemeral: If True, use in-memory storage for testing (default: False)

    Attributes:
        db_path: Path to database storage (None if ephemeral)
        collection_name: Name of the active collection
        ephemeral: Whether using ephemeral storage
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        collection_name: str = "facts",
        ephemeral: bool = False,
    ):
        self.collection_name = collection_name
        self.ephemeral = ephemeral

        if ephemeral:
            self.db_path = None
        else:
            self.db_path = db_path or Path.home() / ".memengine" / "chroma_db"

        try:
            if ephemeral:
                self._client = chromadb.EphemeralClient()
            else:
                if self.db_path is not None:
                    self.db_path.mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=str(self.db_path))

            self._collection = self._get_or_create_collection()

        except Exception as e:
            raise VectorStoreError(f"Failed to initialize ChromaDB storage: {e}") from e

    def _get_or_create_collection(self) -> Collection:
        """Get existing collection or create new one with cosine distance.

        Raises:
            VectorStoreError: If collection operations fail
        """
        try:
            # Cosine, not L2, for mxbai-embed-large
            return self._client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to get or create collection: {e}") from e

    def upsert(
        self,
        memory_id: str,
        embedding: list[float],
        document: str,
        metadata: dict[str, Any],
    ) -> None:
        """Add or replace the vector of one record.

        Args:
            memory_id: Record ID (shared with SQLite)
            embedding: Embedding vector
            document: Fact text
            metadata: Filterable fields (owner_id, category, is_current)

        Raises:
            VectorStoreError: If the write fails
        """
        try:
            self._collection.upsert(
                ids=[memory_id],
                embeddings=[embedding],  # type: ignore[arg-type]
                documents=[document],
                metadatas=[metadata],  # type: ignore[arg-type]
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to upsert vector {memory_id}: {e}") from e

    def query(
        self,
        query_embedding: list[float],
        n_results: int = 5,
        where: Optional[dict] = None,
    ) -> dict:
        """Nearest-neighbour search with optional metadata filtering.

        Args:
            query_embedding: Query vector to search for
            n_results: Number of results to return (default: 5)
            where: Optional metadata filter, e.g. {"owner_id": "u1"}

        Returns:
            Dictionary with ids, documents, metadatas and distances
            (lower is better for cosine)

        Raises:
            VectorStoreError: If search operation fails
        """
        empty: dict[str, list] = {"ids": [], "documents": [], "metadatas": [], "distances": []}
        try:
            total = self._collection.count()
            if total == 0:
                return empty

            include_fields: list[str] = ["documents", "metadatas", "distances"]
            if where is not None:
                results = self._collection.query(
                    query_embeddings=[query_embedding],  # type: ignore[arg-type]
                    n_results=min(n_results, total),
                    include=include_fields,  # type: ignore[arg-type]
                    where=where,  # type: ignore[arg-type]
                )
            else:
                results = self._collection.query(
                    query_embeddings=[query_embedding],  # type: ignore[arg-type]
                    n_results=min(n_results, total),
                    include=include_fields,  # type: ignore[arg-type]
                )

            # Results are wrapped per query embedding; we send exactly one
            return {
                "ids": results["ids"][0] if results["ids"] else [],
                "documents": results["documents"][0] if results["documents"] else [],
                "metadatas": results["metadatas"][0] if results["metadatas"] else [],
                "distances": results["distances"][0] if results["distances"] else [],
            }

        except Exception as e:
            raise VectorStoreError(f"Failed to search vectors: {e}") from e

    def update_metadata(self, ids: list[str], metadata: dict[str, Any]) -> None:
        """Apply the same metadata fields to several vectors.

        Raises:
            VectorStoreError: If the update fails
        """
        if not ids:
            return
        try:
            existing = self._collection.get(ids=ids, include=["metadatas"])
            found = existing["ids"] if existing["ids"] else []
            if not found:
                return
            merged = [
                {**(meta or {}), **metadata}
                for meta in (existing["metadatas"] or [{} for _ in found])
            ]
            self._collection.update(ids=found, metadatas=merged)  # type: ignore[arg-type]
        except Exception as e:
            raise VectorStoreError(f"Failed to update vector metadata: {e}") from e

    def delete(self, ids: list[str]) -> None:
        """Delete vectors by record IDs.

        Raises:
            VectorStoreError: If delete operation fails
        """
        if not ids:
            return
        try:
            self._collection.delete(ids=ids)
        except Exception as e:
            raise VectorStoreError(f"Failed to delete vectors: {e}") from e

    def count(self) -> int:
        """Number of vectors in the collection."""
        try:
            return self._collection.count()
        except Exception as e:
            raise VectorStoreError(f"Failed to count vectors: {e}") from e

    def clear(self) -> int:
        """Delete all vectors by dropping and recreating the collection.

        Returns:
            Number of vectors deleted
        """
        try:
            current_count = self._collection.count()
            if current_count == 0:
                return 0
            self._client.delete_collection(self.collection_name)
            self._collection = self._get_or_create_collection()
            return current_count
        except Exception as e:
            raise VectorStoreError(f"Failed to clear collection: {e}") from e
