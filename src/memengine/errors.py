"""Exception hierarchy for memengine.

Component modules define their own concrete exceptions (EmbeddingError in
embedding.ollama, SQLiteStoreError in storage.sqlite, ...) on top of these
bases so callers can handle a whole class of failure at once:

- UpstreamServiceError: a collaborator service (summarizer, embedder) failed.
  The owning component always resolves it with a deterministic fallback.
- StorageError: the persistent store or vector index failed. SQLite failures
  propagate to the caller of store_fact; vector index failures degrade
  retrieval instead.
"""


class MemoryEngineError(Exception):
    """Base exception for all memengine errors."""

    pass


class UpstreamServiceError(MemoryEngineError):
    """An external service the engine depends on failed or timed out."""

    pass


class StorageError(MemoryEngineError):
    """Storage layer failure."""

    pass
