"""Storage layer for memengine."""

from memengine.storage.chromadb import ChromaStore, VectorStoreError
from memengine.storage.hybrid import HybridStore, HybridStoreError
from memengine.storage.sqlite import (
    FingerprintConflictError,
    SQLiteStore,
    SQLiteStoreError,
    StoreBusyError,
)

__all__ = [
    "ChromaStore",
    "VectorStoreError",
    "HybridStore",
    "HybridStoreError",
    "FingerprintConflictError",
    "SQLiteStore",
    "SQLiteStoreError",
    "StoreBusyError",
]
