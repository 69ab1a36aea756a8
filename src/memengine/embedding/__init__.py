"""Embedding layer for memengine."""

from memengine.embedding.ollama import EMBED_PREFIX, EmbeddingError, OllamaClient

__all__ = ["OllamaClient", "EmbeddingError", "EMBED_PREFIX"]
