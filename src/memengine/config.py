"""Configuration settings for memengine.

This module provides:
- EngineSettings: Pydantic Settings loaded from the environment (MEMENGINE_
  prefix) and overridable by CLI arguments
- EngineOptions: the immutable options object passed explicitly into the
  engine, carrying every threshold, weight and budget
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScoringWeights(BaseModel):
    """Weights of the five retrieval signals. Must sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    semantic: float = Field(default=0.4, ge=0.0, le=1.0)
    keyword: float = Field(default=0.3, ge=0.0, le=1.0)
    recency: float = Field(default=0.1, ge=0.0, le=1.0)
    importance: float = Field(default=0.1, ge=0.0, le=1.0)
    usage: float = Field(default=0.1, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_sum(self) -> "ScoringWeights":
        total = self.semantic + self.keyword + self.recency + self.importance + self.usage
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.3f}")
        return self


class ContextBudgets(BaseModel):
    """Token ceilings enforced by the context assembler."""

    model_config = ConfigDict(frozen=True)

    memory: int = Field(default=2500, gt=0)
    document: int = Field(default=3000, gt=0)
    reference: int = Field(default=9000, gt=0)
    total: int = Field(default=15000, gt=0)


class EngineOptions(BaseModel):
    """Every tunable of the engine in one explicit, immutable object.

    The boost and penalty constants are calibration values. They are kept
    here so they can be tuned without touching the algorithms.
    """

    model_config = ConfigDict(frozen=True)

    # Routing
    semantic_weight: float = 8.0
    keyword_weight: float = 0.3
    pattern_weight: float = 0.5
    category_token_capacity: int = Field(default=50000, gt=0)

    # Compression
    max_fact_chars: int = Field(default=500, gt=0)
    max_uncompressed_chars: int = Field(default=1000, gt=0)
    priority_relevance: float = Field(default=0.85, ge=0.0, le=1.0)
    default_relevance: float = Field(default=0.5, ge=0.0, le=1.0)

    # Reconcile
    duplicate_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    duplicate_candidates: int = Field(default=5, gt=0)
    dedup_relevance_boost: float = Field(default=0.05, ge=0.0, le=1.0)
    supersession_min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    indicator_only_confidence_factor: float = Field(default=0.8, ge=0.0, le=1.0)
    reconcile_max_attempts: int = Field(default=3, gt=0)

    # Retrieval
    max_memories: int = Field(default=5, gt=0)
    memory_token_budget: int = Field(default=2400, gt=0)
    routing_confidence_cutoff: float = Field(default=0.8, ge=0.0, le=1.0)
    min_primary_candidates: int = Field(default=3, ge=0)
    primary_candidate_limit: int = Field(default=50, gt=0)
    fallback_limit: int = Field(default=10, gt=0)
    fallback_min_relevance: float = Field(default=0.3, ge=0.0, le=1.0)
    recent_candidate_limit: int = Field(default=20, gt=0)
    off_category_penalty: float = Field(default=0.8, ge=0.0, le=1.0)
    vector_candidates: int = Field(default=20, gt=0)
    min_semantic_similarity: float = Field(default=0.25, ge=0.0, le=1.0)
    ordinal_match_boost: float = 0.40
    ordinal_sibling_penalty: float = 0.20
    explicit_override_score: float = Field(default=1.4, gt=0.0)
    recent_window_days: int = Field(default=30, gt=0)
    recent_share: float = Field(default=0.7, ge=0.0, le=1.0)
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    # Context assembly
    budgets: ContextBudgets = Field(default_factory=ContextBudgets)

    # External call bounds (seconds)
    embedding_timeout: float = Field(default=3.0, gt=0)
    explicit_embedding_timeout: float = Field(default=5.0, gt=0)


class EngineSettings(BaseSettings):
    """Configuration settings for memengine.

    Settings are loaded from environment variables with the MEMENGINE_ prefix.
    CLI arguments can override these settings when provided.

    Attributes:
        sqlite_path: Path to SQLite database (default: ~/.memengine/memengine.db)
        chroma_path: Path to ChromaDB storage (default: ~/.memengine/chroma_db)
        collection_name: ChromaDB collection name (default: facts)
        ollama_host: Ollama server host URL (default: http://localhost:11434)
        embedding_model: Embedding model name (default: mxbai-embed-large)
        summarizer_model: Generation model used for fact compression
        log_level: Logging level (default: INFO)

    Example:
        >>> settings = EngineSettings()
        >>> settings.ollama_host
        'http://localhost:11434'

        >>> # Override via environment
        >>> # MEMENGINE_SUMMARIZER_MODEL=llama3.2
    """

    model_config = SettingsConfigDict(
        env_prefix="MEMENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Storage paths
    sqlite_path: Optional[Path] = Field(
        default=None,
        description="Path to SQLite database (default: ~/.memengine/memengine.db)",
    )
    chroma_path: Optional[Path] = Field(
        default=None,
        description="Path to ChromaDB storage (default: ~/.memengine/chroma_db)",
    )
    collection_name: str = Field(
        default="facts",
        description="ChromaDB collection name",
    )

    # Ollama configuration
    ollama_host: str = Field(
        default="http://localhost:11434",
        description="Ollama server host URL",
    )
    embedding_model: str = Field(
        default="mxbai-embed-large",
        description="Embedding model name",
    )
    summarizer_model: str = Field(
        default="llama3.2",
        description="Generation model used to compress exchanges into facts",
    )
    ollama_timeout: int = Field(
        default=30,
        description="Ollama request timeout in seconds",
    )
    summarizer_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound for one summarizer call in seconds",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # Tunables exposed through the environment
    max_memories: int = Field(default=5, gt=0, description="Records injected per query")
    memory_token_budget: int = Field(
        default=2400, gt=0, description="Token budget for injected memories"
    )
    duplicate_threshold: float = Field(
        default=0.3, ge=0.0, le=1.0, description="Lexical similarity counted as duplicate"
    )
    embedding_timeout: float = Field(
        default=3.0, gt=0, description="Timeout for query and background embeddings"
    )
    explicit_embedding_timeout: float = Field(
        default=5.0, gt=0, description="Blocking embedding timeout for explicit stores"
    )

    def get_sqlite_path(self) -> Optional[Path]:
        """Get the SQLite path, resolving to default if not set."""
        if self.sqlite_path:
            return self.sqlite_path.expanduser().resolve()
        return None

    def get_chroma_path(self) -> Optional[Path]:
        """Get the ChromaDB path, resolving to default if not set."""
        if self.chroma_path:
            return self.chroma_path.expanduser().resolve()
        return None

    def to_options(self) -> EngineOptions:
        """Build the explicit EngineOptions passed into the engine."""
        return EngineOptions(
            max_memories=self.max_memories,
            memory_token_budget=self.memory_token_budget,
            duplicate_threshold=self.duplicate_threshold,
            embedding_timeout=self.embedding_timeout,
            explicit_embedding_timeout=self.explicit_embedding_timeout,
        )
