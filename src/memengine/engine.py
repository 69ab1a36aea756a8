"""Entry points of the memory engine.

MemoryEngine ties the pipeline together:

- store_fact: boilerplate check, routing, compression, fingerprinting,
  reconcile (insert, boost or supersede) and embedding
- retrieve_context: routing, candidate gathering, scoring, selection and
  context assembly under token budgets
- correct_response: the post-generation correctness primitives

All thresholds, weights and budgets come from the EngineOptions passed in;
the engine holds no global state.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from memengine.config import EngineOptions, EngineSettings
from memengine.context.assembler import ContextAssembler, RequestContext
from memengine.correction.primitives import CorrectionResult, MemoryItem, run_correction_layer
from memengine.memory.compression import (
    FactCompressor,
    detect_explicit_request,
    detect_user_priority,
    is_boilerplate,
)
from memengine.memory.fingerprint import detect_fingerprint
from memengine.memory.ordinals import detect_ordinal
from memengine.memory.reconcile import Reconciler
from memengine.memory.types import (
    CategoryProfile,
    EmbeddingStatus,
    Exchange,
    MemoryRecord,
    ReconcileAction,
    RetrievalResult,
    StoreResult,
)
from memengine.retrieval.retriever import Retriever
from memengine.routing.router import CategoryRouter
from memengine.storage.hybrid import HybridStore
from memengine.summarizer import OllamaSummarizer

logger = logging.getLogger(__name__)


class MemoryEngine:
    """Long-term memory for one deployment, shared by all owners.

    Args:
        store: HybridStore for records and vectors
        summarizer: Object with an async summarize(prompt, max_tokens) method,
            or None to always store exchanges uncompressed
        options: Engine options (default: EngineOptions())
        router: Category router (default: heuristic strategy)

    Example:
        >>> engine = await MemoryEngine.create(EngineSettings())
        >>> await engine.store_fact("u1", "I drive a Tesla Model 3")
        >>> result = await engine.retrieve_context("u1", "What car do I drive?")
        >>> await engine.close()
    """

    def __init__(
        self,
        store: HybridStore,
        summarizer: Any = None,
        options: Optional[EngineOptions] = None,
        router: Optional[CategoryRouter] = None,
    ):
        self.options = options or EngineOptions()
        self.store = store
        self.summarizer = summarizer
        self.router = router or CategoryRouter(options=self.options)
        self.compressor = FactCompressor(summarizer, self.options)
        self.reconciler = Reconciler(store, self.options)
        self.retriever = Retriever(store, self.router, self.options)
        self.assembler = ContextAssembler(self.options.budgets)

    @classmethod
    async def create(
        cls,
        settings: Optional[EngineSettings] = None,
        options: Optional[EngineOptions] = None,
        ephemeral: bool = False,
        sqlite_path: Optional[Path] = None,
        chroma_path: Optional[Path] = None,
    ) -> "MemoryEngine":
        """Build an engine with Ollama clients and SQLite/ChromaDB storage.

        Args:
            settings: Environment settings (default: EngineSettings())
            options: Explicit options (default: settings.to_options())
            ephemeral: Use in-memory storage (testing)
            sqlite_path: Override for the SQLite path
            chroma_path: Override for the ChromaDB path

        Raises:
            HybridStoreError: If storage initialization fails
        """
        settings = settings or EngineSettings()
        options = options or settings.to_options()
        store = await HybridStore.create(
            sqlite_path=sqlite_path or settings.get_sqlite_path(),
            chroma_path=chroma_path or settings.get_chroma_path(),
            collection_name=settings.collection_name,
            ollama_host=settings.ollama_host,
            ollama_model=settings.embedding_model,
            ollama_timeout=float(settings.ollama_timeout),
            embedding_timeout=options.embedding_timeout,
            ephemeral=ephemeral,
        )
        summarizer = OllamaSummarizer(
            host=settings.ollama_host,
            model=settings.summarizer_model,
            timeout=settings.summarizer_timeout,
        )
        return cls(store=store, summarizer=summarizer, options=options)

    async def close(self) -> None:
        """Wait for background embeddings and release clients and stores."""
        await self.store.close()
        if self.summarizer is not None and hasattr(self.summarizer, "close"):
            await self.summarizer.close()

    async def __aenter__(self) -> "MemoryEngine":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # =========================================================================
    # Storage pipeline
    # =========================================================================

    async def store_fact(
        self,
        owner_id: str,
        exchange: Union[Exchange, str],
        explicit: Optional[bool] = None,
    ) -> StoreResult:
        """Store the durable facts of one exchange.

        Args:
            owner_id: Owner the fact belongs to
            exchange: Exchange, or the user's text alone
            explicit: Force (True/False) the explicit-storage flag; None
                detects phrases such as "remember this exactly"

        Returns:
            StoreResult describing what happened

        Raises:
            ValueError: If owner_id is empty
            StorageError: If the SQLite store cannot be written
        """
        if not owner_id:
            raise ValueError("Owner ID cannot be empty")
        if isinstance(exchange, str):
            exchange = Exchange(user_text=exchange)
        user_text = exchange.user_text or ""
        opts = self.options

        if is_boilerplate(user_text, exchange.reply_text):
            logger.debug(f"Skipping boilerplate exchange for owner {owner_id}")
            return StoreResult(success=False, action=ReconcileAction.SKIPPED, reason="boilerplate")

        routing = self.router.route(user_text)
        compression = await self.compressor.compress(user_text, exchange.reply_text)
        fact = compression.fact

        if explicit is None:
            explicit = detect_explicit_request(user_text)
        relevance = opts.default_relevance
        if explicit or detect_user_priority(user_text):
            relevance = max(relevance, opts.priority_relevance)

        metadata: dict[str, Any] = dict(compression.metadata)
        metadata["explicit_storage_request"] = bool(explicit)
        metadata["routing_confidence"] = round(routing.confidence, 3)
        ordinal = detect_ordinal(user_text) or detect_ordinal(fact)
        if ordinal is not None:
            metadata["ordinal"] = ordinal.ordinal
            metadata["ordinal_subject"] = ordinal.subject
            metadata["ordinal_value"] = ordinal.value

        fingerprint = detect_fingerprint(fact, opts.indicator_only_confidence_factor)
        if not fingerprint.values:
            from_source = detect_fingerprint(user_text, opts.indicator_only_confidence_factor)
            if from_source.values or fingerprint.fingerprint is None:
                fingerprint = from_source

        result = await self.reconciler.reconcile(
            owner_id=owner_id,
            category=routing.primary_category,
            fact=fact,
            subcategory=routing.subcategory,
            relevance_score=relevance,
            metadata=metadata,
            fingerprint=fingerprint,
        )

        self._check_capacity(owner_id, routing.primary_category)

        if result.action is ReconcileAction.BOOST:
            existing = self.store.get_memory(result.memory_id)
            embedding_status = (
                EmbeddingStatus(existing["embedding_status"]) if existing else None
            )
        elif explicit:
            embedding_status = await self.store.embed_memory(
                result.memory_id, timeout=opts.explicit_embedding_timeout
            )
        else:
            self.store.schedule_embedding(result.memory_id)
            embedding_status = EmbeddingStatus.PENDING

        logger.info(
            f"Stored fact for owner {owner_id}: {result.action.value} {result.memory_id} "
            f"in {routing.primary_category} (confidence={routing.confidence:.2f})"
        )
        return StoreResult(
            success=True,
            action=result.action,
            memory_id=result.memory_id,
            category=routing.primary_category,
            routing_confidence=routing.confidence,
            content=fact,
            superseded_ids=result.superseded_ids,
            compressed=compression.compressed,
            embedding_status=embedding_status,
        )

    def _check_capacity(self, owner_id: str, category: str) -> None:
        profile = CategoryProfile(
            name=category,
            token_capacity=self.options.category_token_capacity,
            current_token_usage=self.store.sqlite.category_token_usage(owner_id, category),
        )
        if profile.over_capacity:
            logger.warning(
                f"Category {category} over capacity for owner {owner_id}: "
                f"{profile.current_token_usage}/{profile.token_capacity} tokens"
            )

    # =========================================================================
    # Retrieval pipeline
    # =========================================================================

    async def retrieve_context(
        self,
        owner_id: str,
        query: str,
        document: Optional[str] = None,
        reference_corpus: Optional[str] = None,
    ) -> RetrievalResult:
        """Retrieve memories for a query and assemble the budgeted context.

        Raises:
            ValueError: If owner_id is empty
            StorageError: If the SQLite store cannot be read
        """
        result = await self.retriever.retrieve(owner_id, query)
        request = RequestContext(
            query=query or "", document_text=document, reference_corpus=reference_corpus
        )
        result.context = self.assembler.assemble(result.records, request)
        result.telemetry["context_tokens"] = result.context.total_tokens
        return result

    def correct_response(
        self,
        generated_text: str,
        memory_set: Sequence[MemoryItem],
        query: str,
    ) -> CorrectionResult:
        """Run the correctness primitives over a generated answer."""
        return run_correction_layer(generated_text, memory_set, query)

    # =========================================================================
    # Inspection and maintenance
    # =========================================================================

    def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        """A record by ID, including superseded ones."""
        row = self.store.get_memory(memory_id)
        return MemoryRecord.from_row(row) if row else None

    def fingerprint_history(self, owner_id: str, fingerprint: str) -> list[MemoryRecord]:
        """Every record ever stored for an owner's fingerprint, oldest first."""
        return [
            MemoryRecord.from_row(row)
            for row in self.store.fingerprint_history(owner_id, fingerprint)
        ]

    def count_memories(self, owner_id: Optional[str] = None, current_only: bool = True) -> int:
        return self.store.count_memories(owner_id=owner_id, current_only=current_only)

    async def process_pending_embeddings(self, batch_size: int = 10) -> dict[str, int]:
        """Embed records left pending, for example after a restart."""
        return await self.store.process_pending_embeddings(batch_size=batch_size)
