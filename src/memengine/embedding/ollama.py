"""Ollama embedding service for fact and query vectors.

Facts are embedded as documents; queries get the mxbai retrieval prefix.
Every call can carry its own deadline: background embeddings of ordinary
facts, the blocking embedding of explicitly stored facts and query
embeddings at retrieval time all run under different bounds. A missed
deadline or any transport failure raises EmbeddingError, which callers turn
into a FAILED embedding status or keyword-fallback retrieval.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from memengine.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

# Query prefix for mxbai-embed-large; stored facts are embedded without it
EMBED_PREFIX = "Represent this sentence for searching relevant passages: "


class EmbeddingError(UpstreamServiceError):
    """Raised when an embedding cannot be produced in time."""

    pass


class OllamaClient:
    """Async client for the Ollama /api/embed endpoint.

    Args:
        host: Ollama server host URL (default: "http://localhost:11434")
        model: Embedding model name (default: "mxbai-embed-large")
        timeout: HTTP timeout in seconds (default: 30)

    Example:
        >>> async with OllamaClient() as client:
        ...     vector = await client.embed("What car do I drive?", is_query=True, deadline=3.0)
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "mxbai-embed-large",
        timeout: float = 30.0,
    ):
        self.host = host.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _prepare(self, text: str, is_query: bool) -> str:
        if is_query and "mxbai" in self.model.lower():
            return f"{EMBED_PREFIX}{text}"
        return text

    async def _post_embed(
        self,
        inputs: str | list[str],
        max_retries: int = 3,
        base_delay: float = 0.5,
    ) -> list[list[float]]:
        """POST to /api/embed, retrying connection errors with backoff.

        Raises:
            EmbeddingError: On HTTP errors, timeouts or exhausted retries
        """
        client = await self._get_client()
        payload = {"model": self.model, "input": inputs}

        for attempt in range(max_retries):
            try:
                response = await client.post(f"{self.host}/api/embed", json=payload)
                response.raise_for_status()
                data: dict[str, Any] = response.json()
                return data.get("embeddings") or []

            except httpx.TimeoutException as e:
                raise EmbeddingError(
                    f"Embedding request timeout after {self.timeout}s (model {self.model})"
                ) from e

            except httpx.HTTPStatusError as e:
                raise EmbeddingError(
                    f"Ollama API error: {e.response.status_code} - {e.response.text}"
                ) from e

            except (httpx.ConnectError, httpx.RequestError) as e:
                if attempt < max_retries - 1:
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        f"Embedding request error (attempt {attempt + 1}/{max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    raise EmbeddingError(
                        f"Ollama embedding failed after {max_retries} attempts: {e}"
                    ) from e

        raise EmbeddingError("Embedding request exhausted retries")

    async def embed(
        self,
        text: str,
        is_query: bool = False,
        deadline: Optional[float] = None,
    ) -> list[float]:
        """Embed one text.

        Args:
            text: Fact or query text
            is_query: Apply the retrieval prefix for query embeddings
            deadline: Seconds before the call is abandoned (None: HTTP timeout only)

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the embedding fails or misses the deadline
            ValueError: If text is empty
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        request = self._post_embed(self._prepare(text, is_query))
        try:
            if deadline is not None:
                embeddings = await asyncio.wait_for(request, timeout=deadline)
            else:
                embeddings = await request
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding missed its {deadline}s deadline") from e

        if not embeddings:
            raise EmbeddingError("No embedding returned from Ollama API")
        return embeddings[0]

    async def embed_batch(
        self,
        texts: list[str],
        is_query: bool = False,
        batch_size: int = 32,
    ) -> list[list[float]]:
        """Embed several texts, batch_size per request.

        Used when re-embedding records left pending (for example after a
        restart).

        Raises:
            EmbeddingError: If a batch fails or returns the wrong count
            ValueError: If texts is empty
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        vectors: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            batch = texts[start : start + batch_size]
            embeddings = await self._post_embed([self._prepare(t, is_query) for t in batch])
            if len(embeddings) != len(batch):
                raise EmbeddingError(
                    f"Expected {len(batch)} embeddings, got {len(embeddings)}"
                )
            vectors.extend(embeddings)
        return vectors
