"""Ollama summarizer client used for fact compression.

Calls the Ollama /api/generate endpoint deterministically (temperature 0)
with a bounded output length. Transient connection errors are retried with
exponential backoff; every failure surfaces as SummarizerError so the fact
compressor can fall back to uncompressed storage.
"""

import asyncio
import logging
from typing import Any

import httpx

from memengine.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


class SummarizerError(UpstreamServiceError):
    """Raised when the summarizer cannot produce a completion."""

    pass


class OllamaSummarizer:
    """Async client for Ollama text generation.

    Args:
        host: Ollama server host URL (default: "http://localhost:11434")
        model: Generation model name (default: "llama3.2")
        timeout: Upper bound for one summarize call in seconds (default: 15)

    Example:
        >>> async with OllamaSummarizer() as summarizer:
        ...     facts = await summarizer.summarize("Extract facts: ...")
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "llama3.2",
        timeout: float = 15.0,
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

    async def __aenter__(self) -> "OllamaSummarizer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _generate(self, payload: dict, max_retries: int = 3, base_delay: float = 0.5) -> str:
        client = await self._get_client()
        for attempt in range(max_retries):
            try:
                response = await client.post(f"{self.host}/api/generate", json=payload)
                response.raise_for_status()
                result: dict[str, Any] = response.json()
                return str(result.get("response", ""))
            except httpx.ConnectError as e:
                if attempt < max_retries - 1:
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        f"Summarizer connection error (attempt {attempt + 1}/{max_retries}), "
                        f"retrying in {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)
                else:
                    raise SummarizerError(
                        f"Failed to connect to Ollama after {max_retries} attempts: {e}"
                    ) from e
            except httpx.TimeoutException as e:
                raise SummarizerError(f"Summarizer timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise SummarizerError(
                    f"Ollama API error: {e.response.status_code} - {e.response.text}"
                ) from e
            except httpx.RequestError as e:
                raise SummarizerError(f"Ollama request failed: {e}") from e
            except ValueError as e:
                raise SummarizerError(f"Invalid JSON from Ollama: {e}") from e
        raise SummarizerError("Summarizer exhausted retries")

    async def summarize(self, prompt: str, max_tokens: int = 100) -> str:
        """Generate a deterministic completion for prompt.

        Args:
            prompt: Full prompt text
            max_tokens: Output token cap (Ollama num_predict)

        Returns:
            Stripped completion text

        Raises:
            SummarizerError: On connection, HTTP, timeout or empty output
            ValueError: If prompt is empty
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0, "num_predict": max_tokens},
        }
        try:
            text = await asyncio.wait_for(self._generate(payload), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise SummarizerError(f"Summarizer timeout after {self.timeout}s") from e

        text = text.strip()
        if not text:
            raise SummarizerError("Summarizer returned an empty completion")
        return text
