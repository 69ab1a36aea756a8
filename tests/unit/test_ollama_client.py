"""Unit tests for the Ollama embedding client."""

import asyncio

import httpx
import pytest

from memengine.embedding.ollama import EMBED_PREFIX, EmbeddingError, OllamaClient
from memengine.errors import UpstreamServiceError

EMBED_URL = "http://localhost:11434/api/embed"


class TestOllamaClientInit:
    """Tests for OllamaClient initialization."""

    def test_default_values(self):
        """Test default initialization values."""
        client = OllamaClient()
        assert client.host == "http://localhost:11434"
        assert client.model == "mxbai-embed-large"
        assert client.timeout == 30.0

    def test_host_trailing_slash_stripped(self):
        client = OllamaClient(host="http://custom:8080/", model="custom-model", timeout=60.0)
        assert client.host == "http://custom:8080"
        assert client.model == "custom-model"
        assert client.timeout == 60.0

    def test_embedding_error_is_upstream_error(self):
        """Callers can handle every collaborator failure as one class."""
        assert issubclass(EmbeddingError, UpstreamServiceError)


class TestEmbed:
    """Tests for single text embedding."""

    @pytest.mark.asyncio
    async def test_embed_document_no_prefix(self, httpx_mock):
        """Facts are embedded without the retrieval prefix."""
        httpx_mock.add_response(
            method="POST",
            url=EMBED_URL,
            match_json={"model": "mxbai-embed-large", "input": "User drives Tesla Model 3."},
            json={"embeddings": [[0.1, 0.2, 0.3]]},
        )

        async with OllamaClient() as client:
            result = await client.embed("User drives Tesla Model 3.", is_query=False)

        assert result == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_embed_query_adds_prefix(self, httpx_mock):
        """Queries get the mxbai retrieval prefix."""
        httpx_mock.add_response(
            method="POST",
            url=EMBED_URL,
            match_json={
                "model": "mxbai-embed-large",
                "input": f"{EMBED_PREFIX}What car do I drive?",
            },
            json={"embeddings": [[0.4, 0.5]]},
        )

        async with OllamaClient() as client:
            result = await client.embed("What car do I drive?", is_query=True)

        assert result == [0.4, 0.5]

    @pytest.mark.asyncio
    async def test_query_prefix_only_for_mxbai(self, httpx_mock):
        """Other models receive the raw query."""
        httpx_mock.add_response(
            method="POST",
            url=EMBED_URL,
            match_json={"model": "nomic-embed-text", "input": "What car do I drive?"},
            json={"embeddings": [[0.4]]},
        )

        async with OllamaClient(model="nomic-embed-text") as client:
            assert await client.embed("What car do I drive?", is_query=True) == [0.4]

    @pytest.mark.asyncio
    async def test_embed_empty_text_raises(self):
        async with OllamaClient() as client:
            with pytest.raises(ValueError, match="empty"):
                await client.embed("   ")

    @pytest.mark.asyncio
    async def test_embed_no_embeddings_raises(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=EMBED_URL, json={"embeddings": []})

        async with OllamaClient() as client:
            with pytest.raises(EmbeddingError, match="No embedding"):
                await client.embed("some text")

    @pytest.mark.asyncio
    async def test_embed_http_error(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=EMBED_URL, status_code=500, text="model not loaded")

        async with OllamaClient() as client:
            with pytest.raises(EmbeddingError, match="500"):
                await client.embed("some text")

    @pytest.mark.asyncio
    async def test_embed_timeout_not_retried(self, httpx_mock):
        httpx_mock.add_exception(httpx.TimeoutException("Request timed out"))

        async with OllamaClient() as client:
            with pytest.raises(EmbeddingError, match="timeout"):
                await client.embed("some text")

    @pytest.mark.asyncio
    async def test_embed_misses_deadline(self, mocker):
        """A deadline shorter than the request raises EmbeddingError."""

        async def slow_embed(*args, **kwargs):
            await asyncio.sleep(1.0)
            return [[0.1]]

        client = OllamaClient()
        mocker.patch.object(client, "_post_embed", side_effect=slow_embed)

        with pytest.raises(EmbeddingError, match="deadline"):
            await client.embed("some text", deadline=0.01)
        await client.close()


class TestRetries:
    """Tests for connection retry behavior."""

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self, httpx_mock, mocker):
        """Connection errors are retried with exponential backoff."""
        mock_sleep = mocker.patch("asyncio.sleep", return_value=None)
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))
        httpx_mock.add_response(method="POST", url=EMBED_URL, json={"embeddings": [[0.7]]})

        async with OllamaClient() as client:
            result = await client.embed("some text")

        assert result == [0.7]
        assert mock_sleep.call_count == 2
        mock_sleep.assert_any_call(0.5)
        mock_sleep.assert_any_call(1.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, httpx_mock, mocker):
        mocker.patch("asyncio.sleep", return_value=None)
        for _ in range(3):
            httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        async with OllamaClient() as client:
            with pytest.raises(EmbeddingError, match="after 3 attempts"):
                await client.embed("some text")


class TestEmbedBatch:
    """Tests for batch embedding of pending records."""

    @pytest.mark.asyncio
    async def test_batches_requests(self, httpx_mock):
        """Texts are sent batch_size per request, in order."""
        httpx_mock.add_response(
            method="POST",
            url=EMBED_URL,
            match_json={"model": "mxbai-embed-large", "input": ["one", "two"]},
            json={"embeddings": [[1.0], [2.0]]},
        )
        httpx_mock.add_response(
            method="POST",
            url=EMBED_URL,
            match_json={"model": "mxbai-embed-large", "input": ["three"]},
            json={"embeddings": [[3.0]]},
        )

        async with OllamaClient() as client:
            vectors = await client.embed_batch(["one", "two", "three"], batch_size=2)

        assert vectors == [[1.0], [2.0], [3.0]]

    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=EMBED_URL, json={"embeddings": [[1.0]]})

        async with OllamaClient() as client:
            with pytest.raises(EmbeddingError, match="Expected 2"):
                await client.embed_batch(["one", "two"])

    @pytest.mark.asyncio
    async def test_empty_list_raises(self):
        async with OllamaClient() as client:
            with pytest.raises(ValueError):
                await client.embed_batch([])


class TestClientLifecycle:
    """Tests for HTTP client management."""

    @pytest.mark.asyncio
    async def test_close_releases_client(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=EMBED_URL, json={"embeddings": [[0.1]]})
        client = OllamaClient()
        await client.embed("some text")
        assert client._client is not None

        await client.close()
        assert client._client is None
        # Closing twice is harmless
        await client.close()
