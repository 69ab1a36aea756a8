"""Unit tests for the Ollama summarizer client."""

import httpx
import pytest

from memengine.errors import UpstreamServiceError
from memengine.summarizer import OllamaSummarizer, SummarizerError

GENERATE_URL = "http://localhost:11434/api/generate"


class TestOllamaSummarizer:
    """Tests for deterministic fact summarization."""

    def test_defaults(self):
        summarizer = OllamaSummarizer(host="http://localhost:11434/")
        assert summarizer.host == "http://localhost:11434"
        assert summarizer.model == "llama3.2"
        assert summarizer.timeout == 15.0

    def test_error_hierarchy(self):
        assert issubclass(SummarizerError, UpstreamServiceError)

    @pytest.mark.asyncio
    async def test_summarize_sends_deterministic_payload(self, httpx_mock):
        """Temperature 0 and the output cap are sent with the prompt."""
        httpx_mock.add_response(
            method="POST",
            url=GENERATE_URL,
            match_json={
                "model": "llama3.2",
                "prompt": "Extract facts: I drive a Tesla",
                "stream": False,
                "options": {"temperature": 0, "num_predict": 100},
            },
            json={"response": "  Car: Tesla Model 3\n"},
        )

        async with OllamaSummarizer() as summarizer:
            result = await summarizer.summarize("Extract facts: I drive a Tesla", max_tokens=100)

        assert result == "Car: Tesla Model 3"

    @pytest.mark.asyncio
    async def test_empty_prompt_raises(self):
        async with OllamaSummarizer() as summarizer:
            with pytest.raises(ValueError):
                await summarizer.summarize("  ")

    @pytest.mark.asyncio
    async def test_empty_completion_raises(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=GENERATE_URL, json={"response": "   "})

        async with OllamaSummarizer() as summarizer:
            with pytest.raises(SummarizerError, match="empty"):
                await summarizer.summarize("prompt")

    @pytest.mark.asyncio
    async def test_http_error(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=GENERATE_URL, status_code=404, text="no model")

        async with OllamaSummarizer() as summarizer:
            with pytest.raises(SummarizerError, match="404"):
                await summarizer.summarize("prompt")

    @pytest.mark.asyncio
    async def test_timeout(self, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("too slow"))

        async with OllamaSummarizer() as summarizer:
            with pytest.raises(SummarizerError, match="timeout"):
                await summarizer.summarize("prompt")

    @pytest.mark.asyncio
    async def test_retries_then_fails(self, httpx_mock, mocker):
        mock_sleep = mocker.patch("asyncio.sleep", return_value=None)
        for _ in range(3):
            httpx_mock.add_exception(httpx.ConnectError("Connection refused"))

        async with OllamaSummarizer() as summarizer:
            with pytest.raises(SummarizerError, match="3 attempts"):
                await summarizer.summarize("prompt")
        assert mock_sleep.call_count == 2

    @pytest.mark.asyncio
    async def test_invalid_json(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=GENERATE_URL, text="not json")

        async with OllamaSummarizer() as summarizer:
            with pytest.raises(SummarizerError, match="Invalid JSON"):
                await summarizer.summarize("prompt")
