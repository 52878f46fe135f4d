"""
Tests for OllamaEmbedder using httpx.MockTransport.
"""

import json

import httpx
import pytest

from diffwarden.errors import EmbeddingError
from diffwarden.indexing.embeddings import OllamaEmbedder


def embedder_for(handler, dimension: int = 3) -> OllamaEmbedder:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaEmbedder(base_url="http://ollama:11434/", model="embed-test", dimension=dimension, client=client)


class TestOllamaEmbedder:
    """Tests for the Ollama embedding client."""

    @pytest.mark.asyncio
    async def test_embed_batch(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]})

        vectors = await embedder_for(handler).embed(["a", "b"])

        assert vectors == [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]
        assert seen["url"] == "http://ollama:11434/api/embed"
        assert seen["body"] == {"model": "embed-test", "input": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await embedder_for(handler).embed([]) == []

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="model not loaded")

        with pytest.raises(EmbeddingError):
            await embedder_for(handler).embed(["a"])

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        with pytest.raises(EmbeddingError):
            await embedder_for(handler).embed(["a"])

    @pytest.mark.asyncio
    async def test_count_mismatch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]})

        with pytest.raises(EmbeddingError, match="Expected 2"):
            await embedder_for(handler).embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"embeddings": [[0.1, 0.2]]})

        with pytest.raises(EmbeddingError, match="dimension"):
            await embedder_for(handler).embed(["a"])

    def test_dimension_property(self):
        assert embedder_for(lambda r: httpx.Response(200), dimension=1024).dimension == 1024
