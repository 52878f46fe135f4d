"""
Embeddings Client

Embedder protocol plus an Ollama implementation over httpx.
"""

from typing import Protocol

import httpx
import structlog

from diffwarden.errors import EmbeddingError

logger = structlog.get_logger(__name__)


class Embedder(Protocol):
    """Protocol for embedding services."""

    @property
    def dimension(self) -> int:
        """Vector dimension produced by ``embed``."""
        ...

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in order

        Raises:
            EmbeddingError: If the service fails
        """
        ...


class OllamaEmbedder:
    """Embeddings from a local Ollama server (``/api/embed``)."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "mxbai-embed-large",
        dimension: int = 1024,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize embedder.

        Args:
            base_url: Ollama server URL
            model: Embedding model name
            dimension: Expected vector dimension
            timeout: Request timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._dimension = dimension
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def dimension(self) -> int:
        return self._dimension

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            response = await self.client.post(
                f"{self.base_url}/api/embed",
                json={"model": self.model, "input": texts},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("Embedding request failed", model=self.model, error=str(e))
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        vectors = data.get("embeddings") or []
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}"
            )
        for vector in vectors:
            if len(vector) != self._dimension:
                raise EmbeddingError(
                    f"Embedding dimension {len(vector)} does not match configured {self._dimension}"
                )
        return vectors
