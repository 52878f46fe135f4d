"""
Model Clients

Generative model clients over httpx: Groq (OpenAI-compatible chat
completions), Ollama, and a hybrid client that falls back from a primary
provider to a secondary one.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from diffwarden.errors import (
    ConfigurationError,
    ModelInvocationError,
    RateLimitError,
    TransientModelError,
)

logger = structlog.get_logger(__name__)

RATE_LIMIT_MARKERS = ("quota", "rate limit", "too many requests")


@dataclass
class ModelResponse:
    """Text produced by a model call."""

    text: str
    provider: str
    model: str
    usage: dict[str, Any] = field(default_factory=dict)


class ModelClient(Protocol):
    """Protocol for generative model providers."""

    async def generate(self, prompt: str) -> ModelResponse:
        """Generate a completion.

        Raises:
            RateLimitError: On quota or rate limiting
            TransientModelError: On timeouts, connection errors and 5xx
            ModelInvocationError: On any other failure
        """
        ...


def is_rate_limited(status_code: int | None, message: str) -> bool:
    lowered = message.lower()
    if status_code == 429:
        return True
    if status_code in (403, None) and any(marker in lowered for marker in RATE_LIMIT_MARKERS):
        return True
    return False


def raise_for_model_response(response: httpx.Response, provider: str) -> None:
    """Translate an HTTP error response into the model error taxonomy."""
    if response.status_code < 400:
        return
    message = f"{provider} returned HTTP {response.status_code}: {response.text[:500]}"
    if is_rate_limited(response.status_code, response.text):
        raise RateLimitError(message, status_code=response.status_code)
    if response.status_code >= 500:
        raise TransientModelError(message, status_code=response.status_code)
    raise ModelInvocationError(message, status_code=response.status_code)


class _HttpModelClient:
    provider = "http"

    def __init__(self, model: str, timeout: float = 120.0, client: httpx.AsyncClient | None = None):
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _post(self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> dict:
        try:
            response = await self.client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientModelError(f"{self.provider} request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientModelError(f"{self.provider} connection failed: {e}") from e

        raise_for_model_response(response, self.provider)
        try:
            return response.json()
        except ValueError as e:
            raise ModelInvocationError(f"{self.provider} returned invalid JSON") from e


class GroqClient(_HttpModelClient):
    """Groq chat completions (OpenAI-compatible)."""

    provider = "groq"

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        base_url: str = "https://api.groq.com/openai/v1",
        temperature: float = 0.3,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ConfigurationError("Groq API key is required")
        super().__init__(model, timeout, client)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature

    async def generate(self, prompt: str) -> ModelResponse:
        data = await self._post(
            f"{self.base_url}/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.temperature,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ModelInvocationError("Unexpected chat completion payload") from e
        return ModelResponse(text=text, provider=self.provider, model=self.model, usage=data.get("usage", {}))


class OllamaClient(_HttpModelClient):
    """Local Ollama generation (``/api/generate``)."""

    provider = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "codellama:7b",
        temperature: float = 0.3,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(model, timeout, client)
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature

    async def generate(self, prompt: str) -> ModelResponse:
        data = await self._post(
            f"{self.base_url}/api/generate",
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": self.temperature},
            },
        )
        if "response" not in data:
            raise ModelInvocationError("Unexpected Ollama payload")
        usage = {
            "prompt_tokens": data.get("prompt_eval_count", 0),
            "completion_tokens": data.get("eval_count", 0),
        }
        return ModelResponse(text=data["response"], provider=self.provider, model=self.model, usage=usage)


class HybridModelClient:
    """
    Primary provider with a fallback.

    A failed primary call falls through to the fallback. After a rate-limit
    error or ``max_consecutive_errors`` failures in a row the primary is
    switched off; it is switched back on when the fallback fails.
    """

    def __init__(self, primary: ModelClient, fallback: ModelClient, max_consecutive_errors: int = 3):
        self.primary = primary
        self.fallback = fallback
        self.max_consecutive_errors = max_consecutive_errors
        self.use_primary = True
        self.consecutive_errors = 0
        self.stats = {
            "primary_success": 0,
            "primary_failures": 0,
            "fallback_success": 0,
            "fallback_failures": 0,
            "total_requests": 0,
        }

    async def generate(self, prompt: str) -> ModelResponse:
        self.stats["total_requests"] += 1

        if self.use_primary:
            try:
                response = await self.primary.generate(prompt)
                self.consecutive_errors = 0
                self.stats["primary_success"] += 1
                return response
            except ModelInvocationError as e:
                self.consecutive_errors += 1
                self.stats["primary_failures"] += 1
                rate_limited = isinstance(e, RateLimitError)
                if rate_limited or self.consecutive_errors >= self.max_consecutive_errors:
                    logger.warning(
                        "Switching to fallback model",
                        reason="rate_limit" if rate_limited else "consecutive_errors",
                        error=str(e),
                    )
                    self.use_primary = False
                    self.consecutive_errors = 0
                else:
                    logger.warning("Primary model failed, falling back", error=str(e))

        try:
            response = await self.fallback.generate(prompt)
            self.stats["fallback_success"] += 1
            return response
        except ModelInvocationError:
            self.stats["fallback_failures"] += 1
            if not self.use_primary:
                logger.warning("Fallback model failed, switching back to primary")
                self.use_primary = True
                self.consecutive_errors = 0
            raise

    def get_stats(self) -> dict[str, Any]:
        return {
            **self.stats,
            "current_provider": "primary" if self.use_primary else "fallback",
            "consecutive_errors": self.consecutive_errors,
        }


def create_model_client(config: Any) -> ModelClient:
    """Build the configured model client from a ReviewerConfig."""
    if config.llm_provider == "groq":
        return GroqClient(
            api_key=config.groq_api_key,
            model=config.llm_model,
            timeout=config.model_timeout_seconds,
        )
    if config.llm_provider == "ollama":
        return OllamaClient(
            base_url=config.ollama_url,
            model=config.ollama_model,
            timeout=config.model_timeout_seconds,
        )
    if config.llm_provider == "hybrid":
        return HybridModelClient(
            primary=GroqClient(
                api_key=config.groq_api_key,
                model=config.llm_model,
                timeout=config.model_timeout_seconds,
            ),
            fallback=OllamaClient(
                base_url=config.ollama_url,
                model=config.ollama_model,
                timeout=config.model_timeout_seconds,
            ),
        )
    raise ConfigurationError(f"Unknown LLM provider: {config.llm_provider}")
