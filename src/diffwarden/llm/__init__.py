"""Generative model clients."""

from .client import (
    GroqClient,
    HybridModelClient,
    ModelClient,
    ModelResponse,
    OllamaClient,
    create_model_client,
)

__all__ = [
    "GroqClient",
    "HybridModelClient",
    "ModelClient",
    "ModelResponse",
    "OllamaClient",
    "create_model_client",
]
