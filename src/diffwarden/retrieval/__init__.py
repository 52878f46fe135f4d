"""Cross-file context retrieval for review prompts."""

from .context import ContextChunk, ContextRetriever, RetrievedContext, format_context_for_prompt
from .signals import ChangeSignals, analyze_changes, is_architecturally_important

__all__ = [
    "ChangeSignals",
    "ContextChunk",
    "ContextRetriever",
    "RetrievedContext",
    "analyze_changes",
    "format_context_for_prompt",
    "is_architecturally_important",
]
