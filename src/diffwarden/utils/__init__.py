"""Shared utilities: retry policy and TTL cache."""

from .cache import TTLCache
from .retry import ErrorClass, RetryConfig, RetryPolicy, classify_error

__all__ = [
    "ErrorClass",
    "RetryConfig",
    "RetryPolicy",
    "TTLCache",
    "classify_error",
]
