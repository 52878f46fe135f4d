"""Exception taxonomy for diffwarden.

Only ``ConfigurationError`` is fatal (at startup). Everything else is caught
at a file or comment boundary and surfaced in the review summary.
"""


class DiffWardenError(Exception):
    """Base class for all diffwarden errors."""


class ConfigurationError(DiffWardenError):
    """Missing or invalid configuration (credentials, backends)."""


class SourceControlError(DiffWardenError):
    """The hosting API (or local git) could not serve a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RetrievalError(DiffWardenError):
    """Context could not be retrieved; analysis continues without it."""


class VectorStoreError(RetrievalError):
    """Vector store unreachable, namespace absent or rejected a request."""


class EmbeddingError(RetrievalError):
    """The embedding service failed to embed a batch."""


class ModelInvocationError(DiffWardenError):
    """The generative model failed in a way that should not be retried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientModelError(ModelInvocationError):
    """Timeouts, connection resets and 5xx responses."""


class RateLimitError(TransientModelError):
    """Quota or rate-limit responses (HTTP 429)."""


class ReconciliationError(DiffWardenError):
    """A reported line number cannot be mapped to a physical line."""

    def __init__(self, message: str, line: int):
        super().__init__(message)
        self.line = line


class PublishError(DiffWardenError):
    """The hosting API rejected a review comment."""

    def __init__(self, message: str, path: str, line: int | None = None):
        super().__init__(message)
        self.path = path
        self.line = line
