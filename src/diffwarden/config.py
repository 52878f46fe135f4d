"""Configuration management for diffwarden.

All settings come from environment variables with sensible defaults for a
local Qdrant + Ollama setup.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from diffwarden.errors import ConfigurationError


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ReviewerConfig:
    """Reviewer service configuration."""

    # Storage backend type
    storage_backend: str = "qdrant"  # "qdrant" | "inmemory"

    # Qdrant configuration
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    distance: str = "cosine"  # "cosine" | "dot" | "euclid"

    # Ollama embedding configuration
    ollama_url: str = "http://localhost:11434"
    embedding_model: str = "mxbai-embed-large"
    embedding_dimension: int = 1024

    # Indexing
    chunk_size: int = 1000
    chunk_overlap: int = 200
    max_file_chars: int = 50_000
    batch_size: int = 64
    upsert_concurrency: int = 4

    # Retrieval
    similarity_threshold: float = 0.3
    retrieval_top_k: int = 10
    max_context_files: int = 5

    # LLM configuration
    llm_provider: str = "groq"  # "groq" | "ollama" | "hybrid"
    llm_model: str = "llama-3.3-70b-versatile"
    ollama_model: str = "codellama:7b"
    groq_api_key: str | None = None
    model_max_attempts: int = 3
    model_timeout_seconds: float = 120.0

    # Source control
    scm_backend: str = "github"  # "github" | "local"
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    webhook_secret: str | None = None
    repo_path: Path | None = None

    # Review behaviour
    parallel_reviews: int = 2
    max_comments_per_file: int = 10
    comment_delay_seconds: float = 0.2
    commenting_enabled: bool = True
    dedup_ttl_seconds: float = 24 * 60 * 60
    max_prompt_chars: int = 12_000
    log_model_responses: bool = False
    audit_log_path: Path | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ReviewerConfig":
        """Create configuration from environment variables."""
        repo_path = os.getenv("DIFFWARDEN_REPO_PATH")
        audit_log = os.getenv("DIFFWARDEN_AUDIT_LOG")

        return cls(
            storage_backend=os.getenv("DIFFWARDEN_STORAGE_BACKEND", "qdrant"),
            qdrant_url=os.getenv("QDRANT_URL", "http://localhost:6333"),
            qdrant_api_key=os.getenv("QDRANT_API_KEY"),
            distance=os.getenv("DIFFWARDEN_DISTANCE", "cosine"),
            ollama_url=os.getenv("OLLAMA_URL", "http://localhost:11434"),
            embedding_model=os.getenv("EMBEDDING_MODEL", "mxbai-embed-large"),
            embedding_dimension=int(os.getenv("EMBEDDING_DIMENSION", "1024")),
            chunk_size=int(os.getenv("DIFFWARDEN_CHUNK_SIZE", "1000")),
            chunk_overlap=int(os.getenv("DIFFWARDEN_CHUNK_OVERLAP", "200")),
            batch_size=int(os.getenv("DIFFWARDEN_BATCH_SIZE", "64")),
            upsert_concurrency=int(os.getenv("DIFFWARDEN_UPSERT_CONCURRENCY", "4")),
            similarity_threshold=float(os.getenv("DIFFWARDEN_SIMILARITY_THRESHOLD", "0.3")),
            retrieval_top_k=int(os.getenv("DIFFWARDEN_TOP_K", "10")),
            max_context_files=int(os.getenv("DIFFWARDEN_MAX_CONTEXT_FILES", "5")),
            llm_provider=os.getenv("DIFFWARDEN_LLM_PROVIDER", "groq"),
            llm_model=os.getenv("DIFFWARDEN_LLM_MODEL", "llama-3.3-70b-versatile"),
            ollama_model=os.getenv("OLLAMA_MODEL", "codellama:7b"),
            groq_api_key=os.getenv("GROQ_API_KEY"),
            model_max_attempts=int(os.getenv("DIFFWARDEN_MODEL_MAX_ATTEMPTS", "3")),
            scm_backend=os.getenv("DIFFWARDEN_SCM_BACKEND", "github"),
            github_token=os.getenv("GITHUB_TOKEN"),
            github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
            webhook_secret=os.getenv("GITHUB_WEBHOOK_SECRET"),
            repo_path=Path(repo_path) if repo_path else None,
            parallel_reviews=int(os.getenv("DIFFWARDEN_PARALLEL_REVIEWS", "2")),
            max_comments_per_file=int(os.getenv("DIFFWARDEN_MAX_COMMENTS", "10")),
            comment_delay_seconds=float(os.getenv("DIFFWARDEN_COMMENT_DELAY", "0.2")),
            commenting_enabled=_env_bool("DIFFWARDEN_COMMENTS_ENABLED", True),
            dedup_ttl_seconds=float(os.getenv("DIFFWARDEN_DEDUP_TTL", str(24 * 60 * 60))),
            log_model_responses=_env_bool("DIFFWARDEN_LOG_MODEL_RESPONSES", False),
            audit_log_path=Path(audit_log) if audit_log else None,
            host=os.getenv("DIFFWARDEN_HOST", "0.0.0.0"),
            port=int(os.getenv("DIFFWARDEN_PORT", "8000")),
            log_level=os.getenv("DIFFWARDEN_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """Check credentials and backend names.

        Raises:
            ConfigurationError: On the first problem found
        """
        if self.storage_backend not in ("qdrant", "inmemory"):
            raise ConfigurationError(f"Unknown storage backend: {self.storage_backend}")
        if self.llm_provider not in ("groq", "ollama", "hybrid"):
            raise ConfigurationError(f"Unknown LLM provider: {self.llm_provider}")
        if self.scm_backend not in ("github", "local"):
            raise ConfigurationError(f"Unknown source control backend: {self.scm_backend}")

        if self.scm_backend == "github" and not self.github_token:
            raise ConfigurationError("GITHUB_TOKEN is required for the github backend")
        if self.scm_backend == "local" and self.repo_path is None:
            raise ConfigurationError("DIFFWARDEN_REPO_PATH is required for the local backend")
        if self.llm_provider in ("groq", "hybrid") and not self.groq_api_key:
            raise ConfigurationError("GROQ_API_KEY is required for the groq provider")

        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError("chunk_overlap must be smaller than chunk_size")
        if self.embedding_dimension <= 0:
            raise ConfigurationError("embedding_dimension must be positive")
