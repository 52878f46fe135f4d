"""
Shared fixtures for diffwarden tests.

Provides a deterministic fake embedder, an in-memory vector store, mock
model clients and temporary git repositories.
"""

import hashlib
import re
import subprocess
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock

import pytest

from diffwarden.errors import EmbeddingError
from diffwarden.indexing.store import InMemoryVectorStore
from diffwarden.llm.client import ModelResponse
from diffwarden.utils.retry import RetryConfig, RetryPolicy


# =============================================================================
# EMBEDDING / STORE FIXTURES
# =============================================================================

class FakeEmbedder:
    """Bag-of-words hashing embedder: texts sharing tokens score high."""

    def __init__(self, dimension: int = 64):
        self._dimension = dimension
        self.calls: list[list[str]] = []
        self.fail = False

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("embedding service unavailable")
        return [self._vector(text) for text in texts]

    @property
    def embedded_texts(self) -> int:
        return sum(len(batch) for batch in self.calls)

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self._dimension
            vector[bucket] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def embedder_factory():
    return FakeEmbedder


@pytest.fixture
def memory_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    """Retry policy that never sleeps."""
    return RetryPolicy(RetryConfig(max_attempts=3, jitter=False), sleep=AsyncMock())


# =============================================================================
# MOCK MODEL FIXTURES
# =============================================================================

SECURITY_RESPONSE = """\
I found the following issues:

- **Line 2: [Security Issue]** - hardcoded secret in source
  **Fix:** read the key from an environment variable
  **Severity:** Critical
"""


@pytest.fixture
def mock_model() -> AsyncMock:
    """
    Mock model that reports one security finding on line 2.

    Returns:
        Mock with ``generate`` returning a ModelResponse
    """
    model = AsyncMock()
    model.generate.return_value = ModelResponse(
        text=SECURITY_RESPONSE, provider="mock", model="mock-1"
    )
    return model


@pytest.fixture
def mock_model_no_issues() -> AsyncMock:
    model = AsyncMock()
    model.generate.return_value = ModelResponse(
        text="No issues found. The code looks good.", provider="mock", model="mock-1"
    )
    return model


# =============================================================================
# GIT REPOSITORY FIXTURES
# =============================================================================

def git(repo_path: Path, *args: str) -> str:
    """Run a git command in ``repo_path`` and return stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=repo_path,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def commit_all(repo_path: Path, message: str) -> str:
    """Stage everything, commit, and return the new commit sha."""
    git(repo_path, "add", "-A")
    git(repo_path, "commit", "-m", message)
    return git(repo_path, "rev-parse", "HEAD")


@pytest.fixture
def run_git():
    """The `git` helper, for tests that build extra commits."""
    return git


@pytest.fixture
def make_commit():
    return commit_all


@pytest.fixture
def temp_git_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Create a temporary git repository with one initial commit.

    Yields:
        Path to the initialized git repository
    """
    repo_path = tmp_path / "test_repo"
    repo_path.mkdir()

    git(repo_path, "init")
    git(repo_path, "config", "user.email", "test@test.com")
    git(repo_path, "config", "user.name", "Test User")
    git(repo_path, "config", "commit.gpgsign", "false")

    files = {
        "src/app.py": "import os\n\n\ndef main():\n    return os.getcwd()\n",
        "src/utils.py": "def helper(value):\n    return value * 2\n",
        "README.md": "# Test project\n",
    }
    for path, content in files.items():
        file_path = repo_path / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)

    commit_all(repo_path, "Initial commit")
    yield repo_path


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: Tests that use a real git repository or local Qdrant"
    )
    config.addinivalue_line(
        "markers",
        "e2e: End-to-end tests for the full review pipeline"
    )
