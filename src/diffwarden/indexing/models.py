"""
Data models for the repository indexer.

Defines the chunk, point and statistics types shared by the chunker,
the vector stores and the indexer.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any

# Fixed UUID namespace so chunk ids are stable across processes and hosts
CHUNK_ID_NAMESPACE = uuid.UUID("6f1c2d4e-8a3b-5c7d-9e0f-1a2b3c4d5e6f")

MAX_NAMESPACE_LENGTH = 128


def namespace_for(owner: str, repo: str, branch: str = "main") -> str:
    """Build the sanitized namespace key for a repository branch."""
    raw = f"{owner}_{repo}_{branch}".lower()
    sanitized = re.sub(r"[^a-z0-9_]", "_", raw)
    sanitized = re.sub(r"_+", "_", sanitized).strip("_")
    return sanitized[:MAX_NAMESPACE_LENGTH]


def make_chunk_id(namespace: str, file_path: str, chunk_index: int, content_hash: str) -> str:
    """Deterministic point id for a chunk.

    Identical (namespace, path, index, content) always yields the identical id.
    """
    key = f"{namespace}:{file_path}:{chunk_index}:{content_hash}"
    return str(uuid.uuid5(CHUNK_ID_NAMESPACE, key))


@dataclass(frozen=True)
class Chunk:
    """A bounded slice of a file, the unit stored and searched."""

    id: str
    text: str
    file_path: str
    chunk_index: int
    content_hash: str
    language: str
    namespace: str

    def payload(self, repository: str = "", branch: str = "") -> dict[str, Any]:
        """Payload stored next to the vector."""
        return {
            "text": self.text,
            "source": self.file_path,
            "chunk_index": self.chunk_index,
            "content_hash": self.content_hash,
            "language": self.language,
            "namespace": self.namespace,
            "repository": repository,
            "branch": branch,
        }


@dataclass
class SourceFile:
    """A file to index."""

    path: str
    text: str


@dataclass
class VectorPoint:
    """A point to upsert into a namespace."""

    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoredPoint:
    """A search hit."""

    id: str
    score: float
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class PayloadFilter:
    """Equality conditions on payload fields.

    ``must`` fields have to match, ``must_not`` fields must not.
    """

    must: dict[str, Any] = field(default_factory=dict)
    must_not: dict[str, Any] = field(default_factory=dict)

    def matches(self, payload: dict[str, Any]) -> bool:
        """Evaluate the filter against a payload."""
        for key, value in self.must.items():
            if payload.get(key) != value:
                return False
        for key, value in self.must_not.items():
            if payload.get(key) == value:
                return False
        return True


@dataclass
class IndexingStats:
    """Counts reported by an indexing run."""

    namespace: str
    files_total: int = 0
    files_indexed: int = 0
    files_unchanged: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    files_removed: int = 0
    chunks_written: int = 0
    chunks_deleted: int = 0
    batches_failed: int = 0
    skip_reasons: dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0

    def record_skip(self, reason: str) -> None:
        """Count a skipped file under its reason."""
        self.files_skipped += 1
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "namespace": self.namespace,
            "files_total": self.files_total,
            "files_indexed": self.files_indexed,
            "files_unchanged": self.files_unchanged,
            "files_skipped": self.files_skipped,
            "files_failed": self.files_failed,
            "files_removed": self.files_removed,
            "chunks_written": self.chunks_written,
            "chunks_deleted": self.chunks_deleted,
            "batches_failed": self.batches_failed,
            "skip_reasons": dict(self.skip_reasons),
            "duration_ms": self.duration_ms,
        }
