"""
Context Retriever

Looks up code related to a changed file in the repository's own namespace
and renders it for the review prompt. Failures never propagate: the review
goes ahead without context and the error is recorded.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from diffwarden.errors import RetrievalError
from diffwarden.indexing.embeddings import Embedder
from diffwarden.indexing.models import PayloadFilter
from diffwarden.indexing.store import VectorStore
from diffwarden.scm.base import ChangedFile, ChangeType

from .signals import ChangeSignals, analyze_changes

logger = structlog.get_logger(__name__)


@dataclass
class ContextChunk:
    """A retrieved chunk of related code."""

    text: str
    source: str
    chunk_index: int
    language: str
    score: float


@dataclass
class RetrievedContext:
    """Outcome of a context lookup."""

    has_context: bool = False
    chunks: list[ContextChunk] = field(default_factory=list)
    related_files: list[str] = field(default_factory=list)
    summary: str = ""
    needed: bool = False
    reasons: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_context": self.has_context,
            "needed": self.needed,
            "reasons": list(self.reasons),
            "related_files": list(self.related_files),
            "chunks": len(self.chunks),
            "summary": self.summary,
            "error": self.error,
        }


class ContextRetriever:
    """Retrieve semantically related code for a change."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        similarity_threshold: float = 0.3,
        top_k: int = 10,
        max_files: int = 5,
        excerpt_chars: int = 1000,
    ):
        """
        Initialize retriever.

        Args:
            store: Vector store holding the repository index
            embedder: Embedding service used at index time
            similarity_threshold: Minimum score for a hit
            top_k: Hits requested from the store
            max_files: Related files kept after grouping
            excerpt_chars: Characters of content used in the query
        """
        self.store = store
        self.embedder = embedder
        self.similarity_threshold = similarity_threshold
        self.top_k = top_k
        self.max_files = max_files
        self.excerpt_chars = excerpt_chars

    def build_query(self, path: str, after_content: str, diff_text: str | None = None) -> str:
        """Filename followed by an excerpt of the diff or of the new content."""
        body = diff_text if diff_text else after_content
        return f"{path}\n{body[: self.excerpt_chars]}"

    async def retrieve(
        self,
        changed_file: ChangedFile,
        after_content: str,
        namespace: str,
        before_content: str | None = None,
        diff_text: str | None = None,
        signals: ChangeSignals | None = None,
    ) -> RetrievedContext:
        """
        Decide whether context is needed and fetch it.

        Args:
            changed_file: The change under review
            after_content: Content after the change
            namespace: Namespace of the repository branch
            before_content: Content before the change (modified files)
            diff_text: Rendered hunks, preferred over content as the query
            signals: Precomputed change signals

        Returns:
            RetrievedContext, with ``error`` set if retrieval failed
        """
        if signals is None:
            before = None if changed_file.change_type == ChangeType.ADDED else (before_content or "")
            signals = analyze_changes(before, after_content, changed_file.path)

        reasons = signals.reasons()
        if not reasons:
            return RetrievedContext(needed=False, summary="Context not needed for this change.")

        try:
            return await self._search(changed_file.path, after_content, namespace, diff_text, reasons)
        except RetrievalError as e:
            logger.warning(
                "Context retrieval failed",
                path=changed_file.path,
                namespace=namespace,
                error=str(e),
            )
            return RetrievedContext(
                needed=True,
                reasons=reasons,
                summary=f"Context retrieval failed: {e}",
                error=str(e),
            )

    async def _search(
        self,
        path: str,
        after_content: str,
        namespace: str,
        diff_text: str | None,
        reasons: list[str],
    ) -> RetrievedContext:
        if not await self.store.namespace_exists(namespace):
            message = f"Namespace {namespace} is not indexed"
            logger.warning("Repository not indexed", namespace=namespace)
            return RetrievedContext(needed=True, reasons=reasons, summary=message, error=message)

        vectors = await self.embedder.embed([self.build_query(path, after_content, diff_text)])
        hits = await self.store.search(
            namespace,
            vectors[0],
            top_k=self.top_k,
            score_threshold=self.similarity_threshold,
            payload_filter=PayloadFilter(must={"namespace": namespace}, must_not={"source": path}),
        )

        # Group by source file, ranking files by their best hit
        by_file: dict[str, list[ContextChunk]] = {}
        for hit in hits:
            if hit.score < self.similarity_threshold:
                continue
            source = hit.payload.get("source", "")
            if not source or source == path:
                continue
            by_file.setdefault(source, []).append(
                ContextChunk(
                    text=hit.payload.get("text", ""),
                    source=source,
                    chunk_index=int(hit.payload.get("chunk_index", 0)),
                    language=hit.payload.get("language", ""),
                    score=hit.score,
                )
            )

        ranked = sorted(by_file.items(), key=lambda item: (-max(c.score for c in item[1]), item[0]))
        kept = ranked[: self.max_files]
        chunks = sorted((c for _, group in kept for c in group), key=lambda c: -c.score)
        related_files = [source for source, _ in kept]

        if not chunks:
            return RetrievedContext(
                needed=True,
                reasons=reasons,
                summary="No relevant external context found.",
            )

        logger.debug("Retrieved context", path=path, files=related_files, chunks=len(chunks))
        return RetrievedContext(
            has_context=True,
            chunks=chunks,
            related_files=related_files,
            summary=f"Found {len(chunks)} related code chunks from {len(related_files)} files",
            needed=True,
            reasons=reasons,
        )


def format_context_for_prompt(context: RetrievedContext) -> str:
    """Render the best chunk of each related file as a prompt section."""
    if not context.has_context:
        return ""

    parts = ["## RELEVANT CODEBASE CONTEXT", context.summary, ""]
    for source in context.related_files:
        file_chunks = [c for c in context.chunks if c.source == source]
        if not file_chunks:
            continue
        best = max(file_chunks, key=lambda c: c.score)
        parts.append(f"### Related Code from: {source}")
        parts.append(f"```{best.language}")
        parts.append(best.text.strip())
        parts.append("```")
        parts.append("")
    return "\n".join(parts)
