"""
Repository Indexer

Turns repository files into namespace-isolated vector points. Re-indexing
is incremental: only chunks whose deterministic id is not yet stored are
embedded, and stale chunks of a file are removed once its new chunks are
written.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from diffwarden.errors import DiffWardenError, RetrievalError, VectorStoreError
from diffwarden.scm.base import ChangedFile, ChangeType
from diffwarden.utils.cache import TTLCache
from diffwarden.utils.retry import RetryConfig, RetryPolicy

from .chunker import TextChunker
from .embeddings import Embedder
from .file_filter import FileFilter
from .models import Chunk, IndexingStats, PayloadFilter, SourceFile, VectorPoint, namespace_for
from .store import VectorStore

logger = structlog.get_logger(__name__)


def repository_namespace(repository: str, branch: str) -> str:
    """Namespace for an ``owner/name`` repository on a branch."""
    owner, _, name = repository.partition("/")
    return namespace_for(owner, name, branch)


def iter_local_files(root: str | Path, file_filter: FileFilter | None = None) -> Iterator[SourceFile]:
    """Yield indexable text files under a directory with repo-relative paths."""
    root = Path(root)
    file_filter = file_filter or FileFilter()

    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if file_filter.should_skip(relative):
            continue
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.debug("Skipping non-UTF-8 file", path=relative)
            continue
        except OSError as e:
            logger.warning("Failed to read file", path=relative, error=str(e))
            continue
        yield SourceFile(path=relative, text=text)


class PayloadIndexCache:
    """Remembers which namespaces already carry their payload indexes."""

    FIELDS = ("source", "language")

    def __init__(self, ttl_seconds: float = 3600.0, fields: tuple[str, ...] = FIELDS):
        self.fields = fields
        self._created = TTLCache(ttl_seconds=ttl_seconds)

    async def ensure(self, store: VectorStore, namespace: str) -> None:
        if namespace in self._created:
            return
        try:
            for field_name in self.fields:
                await store.create_payload_index(namespace, field_name)
        except VectorStoreError as e:
            logger.warning("Payload index creation failed", namespace=namespace, error=str(e))
            return
        self._created.set(namespace)

    def invalidate(self, namespace: str) -> None:
        self._created.discard(namespace)


@dataclass
class _FilePlan:
    """Writes and deletes needed to bring one file up to date."""

    path: str
    missing: list[Chunk] = field(default_factory=list)
    stale: set[str] = field(default_factory=set)


class RepositoryIndexer:
    """Index repository files into a vector store."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        chunker: TextChunker | None = None,
        file_filter: FileFilter | None = None,
        batch_size: int = 64,
        concurrency: int = 4,
        index_cache: PayloadIndexCache | None = None,
        retry: RetryPolicy | None = None,
    ):
        """
        Initialize the indexer.

        Args:
            store: Vector store backend
            embedder: Embedding service
            chunker: Text chunker (default 1000/200)
            file_filter: Path denylist and size limits
            batch_size: Chunks per embed+upsert batch
            concurrency: Batches in flight at once
            index_cache: Tracks payload index creation per namespace
            retry: Retry policy for embed+upsert calls
        """
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.file_filter = file_filter or FileFilter()
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.index_cache = index_cache or PayloadIndexCache()
        self.retry = retry or RetryPolicy(RetryConfig(max_attempts=3))

    async def index_files(
        self,
        repository: str,
        branch: str,
        files: Iterable[SourceFile],
        full: bool = False,
    ) -> IndexingStats:
        """
        Index files of a repository branch.

        Args:
            repository: ``owner/name``
            branch: Branch the files belong to
            files: Files to index
            full: Drop and rebuild the namespace first

        Returns:
            IndexingStats for the run
        """
        namespace = repository_namespace(repository, branch)
        start_time = time.time()
        stats = IndexingStats(namespace=namespace)

        if full:
            await self.store.drop_namespace(namespace)
            self.index_cache.invalidate(namespace)

        await self._prepare(namespace)
        await self._index_into(namespace, repository, branch, list(files), stats, fresh=full)

        stats.duration_ms = int((time.time() - start_time) * 1000)
        logger.info("Indexing complete", **stats.to_dict())
        return stats

    async def index_directory(
        self, repository: str, branch: str, root: str | Path, full: bool = False
    ) -> IndexingStats:
        """Index a local checkout."""
        files = iter_local_files(root, self.file_filter)
        return await self.index_files(repository, branch, files, full=full)

    async def index_file(
        self,
        namespace: str,
        path: str,
        text: str,
        repository: str = "",
        branch: str = "",
    ) -> IndexingStats:
        """(Re-)index a single file in an existing or new namespace."""
        stats = IndexingStats(namespace=namespace)
        await self._prepare(namespace)
        await self._index_into(namespace, repository, branch, [SourceFile(path, text)], stats)
        return stats

    async def remove_file(self, namespace: str, path: str) -> int:
        """Delete every chunk of a file.

        Returns:
            Number of chunks deleted
        """
        if not await self.store.namespace_exists(namespace):
            return 0
        ids = await self.store.list_ids(namespace, PayloadFilter(must={"source": path}))
        if ids:
            await self.store.delete_ids(namespace, sorted(ids))
        logger.debug("Removed file from index", namespace=namespace, path=path, chunks=len(ids))
        return len(ids)

    async def drop_repository(self, repository: str, branch: str) -> bool:
        """Remove a whole repository branch from the index."""
        namespace = repository_namespace(repository, branch)
        self.index_cache.invalidate(namespace)
        dropped = await self.store.drop_namespace(namespace)
        logger.info("Dropped repository index", namespace=namespace, existed=dropped)
        return dropped

    async def apply_changes(
        self,
        repository: str,
        branch: str,
        changes: list[ChangedFile],
        fetch: Callable[[ChangedFile], Awaitable[str]],
    ) -> IndexingStats:
        """
        Bring the index up to date after a merge.

        Added and modified files are re-indexed from ``fetch``; deleted files
        are removed.
        """
        namespace = repository_namespace(repository, branch)
        start_time = time.time()
        stats = IndexingStats(namespace=namespace)
        await self._prepare(namespace)

        to_index: list[SourceFile] = []
        for change in changes:
            if change.change_type == ChangeType.DELETED:
                stats.chunks_deleted += await self.remove_file(namespace, change.path)
                stats.files_removed += 1
                continue
            if self.file_filter.should_skip(change.path):
                stats.files_total += 1
                stats.record_skip("denylisted")
                continue
            try:
                to_index.append(SourceFile(change.path, await fetch(change)))
            except DiffWardenError as e:
                logger.error("Failed to fetch file for indexing", path=change.path, error=str(e))
                stats.files_total += 1
                stats.files_failed += 1

        await self._index_into(namespace, repository, branch, to_index, stats)
        stats.duration_ms = int((time.time() - start_time) * 1000)
        logger.info("Merge re-index complete", **stats.to_dict())
        return stats

    async def _prepare(self, namespace: str) -> None:
        await self.store.ensure_namespace(namespace, self.embedder.dimension)
        await self.index_cache.ensure(self.store, namespace)

    async def _index_into(
        self,
        namespace: str,
        repository: str,
        branch: str,
        files: list[SourceFile],
        stats: IndexingStats,
        fresh: bool = False,
    ) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)
        stats.files_total += len(files)

        # Plan: compare new chunk ids with what is stored for each file
        async def plan_with_semaphore(source: SourceFile) -> _FilePlan | None:
            async with semaphore:
                return await self._plan_file(namespace, source, stats, fresh)

        planned = await asyncio.gather(
            *[plan_with_semaphore(f) for f in files], return_exceptions=True
        )

        plans: list[_FilePlan] = []
        for source, result in zip(files, planned):
            if isinstance(result, Exception):
                logger.error("Failed to plan file", path=source.path, error=str(result))
                stats.files_failed += 1
            elif result is not None:
                plans.append(result)

        # Write: embed and upsert the missing chunks in batches
        pending = [chunk for plan in plans for chunk in plan.missing]
        batches = [pending[i : i + self.batch_size] for i in range(0, len(pending), self.batch_size)]

        async def write_with_semaphore(batch: list[Chunk]) -> bool:
            async with semaphore:
                return await self._write_batch(namespace, repository, branch, batch)

        outcomes = await asyncio.gather(*[write_with_semaphore(b) for b in batches])

        failed_paths: set[str] = set()
        for batch, ok in zip(batches, outcomes):
            if ok:
                stats.chunks_written += len(batch)
            else:
                stats.batches_failed += 1
                failed_paths.update(chunk.file_path for chunk in batch)

        # Clean up: stale chunks go only once the file's new chunks are in
        for plan in plans:
            if plan.path in failed_paths:
                stats.files_failed += 1
                continue
            if plan.stale:
                try:
                    await self.store.delete_ids(namespace, sorted(plan.stale))
                    stats.chunks_deleted += len(plan.stale)
                except VectorStoreError as e:
                    logger.error("Failed to delete stale chunks", path=plan.path, error=str(e))
                    stats.files_failed += 1
                    continue
            if plan.missing or plan.stale:
                stats.files_indexed += 1
            else:
                stats.files_unchanged += 1

    async def _plan_file(
        self, namespace: str, source: SourceFile, stats: IndexingStats, fresh: bool
    ) -> _FilePlan | None:
        stored: set[str] = set()
        if not fresh:
            stored = await self.store.list_ids(namespace, PayloadFilter(must={"source": source.path}))

        reason = self.file_filter.skip_reason(source.path, source.text)
        if reason is not None:
            stats.record_skip(reason)
            if stored:
                await self.store.delete_ids(namespace, sorted(stored))
                stats.chunks_deleted += len(stored)
            logger.debug("Skipping file", path=source.path, reason=reason)
            return None

        chunks = self.chunker.chunk_file(source.path, source.text, namespace)
        new_ids = {chunk.id for chunk in chunks}
        return _FilePlan(
            path=source.path,
            missing=[chunk for chunk in chunks if chunk.id not in stored],
            stale=stored - new_ids,
        )

    async def _write_batch(
        self, namespace: str, repository: str, branch: str, batch: list[Chunk]
    ) -> bool:
        async def embed_and_upsert() -> None:
            vectors = await self.embedder.embed([chunk.text for chunk in batch])
            await self.store.upsert(
                namespace,
                [
                    VectorPoint(id=chunk.id, vector=vector, payload=chunk.payload(repository, branch))
                    for chunk, vector in zip(batch, vectors)
                ],
            )

        try:
            await self.retry.execute(embed_and_upsert)
            return True
        except RetrievalError as e:
            logger.error(
                "Index batch failed",
                namespace=namespace,
                chunks=len(batch),
                files=sorted({c.file_path for c in batch}),
                error=str(e),
            )
            return False
