"""
Review Pipeline

Orchestrates a review run: classify the changes between two commits, then
for each added or modified file retrieve context, prompt the model, extract
findings, reconcile their lines and publish comments. Files are reviewed
concurrently and one file's failure never blocks another.
"""

import asyncio
import time
from typing import Any

import structlog

from diffwarden.config import ReviewerConfig
from diffwarden.errors import SourceControlError
from diffwarden.indexing.chunker import TextChunker
from diffwarden.indexing.embeddings import Embedder, OllamaEmbedder
from diffwarden.indexing.file_filter import FileFilter
from diffwarden.indexing.indexer import RepositoryIndexer, repository_namespace
from diffwarden.indexing.models import IndexingStats
from diffwarden.indexing.store import VectorStore, create_vector_store
from diffwarden.llm.client import ModelClient, create_model_client
from diffwarden.retrieval.context import ContextRetriever
from diffwarden.retrieval.signals import analyze_changes
from diffwarden.scm.base import ChangedFile, ChangeType, SourceControl
from diffwarden.scm.github import GitHubClient
from diffwarden.scm.local_git import LocalGitSource
from diffwarden.utils.retry import RetryConfig, RetryPolicy

from .audit import AuditLog
from .change_classifier import (
    ChangeClassifier,
    LineDiffStrategy,
    compute_line_changes,
    group_hunks,
    render_hunks,
)
from .extractor import FindingExtractor
from .models import FileReviewResult, FileStatus, ReviewSummary, ReviewTicket, TicketAction
from .prompts import build_review_prompt
from .publisher import CommentPublisher, PublishOutcome
from .reconciler import LineReconciler

logger = structlog.get_logger(__name__)

# Content-level skip reasons that make a file unreviewable; large files are truncated instead
UNREVIEWABLE = {"binary", "empty"}


class ReviewPipeline:
    """
    Retrieval-augmented review of a change set.

    Stages per file:
    1. Fetch: before/after content and line-level hunks
    2. Context: related code from the repository index when the change needs it
    3. Analysis: model call with retry, finding extraction
    4. Delivery: line reconciliation and comment publication
    """

    def __init__(
        self,
        scm: SourceControl,
        model: ModelClient,
        retriever: ContextRetriever | None = None,
        indexer: RepositoryIndexer | None = None,
        publisher: CommentPublisher | None = None,
        extractor: FindingExtractor | None = None,
        reconciler: LineReconciler | None = None,
        file_filter: FileFilter | None = None,
        retry: RetryPolicy | None = None,
        audit_log: AuditLog | None = None,
        parallel_reviews: int = 2,
        max_prompt_chars: int = 12_000,
        line_diff_strategy: LineDiffStrategy = LineDiffStrategy.INDEX_ALIGNED,
        log_model_responses: bool = False,
    ):
        """
        Initialize the pipeline.

        Args:
            scm: Hosting API or local repository
            model: Generative model client
            retriever: Context retriever (no context when omitted)
            indexer: Repository indexer used by the merge hook
            publisher: Comment publisher (nothing is posted when omitted)
            extractor: Finding extractor
            reconciler: Line reconciler
            file_filter: Paths never reviewed
            retry: Retry policy for model calls
            audit_log: Optional JSON-lines record of each run
            parallel_reviews: Number of files to review in parallel
            max_prompt_chars: Budget for file content in the prompt
            line_diff_strategy: How before/after lines are paired
            log_model_responses: Log full model responses at debug level
        """
        self.scm = scm
        self.model = model
        self.retriever = retriever
        self.indexer = indexer
        self.publisher = publisher
        self.classifier = ChangeClassifier(scm)
        self.extractor = extractor or FindingExtractor()
        self.reconciler = reconciler or LineReconciler()
        self.file_filter = file_filter or FileFilter()
        self.retry = retry or RetryPolicy(RetryConfig(max_attempts=3))
        self.audit_log = audit_log
        self.parallel_reviews = parallel_reviews
        self.max_prompt_chars = max_prompt_chars
        self.line_diff_strategy = line_diff_strategy
        self.log_model_responses = log_model_responses

    @classmethod
    def from_config(
        cls,
        config: ReviewerConfig,
        scm: SourceControl | None = None,
        store: VectorStore | None = None,
        embedder: Embedder | None = None,
        model: ModelClient | None = None,
    ) -> "ReviewPipeline":
        """Wire every collaborator from configuration."""
        if scm is None:
            if config.scm_backend == "local":
                scm = LocalGitSource(config.repo_path)
            else:
                scm = GitHubClient(config.github_token or "", config.github_api_url)
        store = store or create_vector_store(
            config.storage_backend,
            url=config.qdrant_url,
            api_key=config.qdrant_api_key,
            distance=config.distance,
        )
        embedder = embedder or OllamaEmbedder(
            base_url=config.ollama_url,
            model=config.embedding_model,
            dimension=config.embedding_dimension,
        )
        file_filter = FileFilter(max_file_chars=config.max_file_chars)

        return cls(
            scm=scm,
            model=model or create_model_client(config),
            retriever=ContextRetriever(
                store,
                embedder,
                similarity_threshold=config.similarity_threshold,
                top_k=config.retrieval_top_k,
                max_files=config.max_context_files,
            ),
            indexer=RepositoryIndexer(
                store,
                embedder,
                chunker=TextChunker(config.chunk_size, config.chunk_overlap),
                file_filter=file_filter,
                batch_size=config.batch_size,
                concurrency=config.upsert_concurrency,
            ),
            publisher=CommentPublisher(
                scm,
                delay_seconds=config.comment_delay_seconds,
                enabled=config.commenting_enabled,
            ),
            reconciler=LineReconciler(max_comments=config.max_comments_per_file),
            file_filter=file_filter,
            retry=RetryPolicy(RetryConfig(max_attempts=config.model_max_attempts)),
            audit_log=AuditLog(config.audit_log_path) if config.audit_log_path else None,
            parallel_reviews=config.parallel_reviews,
            max_prompt_chars=config.max_prompt_chars,
            log_model_responses=config.log_model_responses,
        )

    async def handle(self, ticket: ReviewTicket) -> ReviewSummary | IndexingStats:
        """Dispatch a ticket from the queue."""
        if ticket.action == TicketAction.REINDEX:
            return await self.update_index(ticket)
        return await self.review(ticket)

    async def review(self, ticket: ReviewTicket) -> ReviewSummary:
        """
        Review the changes of a ticket.

        Returns:
            ReviewSummary with one result per reviewable file
        """
        start_time = time.time()
        summary = ReviewSummary(
            repository=ticket.repository,
            pull_request_id=ticket.pull_request_id,
            before_ref=ticket.before_ref,
            after_ref=ticket.after_ref,
        )

        try:
            changes = await self.classifier.classify(ticket.repository, ticket.before_ref, ticket.after_ref)
        except SourceControlError as e:
            logger.error("Failed to classify changes", repository=ticket.repository, error=str(e))
            summary.error = str(e)
            return await self._finish(summary, start_time)

        summary.files_total = len(changes)
        summary.deleted_files = [c for c in changes if c.change_type == ChangeType.DELETED]

        to_review: list[ChangedFile] = []
        for change in self.classifier.reviewable(changes):
            reason = self.file_filter.skip_reason(change.path)
            if reason is not None:
                summary.files.append(
                    FileReviewResult(
                        path=change.path,
                        change_type=change.change_type.value,
                        status=FileStatus.SKIPPED,
                        error=reason,
                    )
                )
            else:
                to_review.append(change)

        namespace = repository_namespace(ticket.repository, ticket.base_branch)
        summary.files.extend(await self._review_files_parallel(ticket, to_review, namespace))
        return await self._finish(summary, start_time)

    async def _finish(self, summary: ReviewSummary, start_time: float) -> ReviewSummary:
        summary.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Review complete",
            repository=summary.repository,
            pull_request=summary.pull_request_id,
            files_reviewed=summary.files_reviewed,
            files_failed=summary.files_failed,
            findings=summary.findings_total,
            comments_posted=summary.comments_posted,
            duration_ms=summary.duration_ms,
        )
        if self.audit_log is not None:
            await self.audit_log.record(summary)
        return summary

    async def _review_files_parallel(
        self, ticket: ReviewTicket, files: list[ChangedFile], namespace: str
    ) -> list[FileReviewResult]:
        """Review files in parallel with concurrency limit."""
        semaphore = asyncio.Semaphore(self.parallel_reviews)

        async def review_with_semaphore(change: ChangedFile) -> FileReviewResult:
            async with semaphore:
                return await self._review_single_file(ticket, change, namespace)

        tasks = [review_with_semaphore(change) for change in files]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        # Convert exceptions to failed results
        valid_results = []
        for change, result in zip(files, results):
            if isinstance(result, Exception):
                logger.error("File review failed", path=change.path, error=str(result))
                valid_results.append(
                    FileReviewResult(
                        path=change.path,
                        change_type=change.change_type.value,
                        status=FileStatus.FAILED,
                        error=str(result),
                    )
                )
            else:
                valid_results.append(result)

        return valid_results

    async def _review_single_file(
        self, ticket: ReviewTicket, change: ChangedFile, namespace: str
    ) -> FileReviewResult:
        """Review a single added or modified file."""
        start_time = time.time()
        result = FileReviewResult(path=change.path, change_type=change.change_type.value)

        after = await self.scm.get_file_content(
            ticket.repository, change.path, change.after_ref, change.after_blob_id
        )
        before = None
        if change.change_type == ChangeType.MODIFIED:
            before = await self.scm.get_file_content(
                ticket.repository, change.path, change.before_ref, change.before_blob_id
            )

        reason = self.file_filter.skip_reason(change.path, after)
        if reason in UNREVIEWABLE:
            result.status = FileStatus.SKIPPED
            result.error = reason
            return result

        signals = analyze_changes(before, after, change.path)
        result.diff_summary = signals.summary()

        diff_text = None
        if before is not None:
            hunks = group_hunks(compute_line_changes(before, after, self.line_diff_strategy))
            diff_text = render_hunks(hunks)

        if self.retriever is not None:
            result.context = await self.retriever.retrieve(
                change,
                after,
                namespace,
                before_content=before,
                diff_text=diff_text,
                signals=signals,
            )

        prompt = build_review_prompt(
            change,
            after,
            before_content=before,
            context=result.context,
            signals=signals,
            diff_text=diff_text,
            max_chars=self.max_prompt_chars,
        )
        response = await self.retry.execute(lambda: self.model.generate(prompt.text))
        if self.log_model_responses:
            logger.debug("Model response", path=change.path, provider=response.provider, text=response.text)

        result.findings = self.extractor.extract(response.text)
        reconciliation = self.reconciler.reconcile(result.findings, prompt.after_rendering)
        result.delivered = reconciliation.delivered
        result.dropped = reconciliation.dropped

        outcome = PublishOutcome()
        if self.publisher is not None:
            outcome = await self.publisher.publish(
                ticket.repository,
                ticket.pull_request_id,
                ticket.after_ref,
                change.path,
                reconciliation.delivered,
            )
        result.comments_posted = outcome.posted
        result.comments_failed = outcome.failed
        result.review_duration_ms = int((time.time() - start_time) * 1000)

        logger.info(
            "Reviewed file",
            path=change.path,
            change_type=change.change_type.value,
            context=bool(result.context and result.context.has_context),
            findings=len(result.findings),
            delivered=len(result.delivered),
            dropped=len(result.dropped),
        )
        return result

    async def update_index(self, ticket: ReviewTicket) -> IndexingStats:
        """Re-index the files a merged change touched on the base branch."""
        if self.indexer is None:
            raise RuntimeError("No indexer configured")

        changes = await self.classifier.classify(ticket.repository, ticket.before_ref, ticket.after_ref)

        async def fetch(change: ChangedFile) -> str:
            return await self.scm.get_file_content(
                ticket.repository, change.path, change.after_ref, change.after_blob_id
            )

        return await self.indexer.apply_changes(ticket.repository, ticket.base_branch, changes, fetch)

    def describe(self) -> dict[str, Any]:
        """Component overview for the status endpoint."""
        return {
            "scm": type(self.scm).__name__,
            "model": type(self.model).__name__,
            "retrieval": self.retriever is not None,
            "publishing": bool(self.publisher and self.publisher.enabled),
            "parallel_reviews": self.parallel_reviews,
        }
