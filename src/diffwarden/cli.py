"""Command-line entry point.

Usage:
    diffwarden serve --port 8000
    diffwarden index owner/repo --branch main
    diffwarden index ./checkout --repository owner/repo --full
    diffwarden review HEAD~1 HEAD --repo ./checkout
"""

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

import structlog

from diffwarden.api.server import configure_logging, run
from diffwarden.config import ReviewerConfig
from diffwarden.errors import DiffWardenError
from diffwarden.indexing.chunker import TextChunker
from diffwarden.indexing.embeddings import OllamaEmbedder
from diffwarden.indexing.file_filter import FileFilter
from diffwarden.indexing.indexer import RepositoryIndexer
from diffwarden.indexing.models import IndexingStats, SourceFile
from diffwarden.indexing.store import create_vector_store
from diffwarden.review.models import ReviewSummary, ReviewTicket
from diffwarden.review.pipeline import ReviewPipeline
from diffwarden.scm.github import GitHubClient

logger = structlog.get_logger(__name__)

FETCH_CONCURRENCY = 8


def build_indexer(config: ReviewerConfig) -> RepositoryIndexer:
    store = create_vector_store(
        config.storage_backend,
        url=config.qdrant_url,
        api_key=config.qdrant_api_key,
        distance=config.distance,
    )
    embedder = OllamaEmbedder(
        base_url=config.ollama_url,
        model=config.embedding_model,
        dimension=config.embedding_dimension,
    )
    return RepositoryIndexer(
        store,
        embedder,
        chunker=TextChunker(config.chunk_size, config.chunk_overlap),
        file_filter=FileFilter(max_file_chars=config.max_file_chars),
        batch_size=config.batch_size,
        concurrency=config.upsert_concurrency,
    )


async def fetch_repository_files(
    client: GitHubClient, repository: str, ref: str, file_filter: FileFilter
) -> list[SourceFile]:
    """Download every indexable file of a hosted repository at ``ref``."""
    paths = [p for p in await client.list_tree(repository, ref) if not file_filter.should_skip(p)]
    semaphore = asyncio.Semaphore(FETCH_CONCURRENCY)

    async def fetch(path: str) -> SourceFile:
        async with semaphore:
            return SourceFile(path, await client.get_file_content(repository, path, ref))

    results = await asyncio.gather(*(fetch(p) for p in paths), return_exceptions=True)

    files: list[SourceFile] = []
    for path, result in zip(paths, results):
        if isinstance(result, Exception):
            logger.warning("Failed to fetch file", path=path, error=str(result))
        else:
            files.append(result)
    return files


async def index_command(args: argparse.Namespace, config: ReviewerConfig) -> IndexingStats:
    indexer = build_indexer(config)
    target = Path(args.target)

    if target.is_dir():
        repository = args.repository or target.resolve().name
        return await indexer.index_directory(repository, args.branch, target, full=args.full)

    if not config.github_token:
        raise DiffWardenError("GITHUB_TOKEN is required to index a hosted repository")
    client = GitHubClient(config.github_token, config.github_api_url)
    try:
        files = await fetch_repository_files(client, args.target, args.ref or args.branch, indexer.file_filter)
    finally:
        await client.close()
    return await indexer.index_files(args.target, args.branch, files, full=args.full)


async def review_command(args: argparse.Namespace, config: ReviewerConfig) -> ReviewSummary:
    repo_path = Path(args.repo)
    config = replace(
        config,
        scm_backend="local",
        repo_path=repo_path,
        commenting_enabled=False,
    )
    config.validate()

    pipeline = ReviewPipeline.from_config(config)
    pipeline.publisher = None
    if args.no_context:
        pipeline.retriever = None

    ticket = ReviewTicket(
        repository=args.repository or repo_path.resolve().name,
        before_ref=args.before,
        after_ref=args.after,
        base_branch=args.branch,
    )
    return await pipeline.review(ticket)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="diffwarden", description="Retrieval-augmented diff review")
    parser.add_argument("--log-level", default=None, help="Log level (default from DIFFWARDEN_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the webhook server")
    serve.add_argument("--host", default=None, help="Host to bind to")
    serve.add_argument("--port", type=int, default=None, help="Port to listen on")
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload")

    index = sub.add_parser("index", help="Index a repository branch")
    index.add_argument("target", help="owner/name on GitHub or a local directory")
    index.add_argument("--repository", help="Repository name for a local directory")
    index.add_argument("--branch", default="main", help="Branch the index belongs to")
    index.add_argument("--ref", help="Git ref to read from GitHub (defaults to --branch)")
    index.add_argument("--full", action="store_true", help="Drop and rebuild the index")

    review = sub.add_parser("review", help="Review a local change between two refs")
    review.add_argument("before", help="Base ref")
    review.add_argument("after", help="Head ref")
    review.add_argument("--repo", default=".", help="Path to the git repository")
    review.add_argument("--repository", help="Repository name used for context lookup")
    review.add_argument("--branch", default="main", help="Indexed branch used for context")
    review.add_argument("--no-context", action="store_true", help="Skip context retrieval")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = ReviewerConfig.from_env()
    log_level = args.log_level or config.log_level

    if args.command == "serve":
        run(
            host=args.host or config.host,
            port=args.port or config.port,
            reload=args.reload,
            log_level=log_level,
        )
        return 0

    configure_logging(log_level)
    try:
        if args.command == "index":
            result = asyncio.run(index_command(args, config))
        else:
            result = asyncio.run(review_command(args, config))
    except DiffWardenError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        return 1

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
