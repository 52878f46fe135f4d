"""
End-to-end tests for the review pipeline against a real git repository.

The model is mocked; everything else (git, chunking, embedding with the
fake embedder, the in-memory store, extraction and reconciliation) runs for
real.
"""

from unittest.mock import AsyncMock

import pytest

from diffwarden.config import ReviewerConfig
from diffwarden.errors import ModelInvocationError
from diffwarden.indexing.chunker import TextChunker
from diffwarden.indexing.indexer import RepositoryIndexer, repository_namespace
from diffwarden.indexing.models import IndexingStats
from diffwarden.llm.client import ModelResponse
from diffwarden.retrieval.context import ContextRetriever
from diffwarden.review.audit import AuditLog
from diffwarden.review.models import FileStatus, ReviewTicket, TicketAction
from diffwarden.review.pipeline import ReviewPipeline
from diffwarden.review.publisher import CommentPublisher
from diffwarden.scm.local_git import LocalGitSource


REPOSITORY = "local/test_repo"

SECURITY_RESPONSE = """\
- **Line 2: [Security Issue]** - hardcoded secret in source
  **Fix:** read the key from an environment variable
  **Severity:** Critical
"""


@pytest.fixture
def indexer(memory_store, fake_embedder):
    return RepositoryIndexer(memory_store, fake_embedder, chunker=TextChunker(200, 20))


@pytest.fixture
def pipeline(temp_git_repo, mock_model, memory_store, fake_embedder, indexer, no_wait_retry):
    return ReviewPipeline(
        scm=LocalGitSource(temp_git_repo),
        model=mock_model,
        retriever=ContextRetriever(memory_store, fake_embedder),
        indexer=indexer,
        retry=no_wait_retry,
    )


@pytest.fixture
def change_set(temp_git_repo, run_git, make_commit):
    """Modify app.py, add new.py, delete README.md; return (before, after)."""
    before = run_git(temp_git_repo, "rev-parse", "HEAD")
    (temp_git_repo / "src" / "app.py").write_text(
        "import os\nAPI_KEY = 'sk-live-123'\n\n\ndef main():\n    return os.getcwd()\n"
    )
    (temp_git_repo / "src" / "new.py").write_text(
        "import json\nPASSWORD = 'hunter2'\n\n\ndef load(path):\n    return json.load(open(path))\n"
    )
    (temp_git_repo / "README.md").unlink()
    after = make_commit(temp_git_repo, "Add secrets")
    return before, after


def ticket_for(change_set, **kwargs) -> ReviewTicket:
    before, after = change_set
    return ReviewTicket(repository=REPOSITORY, before_ref=before, after_ref=after, **kwargs)


# =============================================================================
# E2E TESTS: review()
# =============================================================================

@pytest.mark.e2e
class TestReviewPipeline:
    """Full review runs."""

    @pytest.mark.asyncio
    async def test_reviews_added_and_modified_files(self, pipeline, change_set, mock_model):
        summary = await pipeline.review(ticket_for(change_set))

        assert summary.error is None
        assert summary.files_total == 3
        assert [f.path for f in summary.deleted_files] == ["README.md"]
        assert summary.files_reviewed == 2
        assert summary.findings_total == 2
        assert mock_model.generate.await_count == 2

        by_path = {f.path: f for f in summary.files}
        assert by_path["src/app.py"].change_type == "modified"
        assert by_path["src/new.py"].change_type == "added"
        for result in by_path.values():
            assert result.status == FileStatus.SUCCESS
            assert [c.physical_line for c in result.delivered] == [2]
            assert result.comments_posted == 0

    @pytest.mark.asyncio
    async def test_modified_file_prompt_shows_both_versions(self, pipeline, change_set, mock_model):
        await pipeline.review(ticket_for(change_set))

        prompts = [call.args[0] for call in mock_model.generate.await_args_list]
        modified = next(p for p in prompts if "File: src/app.py" in p)
        assert "BEFORE-001: import os" in modified
        assert "AFTER-002: API_KEY = 'sk-live-123'" in modified

    @pytest.mark.asyncio
    async def test_context_from_index(self, pipeline, indexer, temp_git_repo, change_set):
        await indexer.index_directory(REPOSITORY, "main", temp_git_repo)

        summary = await pipeline.review(ticket_for(change_set))

        result = next(f for f in summary.files if f.path == "src/new.py")
        assert result.context is not None
        assert result.context.needed is True
        assert result.context.error is None

    @pytest.mark.asyncio
    async def test_missing_index_does_not_fail_review(self, pipeline, change_set):
        summary = await pipeline.review(ticket_for(change_set))

        assert summary.files_failed == 0
        assert all(f.context is not None and not f.context.has_context for f in summary.files)

    @pytest.mark.asyncio
    async def test_one_file_failure_does_not_block_others(self, pipeline, change_set, mock_model):
        async def generate(prompt: str) -> ModelResponse:
            if "src/new.py" in prompt:
                raise ModelInvocationError("model rejected the prompt", status_code=400)
            return ModelResponse(text=SECURITY_RESPONSE, provider="mock", model="mock-1")

        mock_model.generate.side_effect = generate

        summary = await pipeline.review(ticket_for(change_set))

        by_path = {f.path: f for f in summary.files}
        assert by_path["src/new.py"].status == FileStatus.FAILED
        assert "model rejected the prompt" in by_path["src/new.py"].error
        assert by_path["src/app.py"].status == FileStatus.SUCCESS
        assert summary.files_failed == 1

    @pytest.mark.asyncio
    async def test_skipped_files(self, pipeline, temp_git_repo, run_git, make_commit, mock_model):
        before = run_git(temp_git_repo, "rev-parse", "HEAD")
        (temp_git_repo / "dist").mkdir()
        (temp_git_repo / "dist" / "bundle.js").write_text("var a=1;\n")
        (temp_git_repo / "src" / "blank.py").write_text("   \n")
        after = make_commit(temp_git_repo, "Add generated files")

        summary = await pipeline.review(ReviewTicket(REPOSITORY, before, after))

        by_path = {f.path: f for f in summary.files}
        assert by_path["dist/bundle.js"].status == FileStatus.SKIPPED
        assert by_path["dist/bundle.js"].error == "denylisted"
        assert by_path["src/blank.py"].status == FileStatus.SKIPPED
        assert by_path["src/blank.py"].error == "empty"
        mock_model.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_findings(self, pipeline, change_set, mock_model_no_issues):
        pipeline.model = mock_model_no_issues

        summary = await pipeline.review(ticket_for(change_set))

        assert summary.files_reviewed == 2
        assert summary.findings_total == 0

    @pytest.mark.asyncio
    async def test_bad_ref_sets_summary_error(self, pipeline):
        summary = await pipeline.review(ReviewTicket(REPOSITORY, "HEAD", "does-not-exist"))

        assert summary.error is not None
        assert summary.files == []

    @pytest.mark.asyncio
    async def test_publishes_to_pull_request(self, pipeline, change_set):
        scm = AsyncMock()
        pipeline.publisher = CommentPublisher(scm, sleep=AsyncMock())

        summary = await pipeline.review(ticket_for(change_set, pull_request_id=7))

        assert summary.comments_posted == 2
        posted = {call.args[3]: call.args[4] for call in scm.post_comment.await_args_list}
        assert posted == {"src/app.py": 2, "src/new.py": 2}
        assert all(call.args[2] == change_set[1] for call in scm.post_comment.await_args_list)

    @pytest.mark.asyncio
    async def test_rejected_comments_counted(self, pipeline, temp_git_repo, change_set):
        pipeline.publisher = CommentPublisher(LocalGitSource(temp_git_repo), sleep=AsyncMock())

        summary = await pipeline.review(ticket_for(change_set, pull_request_id=7))

        assert summary.files_reviewed == 2
        assert summary.comments_failed == 2

    @pytest.mark.asyncio
    async def test_audit_log(self, pipeline, change_set, tmp_path):
        pipeline.audit_log = AuditLog(tmp_path / "reviews.jsonl")

        await pipeline.review(ticket_for(change_set, pull_request_id=7))

        records = pipeline.audit_log.read()
        assert len(records) == 1
        assert records[0]["pull_request_id"] == 7
        assert records[0]["files_reviewed"] == 2


# =============================================================================
# E2E TESTS: merge re-index
# =============================================================================

@pytest.mark.e2e
class TestUpdateIndex:
    """Tests for the merge hook."""

    @pytest.mark.asyncio
    async def test_reindex_ticket(self, pipeline, indexer, memory_store, temp_git_repo, change_set):
        before, _ = change_set
        await pipeline.scm._run_git(["checkout", "-q", before])
        await indexer.index_directory(REPOSITORY, "main", temp_git_repo)
        namespace = repository_namespace(REPOSITORY, "main")
        utils_ids = {p.id for p in memory_store.points(namespace) if p.payload["source"] == "src/utils.py"}

        stats = await pipeline.handle(ticket_for(change_set, action=TicketAction.REINDEX))

        assert isinstance(stats, IndexingStats)
        assert stats.files_removed == 1
        assert stats.files_indexed == 2
        sources = {p.payload["source"] for p in memory_store.points(namespace)}
        assert sources == {"src/app.py", "src/new.py", "src/utils.py"}
        assert {p.id for p in memory_store.points(namespace) if p.payload["source"] == "src/utils.py"} == utils_ids

    @pytest.mark.asyncio
    async def test_requires_indexer(self, temp_git_repo, mock_model, change_set):
        pipeline = ReviewPipeline(scm=LocalGitSource(temp_git_repo), model=mock_model)

        with pytest.raises(RuntimeError):
            await pipeline.update_index(ticket_for(change_set, action=TicketAction.REINDEX))


# =============================================================================
# UNIT TESTS: wiring
# =============================================================================

class TestFromConfig:
    def test_local_wiring(self, temp_git_repo, memory_store, fake_embedder, mock_model):
        config = ReviewerConfig(scm_backend="local", repo_path=str(temp_git_repo), commenting_enabled=False)

        pipeline = ReviewPipeline.from_config(config, store=memory_store, embedder=fake_embedder, model=mock_model)

        assert isinstance(pipeline.scm, LocalGitSource)
        assert pipeline.describe()["publishing"] is False
        assert pipeline.describe()["retrieval"] is True
        assert pipeline.indexer is not None
