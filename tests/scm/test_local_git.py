"""
Tests for LocalGitSource against a real temporary repository.
"""

import pytest

from diffwarden.errors import PublishError, SourceControlError
from diffwarden.scm.local_git import ZERO_SHA, LocalGitSource


# =============================================================================
# UNIT TESTS: parse_raw_diff()
# =============================================================================

class TestParseRawDiff:
    def test_added_modified_deleted(self):
        a, b = "a" * 40, "b" * 40
        output = (
            f":000000 100644 {ZERO_SHA} {a} A\0new.py\0"
            f":100644 100644 {a} {b} M\0changed.py\0"
            f":100644 000000 {b} {ZERO_SHA} D\0gone.py\0"
        )

        entries = LocalGitSource.parse_raw_diff(output)

        assert [(e.path, e.before_blob_id, e.after_blob_id) for e in entries] == [
            ("new.py", None, a),
            ("changed.py", a, b),
            ("gone.py", b, None),
        ]

    def test_empty_output(self):
        assert LocalGitSource.parse_raw_diff("") == []

    def test_path_with_spaces(self):
        a = "c" * 40
        output = f":000000 100644 {ZERO_SHA} {a} A\0docs/my notes.md\0"
        assert LocalGitSource.parse_raw_diff(output)[0].path == "docs/my notes.md"


# =============================================================================
# INTEGRATION TESTS: real git
# =============================================================================

@pytest.mark.integration
class TestLocalGitSource:
    """Tests against a temporary repository."""

    @pytest.mark.asyncio
    async def test_differences_between_commits(self, temp_git_repo, run_git, make_commit):
        before = run_git(temp_git_repo, "rev-parse", "HEAD")
        (temp_git_repo / "src" / "app.py").write_text("import os\n\nKEY = 'x'\n")
        (temp_git_repo / "src" / "new.py").write_text("print('hi')\n")
        (temp_git_repo / "README.md").unlink()
        after = make_commit(temp_git_repo, "change things")

        source = LocalGitSource(temp_git_repo)
        page = await source.get_differences("local/test", before, after)

        by_path = {e.path: e for e in page.entries}
        assert set(by_path) == {"src/app.py", "src/new.py", "README.md"}
        assert page.next_token is None
        assert by_path["src/new.py"].before_blob_id is None
        assert by_path["README.md"].after_blob_id is None
        assert by_path["src/app.py"].before_blob_id != by_path["src/app.py"].after_blob_id

    @pytest.mark.asyncio
    async def test_file_content_by_ref_and_blob(self, temp_git_repo, run_git):
        source = LocalGitSource(temp_git_repo)
        head = run_git(temp_git_repo, "rev-parse", "HEAD")
        blob = run_git(temp_git_repo, "rev-parse", f"{head}:src/utils.py")

        by_ref = await source.get_file_content("local/test", "src/utils.py", head)
        by_blob = await source.get_file_content("local/test", "src/utils.py", head, blob_id=blob)

        assert by_ref == by_blob == "def helper(value):\n    return value * 2\n"

    @pytest.mark.asyncio
    async def test_list_tree(self, temp_git_repo):
        source = LocalGitSource(temp_git_repo)
        paths = await source.list_tree("local/test", "HEAD")
        assert sorted(paths) == ["README.md", "src/app.py", "src/utils.py"]

    @pytest.mark.asyncio
    async def test_unknown_ref_raises(self, temp_git_repo):
        source = LocalGitSource(temp_git_repo)
        with pytest.raises(SourceControlError, match="Git command failed"):
            await source.get_differences("local/test", "HEAD", "no-such-ref")

    @pytest.mark.asyncio
    async def test_comments_rejected(self, temp_git_repo):
        source = LocalGitSource(temp_git_repo)
        with pytest.raises(PublishError):
            await source.post_comment("local/test", 1, "HEAD", "src/app.py", 1, "body")
        with pytest.raises(SourceControlError):
            await source.list_pull_request_files("local/test", 1)
