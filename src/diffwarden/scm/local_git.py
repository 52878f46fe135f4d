"""
Local Git Source

SourceControl implementation backed by a local git checkout. Used by the
CLI to review two refs without a hosting API; it never posts comments.
"""

import asyncio
from pathlib import Path

import structlog

from diffwarden.errors import PublishError, SourceControlError

from .base import DiffEntry, DiffPage

logger = structlog.get_logger(__name__)

ZERO_SHA = "0" * 40


class LocalGitSource:
    """Read differences and file contents with the git CLI."""

    def __init__(self, repo_path: str | Path | None = None):
        """Initialize with optional repo path (defaults to cwd)."""
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()

    async def get_differences(
        self,
        repository: str,
        before_ref: str,
        after_ref: str,
        page_token: str | None = None,
    ) -> DiffPage:
        """All differences in a single page (``repository`` is ignored)."""
        output = await self._run_git(
            ["diff", "--raw", "-z", "--no-renames", "--no-abbrev", before_ref, after_ref]
        )
        return DiffPage(entries=self.parse_raw_diff(output))

    @staticmethod
    def parse_raw_diff(output: str) -> list[DiffEntry]:
        """Parse ``git diff --raw -z`` output."""
        entries: list[DiffEntry] = []
        tokens = output.split("\0")
        i = 0
        while i < len(tokens) - 1:
            meta = tokens[i]
            if not meta.startswith(":"):
                i += 1
                continue
            path = tokens[i + 1]
            fields = meta[1:].split()
            old_sha, new_sha = fields[2], fields[3]
            entries.append(
                DiffEntry(
                    path=path,
                    before_blob_id=None if old_sha == ZERO_SHA else old_sha,
                    after_blob_id=None if new_sha == ZERO_SHA else new_sha,
                )
            )
            i += 2
        return entries

    async def get_file_content(
        self,
        repository: str,
        path: str,
        ref: str,
        blob_id: str | None = None,
    ) -> str:
        if blob_id and blob_id != ZERO_SHA:
            return await self._run_git(["cat-file", "-p", blob_id])
        return await self._run_git(["show", f"{ref}:{path}"])

    async def list_pull_request_files(self, repository: str, number: int) -> list[str]:
        raise SourceControlError("Local repositories have no pull requests")

    async def list_tree(self, repository: str, ref: str) -> list[str]:
        output = await self._run_git(["ls-tree", "-r", "--name-only", "-z", ref])
        return [p for p in output.split("\0") if p]

    async def post_comment(
        self,
        repository: str,
        number: int,
        commit_id: str,
        path: str,
        line: int,
        body: str,
    ) -> None:
        raise PublishError("Local repositories do not accept comments", path=path, line=line)

    async def _run_git(self, args: list[str]) -> str:
        """Run git command and return output."""
        cmd = ["git", "-C", str(self.repo_path)] + args

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            error_msg = stderr.decode(errors="replace").strip()
            logger.debug("Git command failed", args=args, error=error_msg)
            raise SourceControlError(f"Git command failed: {error_msg}")

        return stdout.decode("utf-8", errors="replace")
