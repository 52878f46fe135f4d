"""Source control interface and the change types it produces."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class ChangeType(str, Enum):
    """How a path changed between two commits."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class DiffEntry:
    """A raw difference as reported by the hosting API.

    A missing blob id means the path does not exist on that side.
    """

    path: str
    before_blob_id: str | None = None
    after_blob_id: str | None = None


@dataclass
class DiffPage:
    """One page of differences."""

    entries: list[DiffEntry] = field(default_factory=list)
    next_token: str | None = None


@dataclass
class ChangedFile:
    """A classified file-level change."""

    path: str
    change_type: ChangeType
    before_ref: str
    after_ref: str
    before_blob_id: str | None = None
    after_blob_id: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "path": self.path,
            "change_type": self.change_type.value,
            "before_ref": self.before_ref,
            "after_ref": self.after_ref,
            "before_blob_id": self.before_blob_id,
            "after_blob_id": self.after_blob_id,
        }


class SourceControl(Protocol):
    """Protocol for hosting APIs and local repositories."""

    async def get_differences(
        self,
        repository: str,
        before_ref: str,
        after_ref: str,
        page_token: str | None = None,
    ) -> DiffPage:
        """Get one page of differences between two refs.

        Args:
            repository: ``owner/name``
            before_ref: Base commit or branch
            after_ref: Head commit or branch
            page_token: Token returned by the previous page

        Returns:
            DiffPage whose ``next_token`` is None on the last page

        Raises:
            SourceControlError: If the request fails
        """
        ...

    async def get_file_content(
        self,
        repository: str,
        path: str,
        ref: str,
        blob_id: str | None = None,
    ) -> str:
        """Get file content, by blob id when known, else by path at ref.

        Raises:
            SourceControlError: If the file cannot be read
        """
        ...

    async def list_pull_request_files(self, repository: str, number: int) -> list[str]:
        """Paths touched by a pull request."""
        ...

    async def list_tree(self, repository: str, ref: str) -> list[str]:
        """All file paths at a ref."""
        ...

    async def post_comment(
        self,
        repository: str,
        number: int,
        commit_id: str,
        path: str,
        line: int,
        body: str,
    ) -> None:
        """Post a review comment on the AFTER side of a file.

        Raises:
            PublishError: If the hosting API rejects the comment
        """
        ...
