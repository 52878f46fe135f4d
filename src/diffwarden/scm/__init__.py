"""Source control backends: GitHub REST API and local git."""

from .base import ChangedFile, ChangeType, DiffEntry, DiffPage, SourceControl
from .github import GitHubClient
from .local_git import LocalGitSource

__all__ = [
    "ChangeType",
    "ChangedFile",
    "DiffEntry",
    "DiffPage",
    "GitHubClient",
    "LocalGitSource",
    "SourceControl",
]
