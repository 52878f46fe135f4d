"""
Data models for the review pipeline.

Defines the line-level changes, findings, reconciled comments and the
per-run summary.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from diffwarden.retrieval.context import RetrievedContext
from diffwarden.scm.base import ChangedFile


class LineChangeKind(str, Enum):
    """How a single line differs between versions."""

    ADDED = "added"  # No line at this position before
    REMOVED = "removed"  # No line at this position after
    MODIFIED = "modified"


class Severity(str, Enum):
    """How severe is the finding."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class IssueType(str, Enum):
    """Closed taxonomy of finding categories."""

    SECURITY = "security"
    PERFORMANCE = "performance"
    LOGIC = "logic"
    CODE_QUALITY = "code_quality"
    CLEANUP = "cleanup"
    DOCUMENTATION = "documentation"
    BUSINESS_LOGIC = "business_logic"
    OTHER = "other"

    @property
    def label(self) -> str:
        return ISSUE_TYPE_LABELS[self]


ISSUE_TYPE_LABELS = {
    IssueType.SECURITY: "Security",
    IssueType.PERFORMANCE: "Performance",
    IssueType.LOGIC: "Logic",
    IssueType.CODE_QUALITY: "Code Quality",
    IssueType.CLEANUP: "Code Cleanup",
    IssueType.DOCUMENTATION: "Documentation",
    IssueType.BUSINESS_LOGIC: "Business Logic",
    IssueType.OTHER: "Other",
}


class TicketAction(str, Enum):
    """What a ticket asks the worker to do."""

    REVIEW = "review"  # Review a pull request
    REINDEX = "reindex"  # Update the base branch index after a merge


class CommentStatus(str, Enum):
    VALID = "valid"
    OUT_OF_RANGE = "out_of_range"


class FileStatus(str, Enum):
    """Outcome of reviewing one file."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class LineChange:
    """A single changed line position."""

    line_number: int  # 1-indexed
    kind: LineChangeKind
    before: str | None = None
    after: str | None = None


@dataclass
class Hunk:
    """A run of nearby changed lines."""

    start_line: int
    end_line: int
    changes: list[LineChange] = field(default_factory=list)


@dataclass
class Finding:
    """An issue extracted from the model response."""

    line: int
    issue_type: IssueType
    description: str
    severity: Severity = Severity.MEDIUM
    fix: str = ""
    raw_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "line": self.line,
            "issue_type": self.issue_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "fix": self.fix,
            "raw_type": self.raw_type,
        }


@dataclass
class ReconciledComment:
    """A finding mapped onto a physical line of the AFTER file."""

    finding: Finding
    status: CommentStatus
    physical_line: int | None = None
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.finding.to_dict(),
            "physical_line": self.physical_line,
            "status": self.status.value,
            "reason": self.reason,
        }


@dataclass
class ReconciliationResult:
    """Comments ready to publish and the ones that were dropped."""

    delivered: list[ReconciledComment] = field(default_factory=list)
    dropped: list[ReconciledComment] = field(default_factory=list)
    total_lines: int = 0
    labelled: bool = False


@dataclass
class ReviewTicket:
    """A unit of review work produced by a trigger."""

    repository: str  # owner/name
    before_ref: str
    after_ref: str
    pull_request_id: int | None = None
    base_branch: str = "main"
    action: TicketAction = TicketAction.REVIEW

    @property
    def dedup_key(self) -> tuple[str, str, int | None, str]:
        return (self.action.value, self.repository, self.pull_request_id, self.after_ref)


@dataclass
class FileReviewResult:
    """Review result for a single file."""

    path: str
    change_type: str
    status: FileStatus = FileStatus.SUCCESS
    error: str | None = None
    context: RetrievedContext | None = None
    diff_summary: str = ""
    findings: list[Finding] = field(default_factory=list)
    delivered: list[ReconciledComment] = field(default_factory=list)
    dropped: list[ReconciledComment] = field(default_factory=list)
    comments_posted: int = 0
    comments_failed: int = 0
    review_duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "change_type": self.change_type,
            "status": self.status.value,
            "error": self.error,
            "context": self.context.to_dict() if self.context else None,
            "diff_summary": self.diff_summary,
            "findings": [f.to_dict() for f in self.findings],
            "delivered": [c.to_dict() for c in self.delivered],
            "dropped": [c.to_dict() for c in self.dropped],
            "comments_posted": self.comments_posted,
            "comments_failed": self.comments_failed,
            "review_duration_ms": self.review_duration_ms,
        }


@dataclass
class ReviewSummary:
    """Complete output of one review run."""

    repository: str
    pull_request_id: int | None = None
    before_ref: str = ""
    after_ref: str = ""
    files: list[FileReviewResult] = field(default_factory=list)
    deleted_files: list[ChangedFile] = field(default_factory=list)
    files_total: int = 0
    duration_ms: int = 0
    error: str | None = None

    @property
    def files_reviewed(self) -> int:
        return sum(1 for f in self.files if f.status == FileStatus.SUCCESS)

    @property
    def files_failed(self) -> int:
        return sum(1 for f in self.files if f.status == FileStatus.FAILED)

    @property
    def files_skipped(self) -> int:
        return sum(1 for f in self.files if f.status == FileStatus.SKIPPED)

    @property
    def files_deleted(self) -> int:
        return len(self.deleted_files)

    @property
    def findings_total(self) -> int:
        return sum(len(f.findings) for f in self.files)

    @property
    def comments_posted(self) -> int:
        return sum(f.comments_posted for f in self.files)

    @property
    def comments_failed(self) -> int:
        return sum(f.comments_failed for f in self.files)

    @property
    def comments_out_of_range(self) -> int:
        return sum(
            1
            for f in self.files
            for c in f.dropped
            if c.status == CommentStatus.OUT_OF_RANGE
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        return {
            "repository": self.repository,
            "pull_request_id": self.pull_request_id,
            "before_ref": self.before_ref,
            "after_ref": self.after_ref,
            "files": [f.to_dict() for f in self.files],
            "deleted_files": [f.path for f in self.deleted_files],
            "files_total": self.files_total,
            "files_reviewed": self.files_reviewed,
            "files_failed": self.files_failed,
            "files_skipped": self.files_skipped,
            "files_deleted": self.files_deleted,
            "findings_total": self.findings_total,
            "comments_posted": self.comments_posted,
            "comments_failed": self.comments_failed,
            "comments_out_of_range": self.comments_out_of_range,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }
