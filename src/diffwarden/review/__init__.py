"""
Diff review.

Classifies changes between two commits, prompts the model with
line-labelled content and related context, extracts findings and maps them
back to publishable lines.
"""

from .audit import AuditLog
from .change_classifier import (
    ChangeClassifier,
    LineDiffStrategy,
    classify_entry,
    compute_line_changes,
    group_hunks,
    render_hunks,
    split_lines,
)
from .extractor import FindingExtractor, classify_issue_type, parse_severity, suggest_fix
from .models import (
    CommentStatus,
    FileReviewResult,
    FileStatus,
    Finding,
    Hunk,
    IssueType,
    LineChange,
    LineChangeKind,
    ReconciledComment,
    ReconciliationResult,
    ReviewSummary,
    ReviewTicket,
    Severity,
    TicketAction,
)
from .pipeline import ReviewPipeline
from .prompts import ReviewPrompt, build_review_prompt
from .publisher import CommentPublisher, PublishOutcome, format_comment
from .reconciler import LabelMap, LineReconciler, render_dual, render_with_labels

__all__ = [
    "AuditLog",
    "ChangeClassifier",
    "CommentPublisher",
    "CommentStatus",
    "FileReviewResult",
    "FileStatus",
    "Finding",
    "FindingExtractor",
    "Hunk",
    "IssueType",
    "LabelMap",
    "LineChange",
    "LineChangeKind",
    "LineDiffStrategy",
    "LineReconciler",
    "PublishOutcome",
    "ReconciledComment",
    "ReconciliationResult",
    "ReviewPipeline",
    "ReviewPrompt",
    "ReviewSummary",
    "ReviewTicket",
    "Severity",
    "TicketAction",
    "build_review_prompt",
    "classify_entry",
    "classify_issue_type",
    "compute_line_changes",
    "format_comment",
    "group_hunks",
    "parse_severity",
    "render_dual",
    "render_hunks",
    "render_with_labels",
    "split_lines",
    "suggest_fix",
]
