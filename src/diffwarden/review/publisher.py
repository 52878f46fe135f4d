"""
Comment Publisher

Posts reconciled comments to the hosting API one at a time with a fixed
delay between posts. A rejected comment is logged and the rest still go out.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from diffwarden.errors import PublishError
from diffwarden.scm.base import SourceControl

from .models import Finding, IssueType, ReconciledComment, Severity

logger = structlog.get_logger(__name__)

ISSUE_ICONS = {
    IssueType.SECURITY: "🔒",
    IssueType.PERFORMANCE: "⚡",
    IssueType.LOGIC: "🐛",
    IssueType.CODE_QUALITY: "📝",
    IssueType.CLEANUP: "🧹",
    IssueType.DOCUMENTATION: "📚",
    IssueType.BUSINESS_LOGIC: "📊",
    IssueType.OTHER: "💡",
}

SEVERITY_ICONS = {
    Severity.CRITICAL: "🚨",
    Severity.HIGH: "⚠️",
    Severity.MEDIUM: "📋",
    Severity.LOW: "💡",
}


def format_comment(finding: Finding) -> str:
    """Render a finding as a review comment body."""
    return (
        f"{ISSUE_ICONS[finding.issue_type]} **{finding.issue_type.label}** "
        f"{SEVERITY_ICONS[finding.severity]}\n\n"
        f"**Issue:** {finding.description}\n\n"
        f"**Suggested Fix:** {finding.fix}\n\n"
        f"**Severity:** {finding.severity.value.upper()}"
    )


@dataclass
class PublishOutcome:
    posted: int = 0
    failed: int = 0


class CommentPublisher:
    """Serialized, rate-limited comment posting."""

    def __init__(
        self,
        scm: SourceControl,
        delay_seconds: float = 0.2,
        enabled: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.scm = scm
        self.delay_seconds = delay_seconds
        self.enabled = enabled
        self._sleep = sleep

    async def publish(
        self,
        repository: str,
        pull_request_id: int | None,
        commit_id: str,
        path: str,
        comments: list[ReconciledComment],
    ) -> PublishOutcome:
        """
        Post comments for one file on the AFTER side.

        Returns:
            Counts of posted and failed comments
        """
        outcome = PublishOutcome()
        if not comments:
            return outcome
        if not self.enabled or pull_request_id is None:
            logger.info(
                "Commenting disabled, not publishing",
                path=path,
                comments=len(comments),
            )
            return outcome

        for index, comment in enumerate(comments):
            if index:
                await self._sleep(self.delay_seconds)
            try:
                await self.scm.post_comment(
                    repository,
                    pull_request_id,
                    commit_id,
                    path,
                    comment.physical_line,
                    format_comment(comment.finding),
                )
                outcome.posted += 1
            except PublishError as e:
                outcome.failed += 1
                logger.error(
                    "Failed to post comment",
                    path=path,
                    line=comment.physical_line,
                    error=str(e),
                )

        logger.info("Published comments", path=path, posted=outcome.posted, failed=outcome.failed)
        return outcome
