"""
Line Reconciler

Maps model-reported line numbers back to physical lines of the AFTER file.
A number is only meaningful relative to the rendering the model was shown:
with labelled content (``AFTER-010: code``) it refers to a label, with raw
content to a 1-indexed line. Anything that cannot be mapped inside the file
is dropped, never clamped.
"""

import re

import structlog

from diffwarden.errors import ReconciliationError

from .change_classifier import split_lines
from .extractor import normalize_description
from .models import CommentStatus, Finding, ReconciledComment, ReconciliationResult

logger = structlog.get_logger(__name__)

LABEL_PATTERN = re.compile(r"^(?:(BEFORE|AFTER)-)?(\d{3,6}):\s?")

# Share of non-blank lines that must carry a label for a rendering to count as labelled
LABEL_THRESHOLD = 0.8


def render_with_labels(content: str, version: str | None = None, start: int = 1, width: int = 3) -> str:
    """Prefix every line with a fixed-width label, e.g. ``AFTER-010: ``."""
    prefix = f"{version}-" if version else ""
    return "\n".join(
        f"{prefix}{number:0{width}d}: {line}"
        for number, line in enumerate(split_lines(content), start=start)
    )


def render_dual(before: str, after: str, width: int = 3) -> str:
    """BEFORE block followed by AFTER block, each labelled from 1."""
    return "\n".join(
        [
            render_with_labels(before, "BEFORE", width=width),
            "",
            render_with_labels(after, "AFTER", width=width),
        ]
    )


class LabelMap:
    """Physical lines of a rendering and the labels they carry."""

    def __init__(self, text: str):
        lines = split_lines(text)
        non_blank = [line for line in lines if line.strip()]
        matches = [LABEL_PATTERN.match(line) for line in lines]
        labelled_count = sum(1 for m in matches if m)
        self.labelled = bool(non_blank) and labelled_count / len(non_blank) >= LABEL_THRESHOLD
        self.dual = self.labelled and any(m and m.group(1) == "BEFORE" for m in matches)

        self.labels: dict[int, int] = {}
        if not self.labelled:
            self.total_lines = len(lines)
            return

        # In a dual rendering only AFTER lines are physical lines of the file;
        # otherwise every line is, labelled or not
        physical = 0
        for match in matches:
            if self.dual and (match is None or match.group(1) != "AFTER"):
                continue
            physical += 1
            if match is not None:
                self.labels.setdefault(int(match.group(2)), physical)
        self.total_lines = physical

    def resolve(self, reported: int) -> int:
        """Physical line for a reported number.

        Raises:
            ReconciliationError: If it falls outside the file
        """
        if self.labelled:
            physical = self.labels.get(reported)
            if physical is None:
                raise ReconciliationError(f"No line labelled {reported}", reported)
        else:
            physical = reported
        if not 1 <= physical <= self.total_lines:
            raise ReconciliationError(
                f"Line {physical} outside 1..{self.total_lines}", reported
            )
        return physical


class LineReconciler:
    """Validate findings against the AFTER file before publication."""

    def __init__(self, max_comments: int = 10):
        self.max_comments = max_comments

    def reconcile(self, findings: list[Finding], after_text: str) -> ReconciliationResult:
        """
        Resolve, validate, deduplicate, order and cap findings.

        Args:
            findings: Extracted findings
            after_text: AFTER content exactly as rendered to the model

        Returns:
            ReconciliationResult with delivered and dropped comments
        """
        label_map = LabelMap(after_text)
        result = ReconciliationResult(total_lines=label_map.total_lines, labelled=label_map.labelled)

        valid: list[ReconciledComment] = []
        seen: set[tuple[int, str]] = set()
        for finding in findings:
            try:
                physical = label_map.resolve(finding.line)
            except ReconciliationError as e:
                logger.warning("Dropping out-of-range finding", line=e.line, reason=str(e))
                result.dropped.append(
                    ReconciledComment(finding=finding, status=CommentStatus.OUT_OF_RANGE, reason=str(e))
                )
                continue

            key = (physical, normalize_description(finding.description))
            if key in seen:
                continue
            seen.add(key)
            valid.append(ReconciledComment(finding=finding, status=CommentStatus.VALID, physical_line=physical))

        valid.sort(key=lambda c: (-c.finding.severity.rank, c.physical_line))
        result.delivered = valid[: self.max_comments]
        for comment in valid[self.max_comments :]:
            comment.reason = "over_limit"
            result.dropped.append(comment)

        if len(valid) > self.max_comments:
            logger.info("Capped comments", kept=self.max_comments, dropped=len(valid) - self.max_comments)
        return result
