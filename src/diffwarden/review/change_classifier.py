"""
Change Classifier

Turns two commit refs into typed file-level changes, and two versions of a
file into line-level changes grouped into hunks.
"""

import difflib
from enum import Enum

import structlog

from diffwarden.errors import SourceControlError
from diffwarden.scm.base import ChangedFile, ChangeType, DiffEntry, SourceControl

from .models import Hunk, LineChange, LineChangeKind

logger = structlog.get_logger(__name__)


class LineDiffStrategy(str, Enum):
    """How before and after lines are paired."""

    INDEX_ALIGNED = "index_aligned"  # line i vs line i
    SEQUENCE = "sequence"  # longest matching subsequence (difflib)


def classify_entry(entry: DiffEntry, before_ref: str, after_ref: str) -> ChangedFile | None:
    """Map a raw difference to a change type, None if nothing changed."""
    if entry.before_blob_id is None and entry.after_blob_id is None:
        return None
    if entry.before_blob_id is None:
        change_type = ChangeType.ADDED
    elif entry.after_blob_id is None:
        change_type = ChangeType.DELETED
    elif entry.before_blob_id == entry.after_blob_id:
        return None
    else:
        change_type = ChangeType.MODIFIED

    return ChangedFile(
        path=entry.path,
        change_type=change_type,
        before_ref=before_ref,
        after_ref=after_ref,
        before_blob_id=entry.before_blob_id,
        after_blob_id=entry.after_blob_id,
    )


class ChangeClassifier:
    """Classify the differences between two commits."""

    def __init__(self, scm: SourceControl, max_pages: int = 1000):
        self.scm = scm
        self.max_pages = max_pages

    async def classify(self, repository: str, before_ref: str, after_ref: str) -> list[ChangedFile]:
        """
        Page through all differences and classify each path.

        Args:
            repository: ``owner/name``
            before_ref: Base commit
            after_ref: Head commit

        Returns:
            One ChangedFile per touched path, in reported order

        Raises:
            SourceControlError: If a page cannot be fetched
        """
        changes: dict[str, ChangedFile] = {}
        token: str | None = None
        seen_tokens: set[str] = set()

        for _ in range(self.max_pages):
            page = await self.scm.get_differences(repository, before_ref, after_ref, token)
            for entry in page.entries:
                changed = classify_entry(entry, before_ref, after_ref)
                if changed is None:
                    continue
                if changed.path in changes:
                    logger.warning("Duplicate path in differences", path=changed.path)
                    continue
                changes[changed.path] = changed

            token = page.next_token
            if token is None:
                break
            if token in seen_tokens:
                raise SourceControlError(f"Pagination token repeated: {token}")
            seen_tokens.add(token)
        else:
            raise SourceControlError(f"More than {self.max_pages} pages of differences")

        result = list(changes.values())
        deleted = [c.path for c in result if c.change_type == ChangeType.DELETED]
        if deleted:
            logger.info("Deleted files are not analysed", files=deleted)
        logger.info(
            "Classified changes",
            repository=repository,
            added=sum(1 for c in result if c.change_type == ChangeType.ADDED),
            modified=sum(1 for c in result if c.change_type == ChangeType.MODIFIED),
            deleted=len(deleted),
        )
        return result

    @staticmethod
    def reviewable(changes: list[ChangedFile]) -> list[ChangedFile]:
        """Changes that go on to analysis (everything but deletions)."""
        return [c for c in changes if c.change_type != ChangeType.DELETED]


def split_lines(text: str) -> list[str]:
    """Lines of a file as git counts them: split on ``\\n`` only, CR stripped."""
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def compute_line_changes(
    before: str,
    after: str,
    strategy: LineDiffStrategy = LineDiffStrategy.INDEX_ALIGNED,
) -> list[LineChange]:
    """
    Line-level differences between two versions of a file.

    The default pairs line i with line i, so an insertion near the top marks
    every following line as modified. SEQUENCE pairs lines by longest
    matching subsequence instead; there, removed lines carry their BEFORE
    line number and all others their AFTER line number.
    """
    before_lines = split_lines(before)
    after_lines = split_lines(after)

    if strategy == LineDiffStrategy.SEQUENCE:
        return _sequence_changes(before_lines, after_lines)

    changes: list[LineChange] = []
    for i in range(max(len(before_lines), len(after_lines))):
        old = before_lines[i] if i < len(before_lines) else None
        new = after_lines[i] if i < len(after_lines) else None
        if old == new:
            continue
        if old is None:
            kind = LineChangeKind.ADDED
        elif new is None:
            kind = LineChangeKind.REMOVED
        else:
            kind = LineChangeKind.MODIFIED
        changes.append(LineChange(line_number=i + 1, kind=kind, before=old, after=new))
    return changes


def _sequence_changes(before_lines: list[str], after_lines: list[str]) -> list[LineChange]:
    changes: list[LineChange] = []
    matcher = difflib.SequenceMatcher(None, before_lines, after_lines, autojunk=False)

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        paired = min(i2 - i1, j2 - j1) if tag == "replace" else 0
        for k in range(paired):
            changes.append(
                LineChange(
                    line_number=j1 + k + 1,
                    kind=LineChangeKind.MODIFIED,
                    before=before_lines[i1 + k],
                    after=after_lines[j1 + k],
                )
            )
        for j in range(j1 + paired, j2):
            changes.append(LineChange(line_number=j + 1, kind=LineChangeKind.ADDED, after=after_lines[j]))
        for i in range(i1 + paired, i2):
            changes.append(LineChange(line_number=i + 1, kind=LineChangeKind.REMOVED, before=before_lines[i]))

    changes.sort(key=lambda c: c.line_number)
    return changes


def group_hunks(changes: list[LineChange], max_gap: int = 3) -> list[Hunk]:
    """Merge changes whose line numbers are at most ``max_gap`` apart."""
    hunks: list[Hunk] = []
    for change in sorted(changes, key=lambda c: c.line_number):
        if hunks and change.line_number - hunks[-1].end_line <= max_gap:
            hunks[-1].end_line = max(hunks[-1].end_line, change.line_number)
            hunks[-1].changes.append(change)
        else:
            hunks.append(
                Hunk(start_line=change.line_number, end_line=change.line_number, changes=[change])
            )
    return hunks


def render_hunks(hunks: list[Hunk]) -> str:
    """Compact ``-``/``+`` rendering used as query text and prompt focus."""
    lines: list[str] = []
    for hunk in hunks:
        lines.append(f"@@ lines {hunk.start_line}-{hunk.end_line} @@")
        for change in hunk.changes:
            if change.before is not None:
                lines.append(f"-{change.before}")
            if change.after is not None:
                lines.append(f"+{change.after}")
    return "\n".join(lines)
