"""
Prompt Assembly

Builds the review prompt for added and modified files. Content is shown
with per-line labels so reported line numbers can be mapped back; very
large files are truncated by whole lines, which keeps every shown label
equal to its true line number.
"""

from dataclasses import dataclass

from diffwarden.indexing.file_filter import detect_language
from diffwarden.retrieval.context import RetrievedContext, format_context_for_prompt
from diffwarden.retrieval.signals import ChangeSignals
from diffwarden.scm.base import ChangedFile, ChangeType

from .reconciler import render_with_labels

RESPONSE_FORMAT = [
    "Report each issue on its own line in exactly this format:",
    "- **Line N: [Issue Type]** - description of the problem",
    "  **Fix:** how to fix it",
    "  **Severity:** Critical | High | Medium | Low",
    "",
    "N is the number from the AFTER-NNN label of the line the issue is on.",
    "Only report issues on AFTER lines. If there are no issues, say so.",
]


@dataclass
class ReviewPrompt:
    """A prompt and the AFTER rendering its line numbers refer to."""

    text: str
    after_rendering: str
    truncated: bool = False


def truncate_lines(text: str, max_chars: int) -> tuple[str, bool]:
    """Keep whole leading lines up to ``max_chars`` characters."""
    if len(text) <= max_chars:
        return text, False
    kept: list[str] = []
    size = 0
    lines = text.split("\n")
    for line in lines:
        if size + len(line) + 1 > max_chars:
            break
        kept.append(line)
        size += len(line) + 1
    kept.append(f"... ({len(lines) - len(kept)} more lines truncated)")
    return "\n".join(kept), True


def build_review_prompt(
    changed_file: ChangedFile,
    after_content: str,
    before_content: str | None = None,
    context: RetrievedContext | None = None,
    signals: ChangeSignals | None = None,
    diff_text: str | None = None,
    max_chars: int = 12_000,
) -> ReviewPrompt:
    """Build the review prompt for one file."""
    language = detect_language(changed_file.path)
    after_rendering = render_with_labels(after_content, "AFTER")
    is_new = changed_file.change_type == ChangeType.ADDED or before_content is None

    # Modified files show both sides, so each side gets half the budget
    budget = max_chars if is_new else max_chars // 2
    shown_after, after_truncated = truncate_lines(after_rendering, budget)

    if is_new:
        prompt_parts = [
            f"You are a senior software engineer reviewing a new {language} file in a pull request.",
            "",
            f"New File: {changed_file.path}",
            "",
            f"```{language}",
            shown_after,
            "```",
            "",
        ]
        truncated = after_truncated
    else:
        shown_before, before_truncated = truncate_lines(
            render_with_labels(before_content, "BEFORE"), budget
        )
        prompt_parts = [
            f"You are a senior software engineer reviewing a pull request diff for a {language} file.",
            "",
            f"File: {changed_file.path}",
        ]
        if signals is not None:
            prompt_parts.append(f"Change summary: {signals.summary()}")
        prompt_parts.extend(["", "BEFORE (original):", f"```{language}", shown_before, "```", ""])
        prompt_parts.extend(["AFTER (modified):", f"```{language}", shown_after, "```", ""])
        if diff_text:
            prompt_parts.extend(["Changed lines:", "```diff", diff_text, "```", ""])
        truncated = after_truncated or before_truncated

    if context is not None and context.has_context:
        prompt_parts.extend([format_context_for_prompt(context), ""])

    if is_new:
        prompt_parts.extend([
            "Review this file for:",
            "1. Security vulnerabilities",
            "2. Logic errors and unhandled edge cases",
            "3. Performance problems",
            f"4. Adherence to {language} conventions and existing codebase patterns",
            "",
        ])
    else:
        prompt_parts.extend([
            "Focus ONLY on what changed between BEFORE and AFTER.",
            "Review the changes for security impact, bugs they introduce, performance,",
            "code quality and how they affect related code.",
            "",
        ])
        hints = signals.prompt_hints() if signals is not None else []
        if hints:
            prompt_parts.extend([f"Context analysis needed: {', '.join(hints)}.", ""])

    prompt_parts.extend(RESPONSE_FORMAT)
    return ReviewPrompt(text="\n".join(prompt_parts), after_rendering=after_rendering, truncated=truncated)
