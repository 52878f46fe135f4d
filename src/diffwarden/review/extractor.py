"""
Finding Extractor

Parses a model's free-form review into typed findings. Each rule is a pure
function that recognises one layout of a finding line; rules are tried from
most to least specific and the first match wins. Lines following a finding
may carry its fix and severity.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from .models import Finding, IssueType, Severity

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RuleMatch:
    """What a rule pulled out of a finding line."""

    line: int
    raw_type: str
    description: str


Rule = Callable[[str], RuleMatch | None]

_SEP = r"[-:\u2013\u2014]"
_BULLET = r"[-*•]"


def _regex_rule(pattern: str, typed: bool = True) -> Rule:
    compiled = re.compile(pattern, re.IGNORECASE)

    def rule(text: str) -> RuleMatch | None:
        match = compiled.match(text)
        if not match:
            return None
        if typed:
            line, raw_type, description = match.group(1), match.group(2), match.group(3)
        else:
            line, raw_type, description = match.group(1), "", match.group(2)
        return RuleMatch(
            line=int(line),
            raw_type=raw_type.strip(" *[]"),
            description=description.strip(" *"),
        )

    return rule


# - **Line 7: [Security Issue]** - hardcoded secret
bullet_bold_bracket = _regex_rule(
    rf"^{_BULLET}\s*\*\*Line\s+(\d+)\s*:\s*\[([^\]]+)\]\s*\*\*\s*{_SEP}\s*(.+)$"
)
# **Line 7: [Security Issue]** - hardcoded secret
bold_bracket = _regex_rule(rf"^\*\*Line\s+(\d+)\s*:\s*\[([^\]]+)\]\s*\*\*\s*{_SEP}\s*(.+)$")
# - **Line 38: Code Smell** - description
bullet_bold_type = _regex_rule(rf"^{_BULLET}\s*\*\*Line\s+(\d+)\s*:\s*([^*]+?)\*\*\s*{_SEP}\s*(.+)$")
# **Line 38: Code Smell** - description
bold_type = _regex_rule(rf"^\*\*Line\s+(\d+)\s*:\s*([^*]+?)\*\*\s*{_SEP}\s*(.+)$")
# Line 38: [Code Smell] - description
plain_bracket = _regex_rule(rf"^(?:{_BULLET}\s*)?Line\s+(\d+)\s*:\s*\[([^\]]+)\]\s*{_SEP}\s*(.+)$")
# Line 38: Code Smell - description
plain_type = _regex_rule(
    rf"^(?:{_BULLET}\s*)?Line\s+(\d+)\s*:\s*([^-\[*:\u2013\u2014]+?)\*{{0,2}}\s+[-\u2013\u2014]\s+(.+)$"
)
# Line 38 - description / **Line 38:** description
untyped = _regex_rule(
    rf"^(?:{_BULLET}\s*)?\*{{0,2}}Line\s+(\d+)\s*\*{{0,2}}\s*{_SEP}\s*\*{{0,2}}\s*(.+)$",
    typed=False,
)

DEFAULT_RULES: list[Rule] = [
    bullet_bold_bracket,
    bold_bracket,
    bullet_bold_type,
    bold_type,
    plain_bracket,
    plain_type,
    untyped,
]

_FIX_LINE = re.compile(
    rf"^(?:{_BULLET}\s*)?\*{{0,2}}(?:Suggested\s+)?Fix\b\*{{0,2}}\s*:\s*\*{{0,2}}\s*(.*)$",
    re.IGNORECASE,
)
_SEVERITY_LINE = re.compile(
    rf"^(?:{_BULLET}\s*)?\*{{0,2}}Severity\b\*{{0,2}}\s*:\s*\*{{0,2}}\s*([A-Za-z]+)",
    re.IGNORECASE,
)

SEVERITY_ALIASES = {
    "critical": Severity.CRITICAL,
    "blocker": Severity.CRITICAL,
    "blocking": Severity.CRITICAL,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "trivial": Severity.LOW,
    "info": Severity.LOW,
}

# (category, keywords looked for in the stated type, keywords looked for in the description)
ISSUE_TYPE_KEYWORDS: list[tuple[IssueType, tuple[str, ...], tuple[str, ...]]] = [
    (
        IssueType.SECURITY,
        ("security", "unauthorized", "vulnerab"),
        ("security", "vulnerability", "credential", "password", "injection", "secret"),
    ),
    (
        IssueType.PERFORMANCE,
        ("performance",),
        ("performance", "slow", "inefficient", "optimization", "memory"),
    ),
    (
        IssueType.BUSINESS_LOGIC,
        ("business logic", "business", "functional"),
        ("business", "functional"),
    ),
    (
        IssueType.LOGIC,
        ("logic", "bug", "incomplete update", "error handling"),
        ("null", "exception", "error", "crash"),
    ),
    (
        IssueType.CLEANUP,
        ("unused import", "import", "dead code", "cleanup"),
        ("unused import", "dead code"),
    ),
    (
        IssueType.CODE_QUALITY,
        ("code quality", "quality", "style", "smell", "unused", "maintainability", "readability"),
        ("naming", "convention", "maintainability", "readability", "unclear", "unused"),
    ),
    (
        IssueType.DOCUMENTATION,
        ("documentation", "docs", "comment"),
        ("comment", "javadoc", "docstring", "docs"),
    ),
]

# (category, description keyword or None for the category default, suggestion)
FIX_SUGGESTIONS: list[tuple[IssueType, str | None, str]] = [
    (IssueType.SECURITY, "password", "Move sensitive data to environment variables or secure configuration"),
    (IssueType.SECURITY, "credential", "Move sensitive data to environment variables or secure configuration"),
    (IssueType.SECURITY, "secret", "Move sensitive data to environment variables or secure configuration"),
    (IssueType.SECURITY, "injection", "Use parameterized queries and proper input validation"),
    (IssueType.SECURITY, None, "Review security implications and implement appropriate safeguards"),
    (IssueType.PERFORMANCE, "loop", "Consider using more efficient data structures or algorithms"),
    (IssueType.PERFORMANCE, "query", "Optimize database queries and add proper indexing"),
    (IssueType.PERFORMANCE, "database", "Optimize database queries and add proper indexing"),
    (IssueType.PERFORMANCE, "memory", "Optimize memory usage and avoid unnecessary object creation"),
    (IssueType.PERFORMANCE, None, "Profile and optimize the performance bottleneck"),
    (IssueType.LOGIC, "null", "Add null checks or use optional chaining"),
    (IssueType.LOGIC, "none", "Add None checks before using the value"),
    (IssueType.LOGIC, "exception", "Add proper error handling around the failing call"),
    (IssueType.LOGIC, None, "Review the logic and add appropriate safeguards"),
    (IssueType.CLEANUP, "import", "Remove the unused import statement"),
    (IssueType.CLEANUP, None, "Remove the unused code or document why it is kept"),
    (IssueType.CODE_QUALITY, "naming", "Use more descriptive and conventional naming"),
    (IssueType.CODE_QUALITY, "long", "Break down into smaller, more focused functions"),
    (IssueType.CODE_QUALITY, None, "Refactor to improve code clarity and maintainability"),
    (IssueType.DOCUMENTATION, None, "Add documentation explaining the purpose and usage"),
    (IssueType.BUSINESS_LOGIC, None, "Review the business logic change and ensure it meets requirements"),
]

DEFAULT_FIX = "Review and address the identified issue"

MIN_LINE_LENGTH = 10
MIN_FIX_LENGTH = 10


def classify_issue_type(raw_type: str, description: str) -> IssueType:
    """Map a stated type and description into the closed taxonomy."""
    lower_type = raw_type.lower()
    lower_desc = description.lower()
    for issue_type, type_keywords, desc_keywords in ISSUE_TYPE_KEYWORDS:
        if any(k in lower_type for k in type_keywords) or any(k in lower_desc for k in desc_keywords):
            return issue_type
    return IssueType.OTHER


def parse_severity(value: str) -> Severity:
    """Validate a stated severity, defaulting to MEDIUM."""
    return SEVERITY_ALIASES.get(value.strip().lower(), Severity.MEDIUM)


def suggest_fix(issue_type: IssueType, description: str) -> str:
    """Fallback fix text for a finding without a usable one."""
    lower_desc = description.lower()
    for category, keyword, suggestion in FIX_SUGGESTIONS:
        if category != issue_type:
            continue
        if keyword is None or keyword in lower_desc:
            return suggestion
    return DEFAULT_FIX


def normalize_description(description: str) -> str:
    return re.sub(r"\s+", " ", description).strip().rstrip(".!").lower()


class FindingExtractor:
    """Extract findings from an unstructured model response."""

    def __init__(self, rules: list[Rule] | None = None, lookahead: int = 10):
        """
        Initialize extractor.

        Args:
            rules: Ordered finding-line rules (most specific first)
            lookahead: Lines after a finding searched for Fix/Severity
        """
        self.rules = rules if rules is not None else list(DEFAULT_RULES)
        self.lookahead = lookahead

    def match_line(self, text: str) -> RuleMatch | None:
        """First rule match for a stripped line, if any."""
        for rule in self.rules:
            match = rule(text)
            if match is not None:
                return match
        return None

    def extract(self, response: str) -> list[Finding]:
        """
        Parse findings out of a model response.

        Returns:
            Findings ordered by line, deduplicated by line and description
        """
        if not response or not response.strip():
            logger.debug("Empty model response, no findings")
            return []

        lines = [line.strip() for line in response.split("\n")]
        findings: list[Finding] = []
        seen: set[tuple[int, str]] = set()

        for index, text in enumerate(lines):
            if len(text) < MIN_LINE_LENGTH:
                continue
            match = self.match_line(text)
            if match is None or match.line <= 0 or not match.description:
                continue

            fix, severity = self._scan_details(lines, index)
            issue_type = classify_issue_type(match.raw_type, match.description)
            if len(fix) < MIN_FIX_LENGTH:
                fix = suggest_fix(issue_type, match.description)

            key = (match.line, normalize_description(match.description))
            if key in seen:
                continue
            seen.add(key)

            findings.append(
                Finding(
                    line=match.line,
                    issue_type=issue_type,
                    description=match.description,
                    severity=severity,
                    fix=fix,
                    raw_type=match.raw_type,
                )
            )

        if not findings:
            logger.debug("No findings matched in model response", length=len(response))

        findings.sort(key=lambda f: f.line)
        return findings

    def _scan_details(self, lines: list[str], index: int) -> tuple[str, Severity]:
        fix = ""
        severity = Severity.MEDIUM
        for text in lines[index + 1 : index + 1 + self.lookahead]:
            if not text:
                continue
            if len(text) >= MIN_LINE_LENGTH and self.match_line(text) is not None:
                break
            fix_match = _FIX_LINE.match(text)
            if fix_match:
                fix = fix_match.group(1).strip(" *")
                continue
            severity_match = _SEVERITY_LINE.match(text)
            if severity_match:
                severity = parse_severity(severity_match.group(1))
        return fix, severity
