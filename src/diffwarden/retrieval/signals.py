"""
Change Signals

Cheap, set-based comparison of a file's before and after content that tells
the retriever whether a change reaches beyond the file itself (new imports,
added or removed declarations, public API edits, architectural files).
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from diffwarden.indexing.file_filter import detect_language


@dataclass(frozen=True)
class LanguagePatterns:
    """Line-level regexes for one language family."""

    imports: tuple[re.Pattern[str], ...]
    functions: tuple[re.Pattern[str], ...]
    classes: tuple[re.Pattern[str], ...]
    public: tuple[re.Pattern[str], ...] = ()


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in patterns)


_C_FAMILY_FUNCTION = r"^(?:[\w:<>\*&,\[\]]+\s+)+[\*&]?\w+\s*\([^;]*\)?\s*\{?$"

LANGUAGE_PATTERNS: dict[str, LanguagePatterns] = {
    "python": LanguagePatterns(
        imports=_compile(r"^import\s+\w", r"^from\s+[\w.]+\s+import\s"),
        functions=_compile(r"^(async\s+)?def\s+\w+\s*\("),
        classes=_compile(r"^class\s+\w+"),
        public=_compile(r"^(async\s+)?def\s+[A-Za-z]\w*\s*\(", r"^class\s+[A-Za-z]\w*", r"^__all__\s*="),
    ),
    "javascript": LanguagePatterns(
        imports=_compile(r"^import\s", r"require\(\s*['\"]", r"^export\s+.*\s+from\s+['\"]"),
        functions=_compile(
            r"^(export\s+)?(default\s+)?(async\s+)?function\s*\*?\s*\w+\s*\(",
            r"^(export\s+)?(const|let|var)\s+\w+\s*=\s*(async\s+)?(function\b|\([^)]*\)\s*=>|\w+\s*=>)",
        ),
        classes=_compile(r"^(export\s+)?(default\s+)?(abstract\s+)?class\s+\w+"),
        public=_compile(r"^export\s"),
    ),
    "typescript": LanguagePatterns(
        imports=_compile(r"^import\s", r"require\(\s*['\"]", r"^export\s+.*\s+from\s+['\"]"),
        functions=_compile(
            r"^(export\s+)?(default\s+)?(async\s+)?function\s*\*?\s*\w+\s*[<(]",
            r"^(export\s+)?(const|let|var)\s+\w+\s*(:\s*[^=]+)?=\s*(async\s+)?(function\b|\([^)]*\)\s*(:\s*[^=]+)?=>|\w+\s*=>)",
        ),
        classes=_compile(
            r"^(export\s+)?(default\s+)?(abstract\s+)?class\s+\w+",
            r"^(export\s+)?interface\s+\w+",
            r"^(export\s+)?type\s+\w+\s*=",
            r"^(export\s+)?(const\s+)?enum\s+\w+",
        ),
        public=_compile(r"^export\s"),
    ),
    "java": LanguagePatterns(
        imports=_compile(r"^import\s+(static\s+)?[\w.]+(\.\*)?\s*;", r"^package\s+[\w.]+\s*;"),
        functions=_compile(
            r"^((public|private|protected|static|final|abstract|synchronized|native)\s+)+[\w<>\[\],\s]+\s+\w+\s*\("
        ),
        classes=_compile(r"^((public|private|protected|static|final|abstract|sealed)\s+)*(class|interface|enum|record)\s+\w+"),
        public=_compile(r"^public\s"),
    ),
    "kotlin": LanguagePatterns(
        imports=_compile(r"^import\s+[\w.]+", r"^package\s+[\w.]+"),
        functions=_compile(r"^((public|private|internal|protected|override|suspend|inline|open)\s+)*fun\s+"),
        classes=_compile(
            r"^((public|private|internal|protected|data|sealed|abstract|open|enum)\s+)*(class|interface|object)\s+\w+"
        ),
        public=_compile(r"^public\s"),
    ),
    "csharp": LanguagePatterns(
        imports=_compile(r"^using\s+[\w.]+\s*;", r"^namespace\s+[\w.]+"),
        functions=_compile(
            r"^((public|private|protected|internal|static|virtual|override|abstract|async|sealed)\s+)+[\w<>\[\],\s]+\s+\w+\s*\("
        ),
        classes=_compile(
            r"^((public|private|protected|internal|static|abstract|sealed|partial)\s+)*(class|interface|struct|enum|record)\s+\w+"
        ),
        public=_compile(r"^public\s"),
    ),
    "go": LanguagePatterns(
        imports=_compile(r"^import\s", r'^"[\w./-]+"$', r'^\w+\s+"[\w./-]+"$'),
        functions=_compile(r"^func\s+"),
        classes=_compile(r"^type\s+\w+\s+(struct|interface)\b"),
        public=_compile(r"^func\s+(\([^)]*\)\s*)?[A-Z]\w*", r"^type\s+[A-Z]\w*"),
    ),
    "rust": LanguagePatterns(
        imports=_compile(r"^(pub\s+)?use\s+", r"^extern\s+crate\s+", r"^(pub\s+)?mod\s+\w+\s*;"),
        functions=_compile(r"^(pub(\([^)]*\))?\s+)?(async\s+)?(unsafe\s+)?(const\s+)?fn\s+\w+"),
        classes=_compile(r"^(pub(\([^)]*\))?\s+)?(struct|enum|trait|union)\s+\w+", r"^impl\b"),
        public=_compile(r"^pub\s"),
    ),
    "ruby": LanguagePatterns(
        imports=_compile(r"^require(_relative)?\s", r"^load\s"),
        functions=_compile(r"^def\s+"),
        classes=_compile(r"^(class|module)\s+[A-Z]"),
    ),
    "php": LanguagePatterns(
        imports=_compile(r"^use\s+[\w\\]+", r"^(require|include)(_once)?\s*[\('\"]", r"^namespace\s+"),
        functions=_compile(r"^((public|private|protected|static|abstract|final)\s+)*function\s+\w+"),
        classes=_compile(r"^((abstract|final)\s+)?(class|interface|trait|enum)\s+\w+"),
        public=_compile(r"^public\s"),
    ),
    "c": LanguagePatterns(
        imports=_compile(r"^#\s*include\s*[<\"]"),
        functions=_compile(_C_FAMILY_FUNCTION),
        classes=_compile(r"^(typedef\s+)?(struct|union|enum)\s+\w+"),
    ),
    "cpp": LanguagePatterns(
        imports=_compile(r"^#\s*include\s*[<\"]", r"^using\s+namespace\s+"),
        functions=_compile(_C_FAMILY_FUNCTION),
        classes=_compile(r"^(template\s*<.*>\s*)?(class|struct|union|enum(\s+class)?)\s+\w+"),
        public=_compile(r"^public\s*:"),
    ),
}

GENERIC_PATTERNS = LanguagePatterns(
    imports=_compile(r"^(import|from|require|include|using|use)\b", r"^#\s*include"),
    functions=_compile(r"^(def|func|function|fn|sub|proc)\s+\w+"),
    classes=_compile(r"^(class|struct|interface|module|trait)\s+\w+"),
)

# Entry points, configuration and build manifests
ARCHITECTURAL_FILES = {
    "__init__.py",
    "__main__.py",
    "setup.py",
    "setup.cfg",
    "pyproject.toml",
    "requirements.txt",
    "package.json",
    "tsconfig.json",
    "go.mod",
    "cargo.toml",
    "pom.xml",
    "build.gradle",
    "build.gradle.kts",
    "gemfile",
    "composer.json",
    "cmakelists.txt",
    "makefile",
    "dockerfile",
    "docker-compose.yml",
    "docker-compose.yaml",
}

ARCHITECTURAL_STEMS = {"main", "index", "app", "server", "settings", "config", "routes", "urls", "program", "startup"}


def patterns_for(path: str) -> LanguagePatterns:
    return LANGUAGE_PATTERNS.get(detect_language(path), GENERIC_PATTERNS)


def is_architecturally_important(path: str) -> bool:
    """Entry points and build or configuration manifests."""
    posix = PurePosixPath(path)
    name = posix.name.lower()
    if name in ARCHITECTURAL_FILES:
        return True
    return posix.stem.lower() in ARCHITECTURAL_STEMS and detect_language(path) != "text"


def _matches(line: str, patterns: tuple[re.Pattern[str], ...]) -> bool:
    return any(p.search(line) for p in patterns)


@dataclass
class ChangeSignals:
    """What changed structurally between two versions of a file."""

    path: str
    language: str
    is_new_file: bool = False
    added_imports: list[str] = field(default_factory=list)
    removed_imports: list[str] = field(default_factory=list)
    added_functions: list[str] = field(default_factory=list)
    removed_functions: list[str] = field(default_factory=list)
    added_classes: list[str] = field(default_factory=list)
    removed_classes: list[str] = field(default_factory=list)
    added_lines: list[str] = field(default_factory=list)
    removed_lines: list[str] = field(default_factory=list)

    @property
    def has_public_api_change(self) -> bool:
        """A changed line carries the language's public marker."""
        public = patterns_for(self.path).public
        if not public:
            return False
        changed = (
            self.added_functions
            + self.removed_functions
            + self.added_classes
            + self.removed_classes
            + self.added_lines
            + self.removed_lines
        )
        return any(_matches(line, public) for line in changed)

    def reasons(self) -> list[str]:
        """Why cross-file context is needed, empty if it is not."""
        reasons = []
        if self.is_new_file:
            reasons.append("new_file")
        if self.added_imports:
            reasons.append("new_imports")
        if self.added_functions:
            reasons.append("added_functions")
        if self.removed_functions:
            reasons.append("removed_functions")
        if self.added_classes:
            reasons.append("added_classes")
        if self.removed_classes:
            reasons.append("removed_classes")
        if is_architecturally_important(self.path):
            reasons.append("architectural_file")
        if self.has_public_api_change:
            reasons.append("public_api_change")
        return reasons

    @property
    def needs_context(self) -> bool:
        return bool(self.reasons())

    def summary(self) -> str:
        """Compact diff summary such as ``+2 imports, -1 functions``."""
        parts = []
        for label, added, removed in (
            ("imports", self.added_imports, self.removed_imports),
            ("functions", self.added_functions, self.removed_functions),
            ("classes", self.added_classes, self.removed_classes),
            ("lines", self.added_lines, self.removed_lines),
        ):
            if added:
                parts.append(f"+{len(added)} {label}")
            if removed:
                parts.append(f"-{len(removed)} {label}")
        return ", ".join(parts) if parts else "Minor changes"

    def prompt_hints(self) -> list[str]:
        """What the reviewer should check against the related code."""
        hints = []
        if self.added_imports:
            hints.append("Check how new imports relate to existing codebase patterns")
        if self.added_functions:
            hints.append("Analyze if new functions follow existing architectural patterns")
        if self.removed_functions:
            hints.append("Check if removed functions are used elsewhere in the codebase")
        if self.removed_classes:
            hints.append("Check if removed classes are referenced elsewhere in the codebase")
        return hints

    def to_dict(self) -> dict:
        return {
            "summary": self.summary(),
            "reasons": self.reasons(),
            "added_imports": len(self.added_imports),
            "removed_imports": len(self.removed_imports),
            "added_functions": len(self.added_functions),
            "removed_functions": len(self.removed_functions),
            "added_classes": len(self.added_classes),
            "removed_classes": len(self.removed_classes),
        }


def _significant_lines(content: str) -> list[str]:
    return [line.strip() for line in content.split("\n") if line.strip()]


def analyze_changes(before: str | None, after: str, path: str) -> ChangeSignals:
    """
    Compare two versions of a file line by line, as sets.

    Args:
        before: Previous content, None for a newly added file
        after: New content
        path: File path (selects the language patterns)

    Returns:
        ChangeSignals describing added and removed declarations
    """
    patterns = patterns_for(path)
    before_lines = _significant_lines(before or "")
    after_lines = _significant_lines(after)
    before_set = set(before_lines)
    after_set = set(after_lines)

    signals = ChangeSignals(path=path, language=detect_language(path), is_new_file=before is None)

    def categorize(lines: list[str], other: set[str], kind: str) -> None:
        for line in dict.fromkeys(lines):
            if line in other:
                continue
            if _matches(line, patterns.imports):
                getattr(signals, f"{kind}_imports").append(line)
            elif _matches(line, patterns.functions):
                getattr(signals, f"{kind}_functions").append(line)
            elif _matches(line, patterns.classes):
                getattr(signals, f"{kind}_classes").append(line)
            else:
                getattr(signals, f"{kind}_lines").append(line)

    categorize(before_lines, after_set, "removed")
    categorize(after_lines, before_set, "added")
    return signals
