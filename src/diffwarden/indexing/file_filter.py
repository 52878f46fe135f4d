"""
File Filter

Decides which repository paths are worth indexing or reviewing and
detects the language of a file from its extension.
"""

import re
from pathlib import PurePosixPath


# File extension to language mapping
EXT_LANGUAGE_MAP = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".cs": "csharp",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".swift": "swift",
    ".scala": "scala",
    ".sql": "sql",
    ".sh": "shell",
    ".bash": "shell",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".xml": "xml",
    ".html": "html",
    ".css": "css",
    ".scss": "css",
    ".md": "markdown",
    ".rst": "text",
    ".txt": "text",
}

# Names without a useful extension
NAME_LANGUAGE_MAP = {
    "Dockerfile": "dockerfile",
    "Makefile": "makefile",
    "Gemfile": "ruby",
    "Rakefile": "ruby",
}


def detect_language(path: str) -> str:
    """Language name for a path, ``"text"`` when unknown."""
    posix = PurePosixPath(path)
    if posix.name in NAME_LANGUAGE_MAP:
        return NAME_LANGUAGE_MAP[posix.name]
    return EXT_LANGUAGE_MAP.get(posix.suffix.lower(), "text")


class FileFilter:
    """Denylist of paths that never reach the chunker or the reviewer."""

    # Build output, dependencies, VCS and IDE folders
    DIRECTORY_PATTERNS = [
        r"(^|/)\.git/",
        r"(^|/)node_modules/",
        r"(^|/)vendor/",
        r"(^|/)dist/",
        r"(^|/)build/",
        r"(^|/)out/",
        r"(^|/)target/",
        r"(^|/)coverage/",
        r"(^|/)__pycache__/",
        r"(^|/)\.venv/",
        r"(^|/)venv/",
        r"(^|/)\.tox/",
        r"(^|/)\.next/",
        r"(^|/)\.nuxt/",
        r"(^|/)\.idea/",
        r"(^|/)\.vscode/",
        r"(^|/)\.cache/",
    ]

    # Lockfiles, generated bundles, logs
    FILE_PATTERNS = [
        r"\.lock$",
        r"(^|/)package-lock\.json$",
        r"(^|/)yarn\.lock$",
        r"(^|/)pnpm-lock\.yaml$",
        r"\.min\.(js|css)$",
        r"\.bundle\.js$",
        r"\.map$",
        r"\.pyc$",
        r"\.log$",
        r"\.tmp$",
    ]

    # Binary, media, archive and font extensions
    BINARY_EXTENSIONS = {
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".svg", ".webp",
        ".pdf", ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar",
        ".jar", ".war", ".class", ".so", ".dll", ".dylib", ".exe", ".bin",
        ".woff", ".woff2", ".ttf", ".eot", ".otf",
        ".mp3", ".mp4", ".mov", ".avi", ".wav",
    }

    def __init__(self, max_file_chars: int = 50_000, extra_patterns: list[str] | None = None):
        """
        Initialize filter.

        Args:
            max_file_chars: Files longer than this are skipped
            extra_patterns: Additional regexes to deny
        """
        self.max_file_chars = max_file_chars
        self._denied = [
            re.compile(p, re.I)
            for p in self.DIRECTORY_PATTERNS + self.FILE_PATTERNS + (extra_patterns or [])
        ]

    def should_skip(self, path: str) -> bool:
        """True if the path is on the denylist."""
        return self.skip_reason(path) is not None

    def skip_reason(self, path: str, text: str | None = None) -> str | None:
        """Why a file is skipped, or None if it should be processed.

        Path rules always apply; size rules only when ``text`` is given.
        """
        normalized = path.replace("\\", "/")
        if PurePosixPath(normalized).suffix.lower() in self.BINARY_EXTENSIONS:
            return "binary"
        for pattern in self._denied:
            if pattern.search(normalized):
                return "denylisted"
        if text is not None:
            if not text.strip():
                return "empty"
            if len(text) > self.max_file_chars:
                return "too_large"
            if "\x00" in text[:1024]:
                return "binary"
        return None
