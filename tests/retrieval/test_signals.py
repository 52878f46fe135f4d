"""
Unit tests for change signal analysis.
"""

import pytest

from diffwarden.retrieval.signals import analyze_changes, is_architecturally_important


# =============================================================================
# UNIT TESTS: analyze_changes()
# =============================================================================

class TestAnalyzeChanges:
    """Tests for set-based before/after comparison."""

    def test_new_python_file(self):
        after = "import os\n\n\ndef main():\n    return os.getcwd()\n"
        signals = analyze_changes(None, after, "src/app.py")

        assert signals.is_new_file
        assert signals.language == "python"
        assert signals.added_imports == ["import os"]
        assert signals.added_functions == ["def main():"]
        assert signals.reasons() == [
            "new_file",
            "new_imports",
            "added_functions",
            "architectural_file",
            "public_api_change",
        ]

    def test_body_only_change_needs_no_context(self):
        before = "def helper(value):\n    return value * 2\n"
        after = "def helper(value):\n    return value * 3\n"
        signals = analyze_changes(before, after, "src/utils.py")

        assert not signals.is_new_file
        assert signals.added_lines == ["return value * 3"]
        assert signals.removed_lines == ["return value * 2"]
        assert signals.reasons() == []
        assert not signals.needs_context
        assert signals.summary() == "+1 lines, -1 lines"

    def test_removed_function(self):
        before = "def keep():\n    pass\n\ndef drop():\n    pass\n"
        after = "def keep():\n    pass\n"
        signals = analyze_changes(before, after, "src/utils.py")

        assert signals.removed_functions == ["def drop():"]
        assert "removed_functions" in signals.reasons()
        assert signals.summary() == "-1 functions"
        assert "Check if removed functions are used elsewhere in the codebase" in signals.prompt_hints()

    def test_private_function_is_not_public_api(self):
        before = "def helper(value):\n    return value\n"
        after = before + "\ndef _internal():\n    return 1\n"
        signals = analyze_changes(before, after, "src/utils.py")

        assert signals.reasons() == ["added_functions"]

    def test_javascript_export(self):
        before = "const a = 1;\n"
        after = "const a = 1;\nexport function total(items) {\n  return items.length;\n}\n"
        signals = analyze_changes(before, after, "web/cart.js")

        assert signals.added_functions == ["export function total(items) {"]
        assert "public_api_change" in signals.reasons()

    def test_go_imports_and_types(self):
        before = "package main\n"
        after = 'package main\n\nimport "fmt"\n\ntype Server struct {\n}\n'
        signals = analyze_changes(before, after, "cmd/srv/handler.go")

        assert signals.added_imports == ['import "fmt"']
        assert signals.added_classes == ["type Server struct {"]
        assert "public_api_change" in signals.reasons()

    def test_duplicate_lines_counted_once(self):
        signals = analyze_changes("", "import os\nimport os\n", "tools/script.py")
        assert signals.added_imports == ["import os"]

    def test_unchanged_file_is_minor(self):
        text = "x = 1\n"
        assert analyze_changes(text, text, "src/utils.py").summary() == "Minor changes"

    def test_to_dict(self):
        signals = analyze_changes("", "import sys\n", "tools/script.py")
        data = signals.to_dict()
        assert data["added_imports"] == 1
        assert data["reasons"] == ["new_imports"]


# =============================================================================
# UNIT TESTS: is_architecturally_important()
# =============================================================================

class TestArchitecturalFiles:
    @pytest.mark.parametrize(
        "path",
        ["package.json", "backend/pyproject.toml", "src/main.py", "cmd/server.go", "pkg/__init__.py", "Dockerfile"],
    )
    def test_important(self, path):
        assert is_architecturally_important(path)

    @pytest.mark.parametrize("path", ["src/utils.py", "notes/app.txt", "tests/test_orders.py"])
    def test_not_important(self, path):
        assert not is_architecturally_important(path)
