"""
Tests for the command-line interface.
"""

import json
import sys

import pytest
import structlog

from diffwarden import cli

from conftest import FakeEmbedder


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    # Log events go to stderr so stdout holds only the command's JSON
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(file=sys.stderr))
    yield
    structlog.reset_defaults()


@pytest.fixture
def local_env(monkeypatch):
    monkeypatch.setenv("DIFFWARDEN_STORAGE_BACKEND", "inmemory")
    monkeypatch.setenv("DIFFWARDEN_LLM_PROVIDER", "ollama")
    monkeypatch.setenv("EMBEDDING_DIMENSION", "64")
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.setattr(cli, "OllamaEmbedder", lambda **kwargs: FakeEmbedder())


class TestParser:
    def test_index_defaults(self):
        args = cli.build_parser().parse_args(["index", "acme/shop"])
        assert (args.command, args.target, args.branch, args.full, args.ref) == (
            "index", "acme/shop", "main", False, None,
        )

    def test_review_options(self):
        args = cli.build_parser().parse_args(["review", "HEAD~1", "HEAD", "--repo", "/tmp/x", "--no-context"])
        assert (args.before, args.after, args.repo, args.no_context) == ("HEAD~1", "HEAD", "/tmp/x", True)

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestCommands:
    """Commands run end to end with local backends."""

    def test_index_local_directory(self, local_env, temp_git_repo, capsys):
        code = cli.main(["index", str(temp_git_repo), "--repository", "acme/shop"])

        assert code == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["namespace"] == "acme_shop_main"
        assert stats["files_indexed"] == 3

    def test_index_hosted_without_token_fails(self, local_env):
        assert cli.main(["index", "acme/shop"]) == 1

    def test_review_local_refs(self, local_env, temp_git_repo, run_git, make_commit, mock_model, monkeypatch, capsys):
        monkeypatch.setattr("diffwarden.review.pipeline.create_model_client", lambda config: mock_model)
        monkeypatch.setattr("diffwarden.review.pipeline.OllamaEmbedder", lambda **kwargs: FakeEmbedder())
        before = run_git(temp_git_repo, "rev-parse", "HEAD")
        (temp_git_repo / "src" / "utils.py").write_text("SECRET = 'x'\nTOKEN = 'y'\n")
        after = make_commit(temp_git_repo, "Add secrets")

        code = cli.main(["review", before, after, "--repo", str(temp_git_repo), "--no-context"])

        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["files_reviewed"] == 1
        assert summary["findings_total"] == 1
        assert summary["comments_posted"] == 0
