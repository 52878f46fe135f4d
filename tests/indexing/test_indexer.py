"""
Tests for RepositoryIndexer.

Covers idempotent re-indexing, single-file updates, skipping, failure
isolation and the merge hook, against the in-memory store and the fake
embedder.
"""

from pathlib import Path

import pytest

from diffwarden.errors import SourceControlError
from diffwarden.indexing.chunker import TextChunker
from diffwarden.indexing.indexer import (
    PayloadIndexCache,
    RepositoryIndexer,
    iter_local_files,
    repository_namespace,
)
from diffwarden.indexing.models import PayloadFilter, SourceFile
from diffwarden.scm.base import ChangedFile, ChangeType


REPO = "acme/shop"
NAMESPACE = "acme_shop_main"


def body(word: str, paragraphs: int = 3) -> str:
    """File content that splits into one chunk per paragraph at size 100."""
    return "\n\n".join(f"{word} {i} " + "lorem ipsum " * 5 for i in range(paragraphs))


def project(**overrides: str) -> list[SourceFile]:
    files = {
        "src/orders.py": body("orders"),
        "src/payments.py": body("payments"),
        "src/users.py": body("users"),
    }
    files.update(overrides)
    return [SourceFile(path, text) for path, text in files.items()]


async def ids_by_source(store, namespace: str) -> dict[str, set[str]]:
    result: dict[str, set[str]] = {}
    for p in store.points(namespace):
        result.setdefault(p.payload["source"], set()).add(p.id)
    return result


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def indexer(memory_store, fake_embedder, no_wait_retry) -> RepositoryIndexer:
    return RepositoryIndexer(
        memory_store,
        fake_embedder,
        chunker=TextChunker(100, 0),
        batch_size=2,
        concurrency=2,
        retry=no_wait_retry,
    )


# =============================================================================
# UNIT TESTS: namespaces
# =============================================================================

class TestRepositoryNamespace:
    def test_sanitized(self):
        assert repository_namespace("Acme/Shop-Web", "feature/x") == "acme_shop_web_feature_x"

    def test_branches_are_separate(self):
        assert repository_namespace(REPO, "main") != repository_namespace(REPO, "develop")


# =============================================================================
# INDEXING TESTS
# =============================================================================

class TestIndexFiles:
    """Tests for full and incremental indexing."""

    @pytest.mark.asyncio
    async def test_first_run_writes_every_chunk(self, indexer, memory_store):
        stats = await indexer.index_files(REPO, "main", project())

        assert stats.namespace == NAMESPACE
        assert stats.files_total == 3
        assert stats.files_indexed == 3
        assert stats.chunks_written == 9
        assert await memory_store.count(NAMESPACE) == 9

    @pytest.mark.asyncio
    async def test_payload(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())

        payload = memory_store.points(NAMESPACE)[0].payload
        assert payload["repository"] == REPO
        assert payload["branch"] == "main"
        assert payload["namespace"] == NAMESPACE
        assert payload["language"] == "python"
        assert payload["source"].startswith("src/")
        assert payload["text"]

    @pytest.mark.asyncio
    async def test_reindex_unchanged_is_noop(self, indexer, memory_store, fake_embedder):
        """Re-running on identical content embeds and writes nothing."""
        await indexer.index_files(REPO, "main", project())
        embedded = fake_embedder.embedded_texts
        upserted = memory_store.upserted
        before = await ids_by_source(memory_store, NAMESPACE)

        stats = await indexer.index_files(REPO, "main", project())

        assert stats.chunks_written == 0
        assert stats.chunks_deleted == 0
        assert stats.files_unchanged == 3
        assert fake_embedder.embedded_texts == embedded
        assert memory_store.upserted == upserted
        assert await ids_by_source(memory_store, NAMESPACE) == before

    @pytest.mark.asyncio
    async def test_single_file_change_replaces_only_its_chunks(self, indexer, memory_store):
        """Only the edited file's chunks change; every other id is identical."""
        await indexer.index_files(REPO, "main", project())
        before = await ids_by_source(memory_store, NAMESPACE)

        changed = body("payments", 2) + "\n\nrefund " + "changed text " * 5
        stats = await indexer.index_files(REPO, "main", project(**{"src/payments.py": changed}))
        after = await ids_by_source(memory_store, NAMESPACE)

        assert after["src/orders.py"] == before["src/orders.py"]
        assert after["src/users.py"] == before["src/users.py"]
        assert after["src/payments.py"] != before["src/payments.py"]
        assert len(after["src/payments.py"] & before["src/payments.py"]) == 2
        assert stats.files_indexed == 1
        assert stats.files_unchanged == 2
        assert stats.chunks_written == 1
        assert stats.chunks_deleted == 1

    @pytest.mark.asyncio
    async def test_shrinking_file_removes_stale_chunks(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())

        await indexer.index_files(REPO, "main", project(**{"src/users.py": body("users", 1)}))

        ids = await ids_by_source(memory_store, NAMESPACE)
        assert len(ids["src/users.py"]) == 1

    @pytest.mark.asyncio
    async def test_full_rebuild(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())

        stats = await indexer.index_files(REPO, "main", project(), full=True)

        assert stats.chunks_written == 9
        assert await memory_store.count(NAMESPACE) == 9

    @pytest.mark.asyncio
    async def test_payload_indexes_created(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())
        assert memory_store.payload_indexes[NAMESPACE] == {"source", "language"}

    @pytest.mark.asyncio
    async def test_branches_isolated(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())
        await indexer.index_files(REPO, "develop", project(**{"src/extra.py": body("extra", 1)}))

        assert await memory_store.count("acme_shop_main") == 9
        assert await memory_store.count("acme_shop_develop") == 10


class TestSkipping:
    """Tests for files that are not indexed."""

    @pytest.mark.asyncio
    async def test_skip_reasons_counted(self, indexer):
        files = project() + [
            SourceFile("node_modules/lib/index.js", "module.exports = 1"),
            SourceFile("src/empty.py", "   \n"),
        ]

        stats = await indexer.index_files(REPO, "main", files)

        assert stats.files_indexed == 3
        assert stats.files_skipped == 2
        assert stats.skip_reasons == {"denylisted": 1, "empty": 1}

    @pytest.mark.asyncio
    async def test_emptied_file_is_removed_from_index(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())

        stats = await indexer.index_files(REPO, "main", project(**{"src/users.py": ""}))

        ids = await ids_by_source(memory_store, NAMESPACE)
        assert "src/users.py" not in ids
        assert stats.chunks_deleted == 3


class TestFailures:
    """A failing batch never loses the previously indexed content."""

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_old_chunks(self, indexer, memory_store, fake_embedder):
        await indexer.index_files(REPO, "main", project())
        before = await ids_by_source(memory_store, NAMESPACE)

        fake_embedder.fail = True
        stats = await indexer.index_files(REPO, "main", project(**{"src/users.py": body("accounts")}))

        assert stats.batches_failed > 0
        assert stats.files_failed == 1
        assert stats.files_unchanged == 2
        assert await ids_by_source(memory_store, NAMESPACE) == before


# =============================================================================
# SINGLE FILE / MERGE HOOK TESTS
# =============================================================================

class TestFileOperations:
    """Tests for index_file, remove_file and drop_repository."""

    @pytest.mark.asyncio
    async def test_index_and_remove_file(self, indexer, memory_store):
        await indexer.index_file(NAMESPACE, "src/new.py", body("fresh", 2), REPO, "main")
        assert await memory_store.count(NAMESPACE, PayloadFilter(must={"source": "src/new.py"})) == 2

        removed = await indexer.remove_file(NAMESPACE, "src/new.py")

        assert removed == 2
        assert await memory_store.count(NAMESPACE) == 0

    @pytest.mark.asyncio
    async def test_remove_from_missing_namespace(self, indexer):
        assert await indexer.remove_file("nobody_nothing_main", "a.py") == 0

    @pytest.mark.asyncio
    async def test_drop_repository(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())

        assert await indexer.drop_repository(REPO, "main") is True
        assert not await memory_store.namespace_exists(NAMESPACE)


class TestApplyChanges:
    """Tests for re-indexing after a merge."""

    @pytest.mark.asyncio
    async def test_added_modified_deleted(self, indexer, memory_store):
        await indexer.index_files(REPO, "main", project())
        contents = {
            "src/orders.py": body("orders", 2),
            "src/shipping.py": body("shipping", 1),
        }

        async def fetch(change: ChangedFile) -> str:
            return contents[change.path]

        changes = [
            ChangedFile("src/orders.py", ChangeType.MODIFIED, "a1", "b2", "x", "y"),
            ChangedFile("src/shipping.py", ChangeType.ADDED, "a1", "b2", None, "z"),
            ChangedFile("src/users.py", ChangeType.DELETED, "a1", "b2", "w", None),
        ]

        stats = await indexer.apply_changes(REPO, "main", changes, fetch)

        ids = await ids_by_source(memory_store, NAMESPACE)
        assert set(ids) == {"src/orders.py", "src/payments.py", "src/shipping.py"}
        assert len(ids["src/orders.py"]) == 2
        assert stats.files_removed == 1
        assert stats.chunks_deleted == 4  # 3 from users.py, 1 stale from orders.py
        assert stats.files_indexed == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_counted(self, indexer):
        async def fetch(change: ChangedFile) -> str:
            raise SourceControlError("not found", status_code=404)

        changes = [ChangedFile("src/gone.py", ChangeType.ADDED, "a", "b", None, "c")]
        stats = await indexer.apply_changes(REPO, "main", changes, fetch)

        assert stats.files_failed == 1
        assert stats.files_indexed == 0

    @pytest.mark.asyncio
    async def test_denylisted_change_skipped(self, indexer):
        async def fetch(change: ChangedFile) -> str:
            raise AssertionError("denylisted files are never fetched")

        changes = [ChangedFile("dist/app.js", ChangeType.MODIFIED, "a", "b", "c", "d")]
        stats = await indexer.apply_changes(REPO, "main", changes, fetch)

        assert stats.skip_reasons == {"denylisted": 1}


# =============================================================================
# LOCAL DIRECTORY TESTS
# =============================================================================

class TestLocalFiles:
    """Tests for indexing a checkout on disk."""

    def test_iter_local_files(self, tmp_path: Path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "app.py").write_text("print('hi')\n")
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "x.js").write_text("x")
        (tmp_path / "logo.png").write_bytes(b"\x89PNG")
        (tmp_path / "latin1.txt").write_bytes("caf\xe9".encode("latin-1"))

        files = list(iter_local_files(tmp_path))

        assert [f.path for f in files] == ["src/app.py"]

    @pytest.mark.asyncio
    async def test_index_directory(self, indexer, memory_store, tmp_path: Path):
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "a.py").write_text(body("alpha", 2))
        (tmp_path / "pkg" / "b.py").write_text(body("beta", 1))

        stats = await indexer.index_directory(REPO, "main", tmp_path)

        assert stats.files_indexed == 2
        assert await memory_store.count(NAMESPACE) == 3


class TestPayloadIndexCache:
    @pytest.mark.asyncio
    async def test_created_once(self, memory_store):
        cache = PayloadIndexCache()
        await memory_store.ensure_namespace("ns", 3)

        await cache.ensure(memory_store, "ns")
        memory_store.payload_indexes["ns"].clear()
        await cache.ensure(memory_store, "ns")

        assert memory_store.payload_indexes["ns"] == set()

    @pytest.mark.asyncio
    async def test_invalidate(self, memory_store):
        cache = PayloadIndexCache()
        await memory_store.ensure_namespace("ns", 3)
        await cache.ensure(memory_store, "ns")
        memory_store.payload_indexes["ns"].clear()

        cache.invalidate("ns")
        await cache.ensure(memory_store, "ns")

        assert memory_store.payload_indexes["ns"] == {"source", "language"}

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, memory_store):
        """Creation on a missing namespace fails quietly and is retried later."""
        cache = PayloadIndexCache()
        await cache.ensure(memory_store, "missing")

        await memory_store.ensure_namespace("missing", 3)
        await cache.ensure(memory_store, "missing")

        assert memory_store.payload_indexes["missing"] == {"source", "language"}
