import asyncio
from pathlib import Path

import pytest

from conftest import TEST_DIMENSION, FakeEmbeddingBackend, make_settings
from coderag.embeddings.service import EmbeddingService
from coderag.errors import EmbeddingBackendError
from coderag.indexing.pipeline import (
    STATUS_ALREADY_RUNNING,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DISPOSED,
    CancellationToken,
    IndexingService,
)


class RecordingReporter:
    def __init__(self):
        self.updates = []

    def report(self, progress):
        self.updates.append(progress)


async def _service(settings, store, backend=None) -> IndexingService:
    backend = backend or FakeEmbeddingBackend()
    await store.initialize()
    embedding_service = EmbeddingService(backend, dimension=TEST_DIMENSION, cache_enabled=False)
    return IndexingService(settings, embedding_service, store)


@pytest.mark.asyncio
async def test_full_index_adds_chunks_with_metadata(settings, store, workspace):
    service = await _service(settings, store)
    reporter = RecordingReporter()

    summary = await service.index_workspace(progress=reporter)

    assert summary.status == STATUS_COMPLETED
    assert (summary.files_total, summary.files_indexed, summary.files_skipped) == (3, 3, 0)
    assert summary.chunks_indexed == await store.get_document_count() == 3

    docs = await store.list_documents(limit=10)
    by_path = {Path(d.metadata["filePath"]).name: d for d in docs}
    assert set(by_path) == {"app.py", "util.ts", "README.md"}
    app = by_path["app.py"].metadata
    assert app["language"] == "python"
    assert app["relativePath"] == "src/app.py"
    assert app["startLine"] == 1 and app["chunkIndex"] == 0

    last = reporter.updates[-1]
    assert (last.processed_files, last.total_files, last.percentage) == (3, 3, 100)


@pytest.mark.asyncio
async def test_reindex_replaces_previous_contents(settings, store, workspace):
    service = await _service(settings, store)
    await service.index_workspace()
    await service.index_workspace()
    assert await store.get_document_count() == 3


@pytest.mark.asyncio
async def test_concurrent_run_returns_already_in_progress(settings, store, workspace):
    gate = asyncio.Event()
    service = await _service(settings, store, FakeEmbeddingBackend(gate=gate))

    first = asyncio.create_task(service.index_workspace())
    while not service.is_indexing:
        await asyncio.sleep(0)

    second = await service.index_workspace()
    assert second.status == STATUS_ALREADY_RUNNING
    assert second.chunks_indexed == 0

    gate.set()
    summary = await first
    assert summary.status == STATUS_COMPLETED
    assert await store.get_document_count() == 3
    assert not service.is_indexing


@pytest.mark.asyncio
async def test_file_with_malformed_embeddings_is_skipped(settings, store, workspace):
    (workspace / "src" / "bad.py").write_text("BROKEN = True\n", encoding="utf-8")
    service = await _service(settings, store, FakeEmbeddingBackend(broken_marker="BROKEN"))

    summary = await service.index_workspace()

    assert summary.status == STATUS_COMPLETED
    assert summary.files_skipped == 1
    assert summary.files_indexed == 3
    paths = {d.metadata["relativePath"] for d in await store.list_documents(limit=10)}
    assert "src/bad.py" not in paths


@pytest.mark.asyncio
async def test_unreadable_and_empty_files_are_skipped(settings, store, workspace):
    (workspace / "src" / "latin1.py").write_bytes(b"caf\xe9 = 1\n")
    (workspace / "src" / "empty.py").write_text("   \n", encoding="utf-8")
    service = await _service(settings, store)

    summary = await service.index_workspace()

    assert summary.files_total == 5
    assert summary.files_skipped == 2
    assert await store.get_document_count() == 3


@pytest.mark.asyncio
async def test_oversized_file_is_skipped(tmp_path, store, workspace):
    settings = make_settings(tmp_path, max_file_size_bytes=40)
    service = await _service(settings, store)

    summary = await service.index_workspace()

    # util.ts is the only file above 40 bytes
    assert summary.files_skipped == 1
    assert summary.files_indexed == 2


@pytest.mark.asyncio
async def test_backend_outage_aborts_the_run_and_releases_the_lock(settings, store, workspace):
    service = await _service(settings, store, FakeEmbeddingBackend(error=EmbeddingBackendError("down")))

    with pytest.raises(EmbeddingBackendError):
        await service.index_workspace()

    assert not service.is_indexing


@pytest.mark.asyncio
async def test_cancelled_run_writes_nothing(settings, store, workspace):
    service = await _service(settings, store)
    token = CancellationToken()
    token.cancel()

    summary = await service.index_workspace(cancel_token=token)

    assert summary.status == STATUS_CANCELLED
    assert await store.get_document_count() == 0


@pytest.mark.asyncio
async def test_empty_workspace_completes_with_nothing_indexed(settings, store):
    service = await _service(settings, store)
    summary = await service.index_workspace()
    assert summary.status == STATUS_COMPLETED
    assert summary.files_total == 0


@pytest.mark.asyncio
async def test_disposed_service_refuses_to_run(settings, store, workspace):
    service = await _service(settings, store)
    service.dispose()
    summary = await service.index_workspace()
    assert summary.status == STATUS_DISPOSED
    assert await store.get_document_count() == 0


@pytest.mark.asyncio
async def test_index_file_replaces_only_that_file(settings, store, workspace):
    service = await _service(settings, store)
    await service.index_workspace()

    app = workspace / "src" / "app.py"
    app.write_text("def main():\n    return 'changed'\n", encoding="utf-8")
    chunks = await service.index_file("src/app.py")

    assert chunks == 1
    docs = await store.list_documents(limit=10)
    assert len(docs) == 3
    [updated] = [d for d in docs if d.metadata["relativePath"] == "src/app.py"]
    assert "changed" in updated.text


@pytest.mark.asyncio
async def test_index_file_ignores_excluded_paths(settings, store, workspace):
    service = await _service(settings, store)
    assert await service.index_file("node_modules/lib/index.js") == 0
    assert await store.get_document_count() == 0


@pytest.mark.asyncio
async def test_changed_file_outside_include_patterns_is_not_indexed(tmp_path, store, workspace):
    settings = make_settings(tmp_path, include_patterns=["**/*.py"], auto_reindex_on_save=True)
    service = await _service(settings, store)

    await service.handle_file_changed("data.bin")
    assert await service.index_file("src/util.ts") == 0
    assert await store.get_document_count() == 0

    await service.handle_file_changed("src/app.py")
    assert await store.get_document_count() == 1


@pytest.mark.asyncio
async def test_remove_file(settings, store, workspace):
    service = await _service(settings, store)
    await service.index_workspace()

    removed = await service.remove_file(workspace / "src" / "util.ts")

    assert removed == 1
    assert await service.get_document_count() == 2


@pytest.mark.asyncio
async def test_file_events_follow_auto_reindex_setting(tmp_path, store, workspace):
    settings = make_settings(tmp_path)
    service = await _service(settings, store)

    await service.handle_file_changed("src/app.py")
    assert await store.get_document_count() == 0

    service.update_configuration(make_settings(tmp_path, auto_reindex_on_save=True))
    await service.handle_file_changed("src/app.py")
    assert await store.get_document_count() == 1

    await service.handle_file_deleted("src/app.py")
    assert await store.get_document_count() == 0


@pytest.mark.asyncio
async def test_update_configuration_changes_patterns(tmp_path, store, workspace):
    service = await _service(make_settings(tmp_path), store)
    service.update_configuration(make_settings(tmp_path, include_patterns=["**/*.py"]))

    summary = await service.index_workspace()

    assert summary.files_total == 1
