"""
Indexing pipeline: discover workspace files, chunk, embed, and add to the vector store.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from tqdm import tqdm

from coderag.config import Settings, load_settings
from coderag.embeddings.service import EmbeddingService
from coderag.errors import MalformedEmbeddingError
from coderag.indexing.chunker import ChunkingOptions, language_for_path, split_into_chunks
from coderag.indexing.files import GlobMatcher, find_files
from coderag.vector_store.base import Document, DocumentWithEmbedding, VectorStore

logger = logging.getLogger(__name__)

STATUS_COMPLETED = "completed"
STATUS_ALREADY_RUNNING = "already_in_progress"
STATUS_CANCELLED = "cancelled"
STATUS_DISPOSED = "disposed"

ALREADY_RUNNING_MESSAGE = "Indexing already in progress"


@dataclass
class IndexingProgress:
    processed_files: int
    total_files: int
    chunks: int
    message: str

    @property
    def percentage(self) -> int:
        if not self.total_files:
            return 0
        return round(self.processed_files / self.total_files * 100)


class ProgressReporter(Protocol):
    def report(self, progress: IndexingProgress) -> None:
        ...


class TqdmProgressReporter:
    """Renders indexing progress as a tqdm bar (used by the CLI)."""

    def __init__(self, desc: str = "Indexing") -> None:
        self.desc = desc
        self._bar: tqdm | None = None
        self._last = 0

    def report(self, progress: IndexingProgress) -> None:
        if progress.total_files and self._bar is None:
            self._bar = tqdm(total=progress.total_files, desc=self.desc, unit="files")
        if self._bar is None:
            tqdm.write(progress.message)
            return
        self._bar.update(progress.processed_files - self._last)
        self._last = progress.processed_files
        self._bar.set_postfix_str(f"{progress.chunks} chunks")

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class IndexingSummary:
    status: str
    files_total: int = 0
    files_indexed: int = 0
    files_skipped: int = 0
    chunks_indexed: int = 0
    elapsed_sec: float = 0.0


class IndexingService:
    """
    Keeps the vector store in line with the workspace contents.

    Only one run touches the store at a time: a full ``index_workspace`` call
    made while another holds the lock returns at once with
    ``status="already_in_progress"`` and writes nothing.
    """

    def __init__(
        self,
        settings: Settings,
        embedding_service: EmbeddingService,
        vector_store: VectorStore,
        logger_: logging.Logger | None = None,
    ) -> None:
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.logger = logger_ or logging.getLogger(__name__)
        self._lock = asyncio.Lock()
        self._active_token: Optional[CancellationToken] = None
        self._disposed = False
        self._apply_settings(settings)

    # --- Configuration ---
    def _apply_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.workspace_root = Path(settings.workspace_root).resolve()
        self.matcher = GlobMatcher(settings.include_patterns, settings.exclude_patterns)
        self.chunking = ChunkingOptions(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            min_chunk_size=settings.min_chunk_size,
        )

    def update_configuration(self, settings: Settings | None = None) -> None:
        """Re-read patterns, chunking and auto-reindex options without a restart."""
        self._apply_settings(settings or load_settings())
        self.logger.info(
            "Indexing configuration updated",
            extra={
                "include_patterns": self.settings.include_patterns,
                "exclude_patterns": self.settings.exclude_patterns,
                "auto_reindex_on_save": self.settings.auto_reindex_on_save,
            },
        )

    @property
    def is_indexing(self) -> bool:
        return self._lock.locked()

    async def get_document_count(self) -> int:
        return await self.vector_store.get_document_count()

    # --- Full run ---
    async def index_workspace(
        self,
        progress: ProgressReporter | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> IndexingSummary:
        if self._disposed:
            return IndexingSummary(status=STATUS_DISPOSED)
        if self._lock.locked():
            self.logger.warning(ALREADY_RUNNING_MESSAGE)
            _report(progress, IndexingProgress(0, 0, 0, ALREADY_RUNNING_MESSAGE))
            return IndexingSummary(status=STATUS_ALREADY_RUNNING)

        async with self._lock:
            token = cancel_token or CancellationToken()
            self._active_token = token
            try:
                return await self._run(progress, token)
            except Exception:
                self.logger.exception("Failed to index workspace")
                raise
            finally:
                self._active_token = None

    async def _run(self, progress: ProgressReporter | None, token: CancellationToken) -> IndexingSummary:
        started = time.monotonic()

        existing = await self.vector_store.get_document_count()
        if existing > 0:
            _report(progress, IndexingProgress(0, 0, 0, f"Clearing {existing} existing documents..."))
            await self.vector_store.delete_documents({})
            self.logger.info("Existing documents cleared", extra={"count": existing})

        _report(progress, IndexingProgress(0, 0, 0, "Finding files to index..."))
        files = await asyncio.to_thread(
            find_files, self.workspace_root, self.settings.include_patterns, self.settings.exclude_patterns
        )
        summary = IndexingSummary(status=STATUS_COMPLETED, files_total=len(files))
        if not files:
            message = "No files found to index. Check your include/exclude patterns."
            self.logger.warning(message, extra={"root": str(self.workspace_root)})
            _report(progress, IndexingProgress(0, 0, 0, message))
            summary.elapsed_sec = time.monotonic() - started
            return summary

        self.logger.info(
            "Starting workspace indexing",
            extra={"root": str(self.workspace_root), "files": len(files), "chunk_size": self.chunking.chunk_size},
        )
        _report(progress, IndexingProgress(0, len(files), 0, f"Found {len(files)} files to index"))

        batch_size = self.settings.file_batch_size
        processed = 0
        for i in range(0, len(files), batch_size):
            batch_docs: List[DocumentWithEmbedding] = []
            for path in files[i : i + batch_size]:
                if token.cancelled:
                    break
                documents = await self._embed_file(path)
                processed += 1
                if documents:
                    batch_docs.extend(documents)
                    summary.files_indexed += 1
                else:
                    summary.files_skipped += 1

            # An in-flight embedding finishes, but its result is dropped once cancelled.
            if token.cancelled:
                summary.status = STATUS_CANCELLED
                self.logger.info("Indexing cancelled", extra={"processed_files": processed})
                break

            if batch_docs:
                await self.vector_store.add_documents(batch_docs)
                summary.chunks_indexed += len(batch_docs)

            _report(
                progress,
                IndexingProgress(
                    processed,
                    len(files),
                    summary.chunks_indexed,
                    f"Indexed {processed} of {len(files)} files - {summary.chunks_indexed} chunks created",
                ),
            )

        summary.elapsed_sec = time.monotonic() - started
        self.logger.info(
            "Workspace indexing finished",
            extra={
                "status": summary.status,
                "files_indexed": summary.files_indexed,
                "files_skipped": summary.files_skipped,
                "chunks_indexed": summary.chunks_indexed,
                "elapsed_sec": round(summary.elapsed_sec, 2),
            },
        )
        return summary

    # --- Single files ---
    async def index_file(self, path: str | Path) -> int:
        """Replace the indexed chunks of one file; returns the new chunk count."""
        file_path = self._absolute(path)
        if not self.matcher.is_included(self._relative(file_path)):
            self.logger.debug("Skipping file outside the include patterns", extra={"path": str(file_path)})
            return 0
        async with self._lock:
            await self.vector_store.delete_documents({"filePath": str(file_path)})
            documents = await self._embed_file(file_path)
            if documents:
                await self.vector_store.add_documents(documents)
        self.logger.info("Re-indexed file", extra={"path": str(file_path), "chunks": len(documents)})
        return len(documents)

    async def remove_file(self, path: str | Path) -> int:
        file_path = self._absolute(path)
        async with self._lock:
            removed = await self.vector_store.delete_documents({"filePath": str(file_path)})
        self.logger.info("Removed file from index", extra={"path": str(file_path), "removed": removed})
        return removed

    async def handle_file_changed(self, path: str | Path) -> None:
        if not self._should_auto_reindex(path):
            return
        try:
            await self.index_file(path)
        except Exception:
            self.logger.exception("Failed to auto-reindex file", extra={"path": str(path)})

    async def handle_file_deleted(self, path: str | Path) -> None:
        if not self._should_auto_reindex(path):
            return
        try:
            await self.remove_file(path)
        except Exception:
            self.logger.exception("Failed to remove deleted file from index", extra={"path": str(path)})

    def _should_auto_reindex(self, path: str | Path) -> bool:
        if self._disposed or not self.settings.auto_reindex_on_save:
            return False
        if self.is_indexing:
            self.logger.debug("Skipping auto-reindex while indexing is in progress", extra={"path": str(path)})
            return False
        return True

    def dispose(self) -> None:
        self._disposed = True
        if self._active_token is not None:
            self._active_token.cancel()
        self.logger.info("Indexing service disposed")

    # --- Helpers ---
    async def _embed_file(self, path: Path) -> List[DocumentWithEmbedding]:
        documents = await asyncio.to_thread(self._read_and_chunk, path)
        if not documents:
            return []
        try:
            embeddings = await self.embedding_service.embed([doc.text for doc in documents])
        except MalformedEmbeddingError:
            self.logger.exception("Skipping file with unusable embeddings", extra={"path": str(path)})
            return []
        return [
            DocumentWithEmbedding(id=doc.id, text=doc.text, metadata=doc.metadata, embedding=embedding)
            for doc, embedding in zip(documents, embeddings)
        ]

    def _read_and_chunk(self, path: Path) -> List[Document]:
        try:
            if not path.exists() or path.is_dir():
                return []
            size = path.stat().st_size
            if size > self.settings.max_file_size_bytes:
                self.logger.warning("File too large, skipping", extra={"path": str(path), "bytes": size})
                return []
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            self.logger.warning("Failed to read file, skipping", extra={"path": str(path)}, exc_info=True)
            return []

        if not content.strip():
            return []

        try:
            chunks = split_into_chunks(content, self.chunking)
        except ValueError:
            self.logger.warning("Failed to chunk file, skipping", extra={"path": str(path)}, exc_info=True)
            return []

        language = language_for_path(path)
        relative = self._relative(path)
        return [
            Document(
                id=str(uuid.uuid4()),
                text=chunk.text,
                metadata={
                    "filePath": str(path),
                    "relativePath": relative,
                    "startLine": chunk.start_line,
                    "endLine": chunk.end_line,
                    "language": language,
                    "chunkIndex": index,
                },
            )
            for index, chunk in enumerate(chunks)
        ]

    def _absolute(self, path: str | Path) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.workspace_root / candidate
        return candidate.resolve()

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.workspace_root).as_posix()
        except ValueError:
            return path.as_posix()


def _report(progress: ProgressReporter | None, update: IndexingProgress) -> None:
    if progress is not None:
        progress.report(update)


__all__ = [
    "IndexingService",
    "IndexingProgress",
    "IndexingSummary",
    "ProgressReporter",
    "TqdmProgressReporter",
    "CancellationToken",
    "STATUS_COMPLETED",
    "STATUS_ALREADY_RUNNING",
    "STATUS_CANCELLED",
    "STATUS_DISPOSED",
]
