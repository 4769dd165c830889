"""
Flat-file JSON VectorStore with brute-force similarity search.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from coderag.errors import DimensionMismatchError, StoreInitError, StoreIOError
from coderag.vector_store.base import (
    DEFAULT_SEARCH_LIMIT,
    CollectionMetadata,
    Document,
    DocumentWithEmbedding,
    MetadataFilter,
    SearchOptions,
    SearchResult,
)

STORE_FORMAT_VERSION = "1.0.0"
DEFAULT_COLLECTION = "documents"

_RESERVED_FIELDS = ("id", "text", "embedding")
_OPTIONAL_METADATA = ("filePath", "startLine", "endLine", "language")

logger = logging.getLogger(__name__)


def cosine_similarity(a: Iterable[float], b: Iterable[float]) -> float:
    """
    Absolute cosine similarity in [0, 1].

    Anti-correlated vectors score the same as correlated ones; a zero vector
    scores 0.
    """
    va = np.asarray(list(a), dtype=float)
    vb = np.asarray(list(b), dtype=float)
    if va.shape != vb.shape:
        raise DimensionMismatchError(len(va), len(vb), "cosine_similarity")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(min(1.0, abs(float(np.dot(va, vb))) / norm))


def _resolve_path(record: Dict[str, Any], key: str) -> Any:
    parts = key.split(".")
    if parts[0] == "metadata":
        parts = parts[1:]
    current: Any = record
    for part in parts:
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def matches_filter(document: Document, filter: MetadataFilter | None) -> bool:
    """
    True when the document satisfies every clause of ``filter``.

    Keys are dot paths into the metadata (``metadata.`` prefix optional);
    ``id`` and ``text`` address the document itself. List, tuple and set
    values mean membership, anything else equality.
    """
    if not filter:
        return True
    view = {**document.metadata, "id": document.id, "text": document.text}
    for key, expected in filter.items():
        actual = _resolve_path(view, key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _to_record(doc: DocumentWithEmbedding) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "filePath": doc.metadata.get("filePath"),
        "startLine": doc.metadata.get("startLine"),
        "endLine": doc.metadata.get("endLine"),
        "language": doc.metadata.get("language"),
    }
    record.update({k: v for k, v in doc.metadata.items() if k not in _RESERVED_FIELDS})
    record.update({"id": doc.id, "text": doc.text, "embedding": [float(v) for v in doc.embedding]})
    return record


def _to_document(record: Dict[str, Any]) -> Document:
    metadata = {
        k: v
        for k, v in record.items()
        if k not in _RESERVED_FIELDS and not (k in _OPTIONAL_METADATA and v is None)
    }
    return Document(id=str(record.get("id", "")), text=str(record.get("text", "")), metadata=metadata)


def _usable_records(records: List[Any], file_path: Path) -> List[Dict[str, Any]]:
    usable = [record for record in records if isinstance(record, dict) and record.get("id") is not None]
    if len(usable) != len(records):
        logger.warning(
            "Skipping stored records without an id",
            extra={"file": str(file_path), "skipped": len(records) - len(usable)},
        )
    return usable


class JsonVectorStore:
    """
    One JSON file per collection, rewritten on every mutation.

    Mutations are serialized by an internal asyncio lock and written to a temp
    file that replaces the collection file atomically. Reads never raise for a
    missing or corrupt file; they behave as if the collection were empty.
    """

    def __init__(
        self,
        path: str | Path,
        collection_name: str = DEFAULT_COLLECTION,
        embedding_dimension: int = 1536,
    ) -> None:
        self.path = Path(path)
        self.collection_name = collection_name
        self.embedding_dimension = embedding_dimension
        self.file_path = self.path / f"{collection_name}.json"
        self._initialized = False
        self._write_lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # --- Lifecycle ---
    async def initialize(self) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._initialize_sync)
        self._initialized = True
        count = await self.get_document_count()
        logger.info(
            "JsonVectorStore initialised",
            extra={"file": str(self.file_path), "documents": count, "dimension": self.embedding_dimension},
        )

    def _initialize_sync(self) -> None:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreInitError(f"Cannot create vector store directory {self.path}: {exc}") from exc
        if not os.access(self.path, os.W_OK):
            raise StoreInitError(f"Vector store directory is not writable: {self.path}")

        if not self.file_path.exists():
            try:
                self._write_db({"documents": [], "metadata": self._new_metadata().to_json()})
            except OSError as exc:
                raise StoreInitError(f"Cannot create vector store file {self.file_path}: {exc}") from exc
            logger.debug("Created new collection file", extra={"file": str(self.file_path)})
            return

        try:
            db = json.loads(self.file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreInitError(f"Cannot read vector store file {self.file_path}: {exc}") from exc
        if not isinstance(db, dict):
            raise StoreInitError(f"Vector store file {self.file_path} is not a JSON object")

        raw_metadata = db.get("metadata")
        if not isinstance(raw_metadata, dict) or "embeddingDimension" not in raw_metadata:
            db["metadata"] = self._new_metadata().to_json()
            db.setdefault("documents", [])
            try:
                self._write_db(db)
            except OSError as exc:
                raise StoreInitError(f"Cannot write collection metadata: {exc}") from exc
            return

        metadata = CollectionMetadata.from_json(raw_metadata)
        if metadata.embedding_dimension != self.embedding_dimension:
            raise DimensionMismatchError(
                metadata.embedding_dimension, self.embedding_dimension, f"collection {self.collection_name}"
            )

    async def close(self) -> None:
        if self._initialized:
            self._initialized = False
            logger.debug("JsonVectorStore closed", extra={"file": str(self.file_path)})

    # --- Mutations ---
    async def add_documents(self, documents: List[DocumentWithEmbedding]) -> None:
        self._require_initialized()
        if not documents:
            return
        for doc in documents:
            if len(doc.embedding) != self.embedding_dimension:
                raise DimensionMismatchError(self.embedding_dimension, len(doc.embedding), f"document {doc.id}")

        async with self._write_lock:
            await asyncio.to_thread(self._add_sync, documents)
        logger.debug("Added documents to vector store", extra={"count": len(documents)})

    def _add_sync(self, documents: List[DocumentWithEmbedding]) -> None:
        db = self._read_for_write()
        incoming: Dict[str, Dict[str, Any]] = {}
        for doc in documents:
            incoming.pop(doc.id, None)
            incoming[doc.id] = _to_record(doc)
        kept = [record for record in db["documents"] if record.get("id") not in incoming]
        replaced = len(db["documents"]) - len(kept)
        if replaced:
            logger.debug("Replacing documents with existing ids", extra={"replaced": replaced})
        db["documents"] = kept + list(incoming.values())
        self._write_or_raise(db)

    async def delete_documents(self, filter: MetadataFilter) -> int:
        self._require_initialized()
        async with self._write_lock:
            removed = await asyncio.to_thread(self._delete_sync, filter or {})
        logger.debug("Deleted documents from vector store", extra={"removed": removed, "filter": filter})
        return removed

    def _delete_sync(self, filter: MetadataFilter) -> int:
        db = self._read_for_write()
        original = len(db["documents"])
        if not filter:
            db["documents"] = []
        else:
            db["documents"] = [
                record for record in db["documents"] if not matches_filter(_to_document(record), filter)
            ]
        removed = original - len(db["documents"])
        if removed:
            self._write_or_raise(db)
        return removed

    # --- Reads ---
    async def similarity_search(
        self, query_vector: List[float], options: SearchOptions | None = None
    ) -> List[SearchResult]:
        options = options or SearchOptions()
        db = await asyncio.to_thread(self._read_db)
        records = _usable_records(db.get("documents") or [], self.file_path) if db else []
        if not records:
            return []

        query = np.asarray(query_vector, dtype=float)
        try:
            matrix = np.asarray([record["embedding"] for record in records], dtype=float)
        except (KeyError, TypeError, ValueError):
            logger.error("Stored embeddings are malformed", extra={"file": str(self.file_path)})
            return []
        if matrix.ndim != 2:
            logger.error("Stored embeddings are malformed", extra={"file": str(self.file_path)})
            return []
        if matrix.shape[1] != query.shape[0]:
            raise DimensionMismatchError(matrix.shape[1], query.shape[0], "query vector")

        scores = self._scores(matrix, query)
        results: List[SearchResult] = []
        for record, score in zip(records, scores):
            if options.min_score is not None and score < options.min_score:
                continue
            document = _to_document(record)
            if not matches_filter(document, options.filter):
                continue
            results.append(SearchResult(document=document, score=float(score)))

        results.sort(key=lambda r: r.score, reverse=True)
        limit = options.limit if options.limit and options.limit > 0 else DEFAULT_SEARCH_LIMIT
        return results[:limit]

    @staticmethod
    def _scores(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = np.abs(matrix @ query)
        scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
        return np.clip(scores, 0.0, 1.0)

    async def get_document_count(self) -> int:
        db = await asyncio.to_thread(self._read_db)
        if not db:
            return 0
        documents = db.get("documents")
        return len(documents) if isinstance(documents, list) else 0

    async def get_metadata(self) -> Optional[CollectionMetadata]:
        db = await asyncio.to_thread(self._read_db)
        if not db or not isinstance(db.get("metadata"), dict):
            return None
        try:
            return CollectionMetadata.from_json(db["metadata"])
        except (KeyError, TypeError, ValueError):
            return None

    async def list_documents(self, limit: int = 20, offset: int = 0) -> List[Document]:
        db = await asyncio.to_thread(self._read_db)
        records = _usable_records((db or {}).get("documents") or [], self.file_path)
        return [_to_document(record) for record in records[offset : offset + limit]]

    # --- File helpers ---
    def _require_initialized(self) -> None:
        if not self._initialized:
            raise StoreIOError("Vector store not initialized. Call initialize() first.")

    def _new_metadata(self) -> CollectionMetadata:
        return CollectionMetadata(
            embedding_dimension=self.embedding_dimension,
            created=datetime.now(timezone.utc).isoformat(),
            version=STORE_FORMAT_VERSION,
        )

    def _read_db(self) -> Optional[Dict[str, Any]]:
        if not self.file_path.exists():
            return None
        try:
            db = json.loads(self.file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Failed to read vector store file", extra={"file": str(self.file_path)})
            return None
        if not isinstance(db, dict) or not isinstance(db.get("documents", []), list):
            logger.warning("Vector store file has an unexpected layout", extra={"file": str(self.file_path)})
            return None
        return db

    def _read_for_write(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            logger.warning("Collection file missing, recreating", extra={"file": str(self.file_path)})
            return {"documents": [], "metadata": self._new_metadata().to_json()}
        try:
            db = json.loads(self.file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StoreIOError(f"Failed to read vector store file {self.file_path}: {exc}") from exc
        if not isinstance(db, dict) or not isinstance(db.get("documents", []), list):
            raise StoreIOError(f"Vector store file {self.file_path} has an unexpected layout")
        db.setdefault("documents", [])
        return db

    def _write_or_raise(self, db: Dict[str, Any]) -> None:
        try:
            self._write_db(db)
        except OSError as exc:
            raise StoreIOError(f"Failed to write vector store file {self.file_path}: {exc}") from exc

    def _write_db(self, db: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.path, prefix=f".{self.collection_name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(db, fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


__all__ = ["JsonVectorStore", "cosine_similarity", "matches_filter", "STORE_FORMAT_VERSION"]
