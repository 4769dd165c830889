"""
Durable key -> vector cache with TTL expiry.

Each entry lives in its own JSON file under the cache directory; a small
in-memory LRU sits in front of the disk for hot keys.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import tempfile
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_MEMORY_ENTRIES = 100
DEFAULT_SWEEP_INTERVAL_SEC = 60 * 60


@dataclass
class CacheEntry:
    key: str
    vector: List[float]
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_json(self) -> Dict[str, object]:
        return {"key": self.key, "vector": self.vector, "expiresAt": self.expires_at}

    @classmethod
    def from_json(cls, data: Dict[str, object]) -> "CacheEntry":
        vector = data["vector"]
        if not isinstance(vector, list):
            raise ValueError("cache entry vector is not a list")
        expires_at = data.get("expiresAt")
        return cls(
            key=str(data["key"]),
            vector=[float(v) for v in vector],
            expires_at=float(expires_at) if expires_at is not None else None,
        )


class EmbeddingCache:
    """
    Persistent embedding cache.

    A ``ttl`` of ``None`` or ``0`` stores the entry without expiry. Expired
    entries are dropped lazily by ``get`` and in bulk by ``sweep``.

    Disk problems never surface to callers: a failed read is a miss and a
    failed write leaves the entry in memory only.
    """

    def __init__(
        self,
        cache_dir: str | Path,
        max_memory_entries: int = DEFAULT_MAX_MEMORY_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.max_memory_entries = max_memory_entries
        self._clock = clock
        self._memory: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._sweep_task: asyncio.Task | None = None
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("EmbeddingCache initialised", extra={"cache_dir": str(self.cache_dir)})

    # --- Public API ---
    async def get(self, key: str) -> Optional[List[float]]:
        now = self._clock()
        file_key = self._hash_key(key)

        entry = self._memory.get(file_key)
        if entry is not None:
            if not entry.is_expired(now):
                self._memory.move_to_end(file_key)
                return entry.vector
            self._memory.pop(file_key, None)
            await self._remove_file(file_key)
            logger.debug("Cache entry expired", extra={"key": key})
            return None

        entry = await asyncio.to_thread(self._read_entry, file_key)
        if entry is None:
            return None
        if entry.is_expired(now):
            await self._remove_file(file_key)
            logger.debug("Cache entry expired on disk", extra={"key": key})
            return None

        self._remember(file_key, entry)
        return entry.vector

    async def set(self, key: str, vector: List[float], ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        entry = CacheEntry(key=key, vector=list(vector), expires_at=expires_at)
        file_key = self._hash_key(key)
        self._remember(file_key, entry)
        try:
            await asyncio.to_thread(self._write_entry, file_key, entry)
        except OSError:
            logger.exception("Failed to persist cache entry", extra={"key": key})

    async def invalidate(self, key: str) -> None:
        file_key = self._hash_key(key)
        self._memory.pop(file_key, None)
        await self._remove_file(file_key)

    async def clear(self) -> None:
        self._memory.clear()
        removed = 0
        for path in await asyncio.to_thread(self._entry_files):
            if await self._unlink(path):
                removed += 1
        logger.info("Embedding cache cleared", extra={"removed": removed})

    async def sweep(self) -> int:
        """Remove every expired entry from memory and disk; return how many files went."""
        now = self._clock()
        for file_key in [k for k, e in self._memory.items() if e.is_expired(now)]:
            self._memory.pop(file_key, None)

        removed = 0
        for path in await asyncio.to_thread(self._entry_files):
            entry = await asyncio.to_thread(self._read_path, path)
            # Unreadable files are garbage too.
            if entry is None or entry.is_expired(now):
                if await self._unlink(path):
                    removed += 1
        if removed:
            logger.info("Swept expired cache entries", extra={"removed": removed})
        return removed

    def start_periodic_sweep(self, interval: float = DEFAULT_SWEEP_INTERVAL_SEC) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_forever(interval))

    async def close(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # --- Internals ---
    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except OSError:
                logger.exception("Periodic cache sweep failed")

    @staticmethod
    def _hash_key(key: str) -> str:
        return hashlib.md5(key.encode("utf-8")).hexdigest()

    def _path_for(self, file_key: str) -> Path:
        return self.cache_dir / f"{file_key}.json"

    def _remember(self, file_key: str, entry: CacheEntry) -> None:
        self._memory[file_key] = entry
        self._memory.move_to_end(file_key)
        while len(self._memory) > self.max_memory_entries:
            self._memory.popitem(last=False)

    def _entry_files(self) -> List[Path]:
        if not self.cache_dir.exists():
            return []
        return sorted(self.cache_dir.glob("*.json"))

    def _read_entry(self, file_key: str) -> Optional[CacheEntry]:
        path = self._path_for(file_key)
        if not path.exists():
            return None
        return self._read_path(path)

    @staticmethod
    def _read_path(path: Path) -> Optional[CacheEntry]:
        try:
            return CacheEntry.from_json(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError):
            logger.warning("Unreadable cache entry", extra={"path": str(path)})
            return None

    def _write_entry(self, file_key: str, entry: CacheEntry) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{file_key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(entry.to_json(), fh)
            os.replace(tmp_path, self._path_for(file_key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def _remove_file(self, file_key: str) -> None:
        await self._unlink(self._path_for(file_key))

    @staticmethod
    async def _unlink(path: Path) -> bool:
        try:
            await asyncio.to_thread(path.unlink)
            return True
        except FileNotFoundError:
            return False
        except OSError:
            logger.exception("Failed to delete cache file", extra={"path": str(path)})
            return False


__all__ = ["EmbeddingCache", "CacheEntry", "DEFAULT_MAX_MEMORY_ENTRIES"]
