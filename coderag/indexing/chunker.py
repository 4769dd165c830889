"""
Line-window chunking of source files.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200
DEFAULT_MIN_CHUNK_SIZE = 100

EXTENSION_TO_LANGUAGE: Dict[str, str] = {
    ".js": "javascript",
    ".ts": "typescript",
    ".jsx": "javascriptreact",
    ".tsx": "typescriptreact",
    ".py": "python",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".rb": "ruby",
    ".php": "php",
    ".html": "html",
    ".css": "css",
    ".md": "markdown",
    ".json": "json",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
}


@dataclass(frozen=True)
class ChunkingOptions:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE


@dataclass(frozen=True)
class TextChunk:
    text: str
    start_line: int
    end_line: int


def language_for_path(path: str | Path) -> str:
    return EXTENSION_TO_LANGUAGE.get(Path(path).suffix.lower(), "plaintext")


def split_into_chunks(content: str, options: ChunkingOptions = ChunkingOptions()) -> List[TextChunk]:
    """
    Split text into windows of whole lines.

    A window closes once its characters reach ``chunk_size``; the next window
    re-uses roughly ``chunk_overlap`` characters worth of trailing lines. The
    trailing window is kept only if it reaches ``min_chunk_size``. Line
    numbers are 1-based and inclusive.
    """
    lines = content.split("\n")
    chunks: List[TextChunk] = []

    window: List[str] = []
    window_size = 0
    start_line = 1
    emitted_through = 0

    for line in lines:
        window.append(line)
        window_size += len(line)

        if window_size >= options.chunk_size:
            end_line = start_line + len(window) - 1
            chunks.append(TextChunk(text="\n".join(window), start_line=start_line, end_line=end_line))
            emitted_through = end_line

            avg_line = window_size / len(window)
            overlap = 0
            if options.chunk_overlap > 0 and avg_line > 0:
                overlap = min(math.ceil(options.chunk_overlap / avg_line), len(window) - 1)
            window = window[len(window) - overlap :] if overlap else []
            window_size = sum(len(l) for l in window)
            start_line = end_line - len(window) + 1

    if window:
        end_line = start_line + len(window) - 1
        # Nothing new past the last emitted window means this is pure overlap.
        fresh = window[len(window) - (end_line - emitted_through) :] if end_line > emitted_through else []
        if any(l.strip() for l in fresh) and window_size >= options.min_chunk_size:
            chunks.append(TextChunk(text="\n".join(window), start_line=start_line, end_line=end_line))

    return chunks


__all__ = [
    "ChunkingOptions",
    "TextChunk",
    "split_into_chunks",
    "language_for_path",
    "EXTENSION_TO_LANGUAGE",
]
