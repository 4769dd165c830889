"""
Workspace file discovery with include/exclude glob patterns.

Patterns are matched against paths relative to the workspace root, using
forward slashes. Supported syntax: ``**``, ``*``, ``?``, ``[...]`` and
``{a,b}`` alternatives.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Sequence

logger = logging.getLogger(__name__)

_BRACE_PATTERN = re.compile(r"\{([^{}]*)\}")


def expand_braces(pattern: str) -> List[str]:
    """Expand ``{a,b}`` groups into separate patterns (innermost first)."""
    match = _BRACE_PATTERN.search(pattern)
    if not match:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: List[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(f"{head}{option}{tail}"))
    return expanded


def glob_to_regex(pattern: str) -> re.Pattern:
    """Convert a single brace-free glob into an anchored regex."""
    result = ""
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                at_segment_start = i == 0 or pattern[i - 1] == "/"
                if at_segment_start and pattern.startswith("**/", i):
                    result += "(?:.*/)?"
                    i += 3
                    continue
                if at_segment_start and i + 2 == n and i > 0:
                    # trailing "/**": the directory itself or anything below it
                    result = result[:-1] + "(?:/.*)?"
                    i += 2
                    continue
                result += ".*"
                i += 2
                continue
            result += "[^/]*"
        elif c == "?":
            result += "[^/]"
        elif c == "[":
            j = i + 1
            if j < n and pattern[j] in "!^":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                result += re.escape(c)
            else:
                body = pattern[i + 1 : j]
                if body[:1] in ("!", "^"):
                    body = "^" + body[1:]
                result += "[" + body.replace("\\", "\\\\") + "]"
                i = j
        else:
            result += re.escape(c)
        i += 1
    return re.compile(f"^{result}$")


class GlobMatcher:
    def __init__(self, include_patterns: Sequence[str], exclude_patterns: Sequence[str] = ()) -> None:
        self.include_patterns = list(include_patterns)
        self.exclude_patterns = list(exclude_patterns)
        self._include = [glob_to_regex(p) for pattern in include_patterns for p in expand_braces(pattern)]
        self._exclude = [glob_to_regex(p) for pattern in exclude_patterns for p in expand_braces(pattern)]

    @staticmethod
    def _normalize(rel_path: str | Path) -> str:
        return Path(rel_path).as_posix()

    def is_excluded(self, rel_path: str | Path) -> bool:
        path = self._normalize(rel_path)
        return any(regex.match(path) for regex in self._exclude)

    def is_included(self, rel_path: str | Path) -> bool:
        path = self._normalize(rel_path)
        return any(regex.match(path) for regex in self._include) and not self.is_excluded(path)


def find_files(root: str | Path, include_patterns: Sequence[str], exclude_patterns: Sequence[str] = ()) -> List[Path]:
    """
    Walk ``root`` and return absolute paths of files matching the patterns.

    Excluded directories are pruned without descending into them. The result is
    sorted and free of duplicates.
    """
    base = Path(root).resolve()
    if not base.is_dir():
        logger.warning("Workspace root is not a directory", extra={"root": str(base)})
        return []

    matcher = GlobMatcher(include_patterns, exclude_patterns)
    found: List[Path] = []

    for dirpath, dirnames, filenames in os.walk(base):
        current = Path(dirpath)
        rel_dir = current.relative_to(base)
        kept = []
        for name in sorted(dirnames):
            rel = (rel_dir / name).as_posix()
            if matcher.is_excluded(rel):
                logger.debug("Pruning excluded directory", extra={"path": rel})
                continue
            kept.append(name)
        dirnames[:] = kept

        for name in filenames:
            rel = (rel_dir / name).as_posix()
            if matcher.is_included(rel):
                found.append(current / name)

    unique = sorted(set(found))
    logger.info("Discovered workspace files", extra={"root": str(base), "files": len(unique)})
    return unique


__all__ = ["expand_braces", "glob_to_regex", "GlobMatcher", "find_files"]
