"""Corpus builder — walk kind → directory mappings into a memoized chunk list.

Only UTF-8 text formats are read (.md .mdx .markdown .txt); dotfiles and
dot-directories are skipped, as are files larger than ``max_file_size``.
Missing directories contribute zero chunks.

The memo is keyed by the sorted (kind, directory) pairs and invalidated as a
whole when any watched directory's mtime changes. Only the top-level
directories are watched: an in-place edit that leaves every watched mtime
untouched needs ``build(..., force=True)``.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from noteseek.ingest.chunker import NoteChunker
from noteseek.models import Chunk

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS: frozenset[str] = frozenset([".md", ".mdx", ".markdown", ".txt"])
MAX_FILE_SIZE = 1024 * 1024  # 1 MiB
_MAX_DEPTH = 10


@dataclass
class _CorpusMemo:
    key: str
    dir_mtimes: dict[str, int]
    chunks: list[Chunk]


@dataclass
class CorpusSummary:
    """Counts for display: chunks per kind and distinct source files."""

    chunks_by_kind: dict[str, int] = field(default_factory=dict)
    sources: int = 0
    chunks: int = 0


class CorpusBuilder:
    """Build and memoize the chunk list for a set of directories.

    Args:
        max_chunk_len: Character ceiling handed to :class:`NoteChunker`.
        max_file_size: Files above this many bytes are skipped.
    """

    def __init__(
        self,
        max_chunk_len: int = 1200,
        max_file_size: int = MAX_FILE_SIZE,
    ) -> None:
        self._chunker = NoteChunker(max_chunk_len=max_chunk_len)
        self._max_file_size = max_file_size
        self._memo: _CorpusMemo | None = None

    def build(
        self, dirs_by_kind: Mapping[str, str | Path], *, force: bool = False
    ) -> list[Chunk]:
        """Return the chunks for *dirs_by_kind*, reusing the last build if unchanged.

        The returned list is shared with the memo; callers must not mutate it.
        """
        entries = sorted(
            (str(kind), Path(path).expanduser().resolve())
            for kind, path in dirs_by_kind.items()
        )
        key = "|".join(f"{kind}:{path}" for kind, path in entries)
        dir_mtimes = {kind: _dir_mtime(path) for kind, path in entries}

        memo = self._memo
        if not force and memo is not None and memo.key == key and memo.dir_mtimes == dir_mtimes:
            logger.debug("Corpus unchanged, reusing %d chunks", len(memo.chunks))
            return memo.chunks

        chunks: list[Chunk] = []
        for kind, directory in entries:
            if not directory.is_dir():
                logger.debug("Corpus directory for '%s' not found: %s", kind, directory)
                continue
            for path in self._scan_dir(directory, depth=0):
                text = self._read(path)
                if text is None:
                    continue
                source = str(path)
                chunks.extend(
                    Chunk(kind=kind, source=source, text=t) for t in self._chunker.chunk(text)
                )

        logger.info(
            "Built corpus: %d chunks from %d kinds", len(chunks), len(entries)
        )
        self._memo = _CorpusMemo(key=key, dir_mtimes=dir_mtimes, chunks=chunks)
        return chunks

    def clear(self) -> None:
        """Forget the memoized build."""
        self._memo = None

    # ------------------------------------------------------------------
    # Filesystem helpers
    # ------------------------------------------------------------------

    def _scan_dir(self, directory: Path, depth: int) -> list[Path]:
        """Return eligible files under *directory*, depth-first in name order."""
        if depth > _MAX_DEPTH:
            return []
        try:
            entries = sorted(directory.iterdir())
        except OSError as exc:
            logger.warning("Cannot list %s: %s", directory, exc)
            return []

        files: list[Path] = []
        for entry in entries:
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                files.extend(self._scan_dir(entry, depth=depth + 1))
                continue
            if entry.suffix.lower() not in ALLOWED_EXTENSIONS:
                continue
            try:
                if entry.stat().st_size > self._max_file_size:
                    logger.debug("Skipping %s: larger than %d bytes", entry, self._max_file_size)
                    continue
            except OSError:
                continue
            files.append(entry)
        return files

    @staticmethod
    def _read(path: Path) -> str | None:
        """Read *path* as UTF-8; unreadable files are skipped with a warning."""
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", path, exc)
            return None


def summarize(chunks: list[Chunk]) -> CorpusSummary:
    """Count *chunks* per kind and distinct sources."""
    by_kind = Counter(c.kind for c in chunks)
    return CorpusSummary(
        chunks_by_kind=dict(sorted(by_kind.items())),
        sources=len({c.source for c in chunks}),
        chunks=len(chunks),
    )


def _dir_mtime(path: Path) -> int:
    """Modification time in ns, or 0 when *path* is missing."""
    try:
        return os.stat(path).st_mtime_ns
    except OSError:
        return 0
