"""Content-addressed embedding cache with one JSON file per provider/model.

Identity of a chunk is ``source|sha1(text)``: an edited chunk is a new entry,
and entries no longer backed by the current corpus are pruned before saving.

File layout (``{cache_dir}/embeddings-{sha1(cache_key)}.json``)::

    {"version": 1, "modelKey": "provider|base_url|model", "items": {identity: [float, ...]}}

Items holding null or non-finite components are dropped on load. A file that
fails validation, or whose version/modelKey does not match, loads as an empty
(cold) cache — never as an error.
"""

from __future__ import annotations

import hashlib
import logging
import math
import os
import tempfile
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from noteseek.models import Chunk
from noteseek.rag.embedding_client import Embedder

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
DEFAULT_BATCH_SIZE = 16


class CancelSignal(Protocol):
    """Anything with ``is_set()`` — ``asyncio.Event`` or ``threading.Event``."""

    def is_set(self) -> bool: ...


# ------------------------------------------------------------------
# Identity helpers
# ------------------------------------------------------------------


def hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def _usable(vector: Sequence[float | None]) -> bool:
    """Non-empty and every component a finite number."""
    return bool(vector) and all(v is not None and math.isfinite(v) for v in vector)


def chunk_identity(chunk: Chunk) -> str:
    """Cache key for *chunk*: its source path plus a hash of its text."""
    return f"{chunk.source}|{hash_text(chunk.text)}"


def cache_path(cache_dir: Path, cache_key: str) -> Path:
    return Path(cache_dir) / f"embeddings-{hash_text(cache_key)}.json"


# ------------------------------------------------------------------
# On-disk schema
# ------------------------------------------------------------------


class CacheFile(BaseModel):
    """Validated shape of a cache file."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    version: int
    model_key: str = Field(alias="modelKey")
    items: dict[str, list[float | None]] = Field(default_factory=dict)


# ------------------------------------------------------------------
# Cache
# ------------------------------------------------------------------


@dataclass
class FillResult:
    created: int = 0
    done: int = 0
    aborted: bool = False


@dataclass
class EmbeddingCache:
    """In-memory identity → vector map for one provider/endpoint/model.

    Attributes:
        model_key: ``provider|base_url|model`` this cache belongs to.
        path: Backing file, or ``None`` for a memory-only cache.
        vectors: The entries themselves.
    """

    model_key: str
    path: Path | None = None
    vectors: dict[str, list[float]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.vectors)

    def __contains__(self, identity: object) -> bool:
        return identity in self.vectors

    def get(self, chunk: Chunk) -> list[float] | None:
        return self.vectors.get(chunk_identity(chunk))

    # ---- persistence ----

    @classmethod
    def load(cls, path: Path | None, model_key: str) -> EmbeddingCache:
        """Load the cache at *path*; anything unusable yields an empty cache."""
        if path is None:
            return cls(model_key=model_key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return cls(model_key=model_key, path=path)
        except OSError as exc:
            logger.info("Embedding cache %s unreadable (%s); starting cold", path, exc)
            return cls(model_key=model_key, path=path)

        try:
            parsed = CacheFile.model_validate_json(raw)
        except ValidationError:
            logger.info("Embedding cache %s is not valid; starting cold", path)
            return cls(model_key=model_key, path=path)

        if parsed.version != CACHE_VERSION or parsed.model_key != model_key:
            logger.info("Embedding cache %s belongs to another version/model; starting cold", path)
            return cls(model_key=model_key, path=path)

        vectors = {k: v for k, v in parsed.items.items() if _usable(v)}
        if len(vectors) < len(parsed.items):
            logger.info(
                "Dropped %d unusable cached vectors from %s",
                len(parsed.items) - len(vectors),
                path,
            )
        logger.debug("Loaded %d cached embeddings from %s", len(vectors), path)
        return cls(model_key=model_key, path=path, vectors=vectors)

    def save(self) -> bool:
        """Write the cache to ``path`` atomically. Returns False if it could not be written."""
        if self.path is None:
            return False
        payload = CacheFile(version=CACHE_VERSION, model_key=self.model_key, items=self.vectors)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.path.parent, prefix=".embeddings-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload.model_dump_json(by_alias=True))
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.warning("Could not write embedding cache %s: %s", self.path, exc)
            return False
        logger.debug("Saved %d embeddings to %s", len(self.vectors), self.path)
        return True

    # ---- maintenance ----

    def missing(self, corpus: Iterable[Chunk]) -> list[tuple[str, str]]:
        """Return ``(identity, text)`` for non-empty chunks without a cached vector."""
        pending: list[tuple[str, str]] = []
        for chunk in corpus:
            identity = chunk_identity(chunk)
            if identity in self.vectors:
                continue
            text = chunk.text.strip()
            if not text:
                continue
            pending.append((identity, text))
        return pending

    async def fill(
        self,
        pending: Sequence[tuple[str, str]],
        embedder: Embedder,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel: CancelSignal | None = None,
        on_batch: Callable[[int], None] | None = None,
    ) -> FillResult:
        """Embed *pending* in sequential batches of *batch_size*.

        Entries whose vector comes back missing, empty or non-finite are skipped; they
        stay uncached and are retried on the next pass. *cancel* is checked
        before each batch, never mid-request.
        """
        size = max(1, batch_size)
        result = FillResult()
        for start in range(0, len(pending), size):
            if cancel is not None and cancel.is_set():
                result.aborted = True
                break
            batch = pending[start : start + size]
            vectors = await embedder.embed([text for _, text in batch])
            for (identity, _), vector in zip(batch, vectors):
                if isinstance(vector, list) and _usable(vector):
                    self.vectors[identity] = vector
                    result.created += 1
            result.done += len(batch)
            if on_batch is not None:
                on_batch(result.done)
        return result

    def prune(self, corpus: Iterable[Chunk]) -> int:
        """Drop entries whose identity is not in *corpus*. Returns the number removed."""
        valid = {chunk_identity(c) for c in corpus}
        stale = [k for k in self.vectors if k not in valid]
        for k in stale:
            del self.vectors[k]
        return len(stale)


async def ensure_embeddings(
    corpus: Sequence[Chunk],
    cache: EmbeddingCache,
    embedder: Embedder,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Fill cache gaps for *corpus*, prune stale entries, and save if anything changed.

    Returns:
        Number of newly computed embeddings.
    """
    result = await cache.fill(cache.missing(corpus), embedder, batch_size=batch_size)
    pruned = cache.prune(corpus)
    if result.created or pruned:
        logger.info(
            "Embedding cache: %d new, %d pruned, %d total", result.created, pruned, len(cache)
        )
        cache.save()
    return result.created
