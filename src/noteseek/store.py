"""RetrievalStore — explicit owner of the corpus memo and the embedding caches.

One store per orchestrator (or per test). Nothing is shared at module level,
so two stores never see each other's corpus or vectors.

Usage:
    with RetrievalStore.from_config(cfg) as store:
        corpus = store.build(cfg.corpus.dirs)
        hits = await store.search_multi(queries, corpus, SearchOptions.from_config(cfg))
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from noteseek.config import NoteseekConfig, VectorCfg
from noteseek.ingest.corpus import MAX_FILE_SIZE, CorpusBuilder
from noteseek.models import Chunk, NoteHit
from noteseek.rag import fusion, retriever
from noteseek.rag import warmup as warmup_mod
from noteseek.rag.embedding_cache import CancelSignal, EmbeddingCache, cache_path
from noteseek.rag.embedding_client import Embedder, EmbeddingClient
from noteseek.rag.retriever import SearchOptions

EmbedderFactory = Callable[[VectorCfg], Embedder]


class RetrievalStore:
    """Process-local retrieval state with a construct/close lifecycle.

    Args:
        cache_dir: Directory for embedding cache files; ``None`` keeps caches in memory only.
        max_chunk_len: Character ceiling for chunks.
        max_file_size: Source files above this many bytes are skipped.
        embedder_factory: Builds the embedding collaborator for a vector config.
        max_queries: Cap on distinct queries per fused search.
        concurrency: Per-query searches in flight at once during fusion.
    """

    def __init__(
        self,
        *,
        cache_dir: Path | None = None,
        max_chunk_len: int = 1200,
        max_file_size: int = MAX_FILE_SIZE,
        embedder_factory: EmbedderFactory = EmbeddingClient,
        max_queries: int = fusion.MAX_QUERIES,
        concurrency: int = 4,
    ) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.max_queries = max_queries
        self.concurrency = concurrency
        self._corpus = CorpusBuilder(max_chunk_len=max_chunk_len, max_file_size=max_file_size)
        self._embedder_factory = embedder_factory
        self._caches: dict[str, EmbeddingCache] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._embedders: dict[VectorCfg, Embedder] = {}
        self._closed = False

    @classmethod
    def from_config(cls, cfg: NoteseekConfig, **kwargs) -> RetrievalStore:
        kwargs.setdefault("cache_dir", cfg.cache_dir)
        kwargs.setdefault("max_chunk_len", cfg.corpus.max_chunk_len)
        kwargs.setdefault("max_file_size", cfg.corpus.max_file_size)
        kwargs.setdefault("max_queries", cfg.retrieval.max_queries)
        kwargs.setdefault("concurrency", cfg.retrieval.concurrency)
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Drop the corpus memo, caches and embedders. The store is unusable afterwards."""
        self._corpus.clear()
        self._caches.clear()
        self._locks.clear()
        self._embedders.clear()
        self._closed = True

    def __enter__(self) -> RetrievalStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("RetrievalStore is closed")

    # ------------------------------------------------------------------
    # Owned state
    # ------------------------------------------------------------------

    def build(self, dirs_by_kind: Mapping[str, str | Path], *, force: bool = False) -> list[Chunk]:
        """Build (or reuse) the corpus for *dirs_by_kind*."""
        self._check_open()
        return self._corpus.build(dirs_by_kind, force=force)

    def cache_path(self, vector: VectorCfg) -> Path | None:
        if self.cache_dir is None:
            return None
        return cache_path(self.cache_dir, vector.cache_key)

    def embedding_cache(self, vector: VectorCfg) -> EmbeddingCache:
        """Return the cache for *vector*'s provider/endpoint/model, loading it on first use."""
        self._check_open()
        key = vector.cache_key
        cache = self._caches.get(key)
        if cache is None:
            cache = EmbeddingCache.load(self.cache_path(vector), key)
            self._caches[key] = cache
        return cache

    def lock_for(self, vector: VectorCfg) -> asyncio.Lock:
        """Writer lock for *vector*'s cache."""
        self._check_open()
        return self._locks.setdefault(vector.cache_key, asyncio.Lock())

    def embedder(self, vector: VectorCfg) -> Embedder:
        self._check_open()
        vector.require_complete()
        embedder = self._embedders.get(vector)
        if embedder is None:
            embedder = self._embedder_factory(vector)
            self._embedders[vector] = embedder
        return embedder

    # ------------------------------------------------------------------
    # Retrieval entry points
    # ------------------------------------------------------------------

    async def search(
        self, query: str, corpus: Sequence[Chunk], options: SearchOptions
    ) -> list[NoteHit]:
        return await retriever.search(query, corpus, options, self)

    async def search_multi(
        self, queries: Sequence[str], corpus: Sequence[Chunk], options: SearchOptions
    ) -> list[NoteHit]:
        return await fusion.search_multi(
            queries,
            corpus,
            options,
            self,
            max_queries=self.max_queries,
            concurrency=self.concurrency,
        )

    async def warmup(
        self,
        corpus: Sequence[Chunk],
        vector: VectorCfg,
        *,
        on_progress: warmup_mod.ProgressCallback | None = None,
        cancel: CancelSignal | None = None,
    ) -> warmup_mod.WarmupResult:
        return await warmup_mod.warmup(
            corpus, vector, self, on_progress=on_progress, cancel=cancel
        )
