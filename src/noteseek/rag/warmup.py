"""Warmup — pre-populate the embedding cache for a whole corpus.

Runs the same gap-filling and staleness pruning as interactive vector search,
ahead of time, so the first query pays no cold-start embedding cost.
Progress is reported as ``(done, total)``; cancellation is checked before each
batch and never interrupts a request already in flight.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from noteseek.config import VectorCfg
from noteseek.models import Chunk
from noteseek.rag.embedding_cache import CancelSignal

if TYPE_CHECKING:
    from noteseek.store import RetrievalStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class WarmupResult:
    """Outcome of a warmup pass.

    Attributes:
        total: Chunks that had no cached embedding when the pass started.
        created: Embeddings computed and stored during the pass.
        cached: Chunks that were already cached.
        aborted: True if the cancel signal stopped the pass early.
        cache_path: File the cache is persisted to, if any.
    """

    total: int
    created: int
    cached: int
    aborted: bool = False
    cache_path: Path | None = None


async def warmup(
    corpus: Sequence[Chunk],
    vector: VectorCfg,
    store: RetrievalStore,
    *,
    on_progress: ProgressCallback | None = None,
    cancel: CancelSignal | None = None,
) -> WarmupResult:
    """Embed every chunk of *corpus* that is missing from the cache.

    Raises:
        ConfigError: If *vector* is incomplete (before any network call).
    """
    vector.require_complete()
    embedder = store.embedder(vector)
    cache = store.embedding_cache(vector)

    async with store.lock_for(vector):
        pending = cache.missing(corpus)
        total = len(pending)
        cached = max(0, len(corpus) - total)
        if on_progress is not None:
            on_progress(0, total)

        def _on_batch(done: int) -> None:
            if on_progress is not None:
                on_progress(done, total)

        result = await cache.fill(
            pending,
            embedder,
            batch_size=vector.batch_size,
            cancel=cancel,
            on_batch=_on_batch,
        )
        pruned = cache.prune(corpus)
        if result.created or pruned:
            cache.save()

    logger.info(
        "Warmup: %d/%d embedded, %d already cached, %d pruned%s",
        result.created,
        total,
        cached,
        pruned,
        " (aborted)" if result.aborted else "",
    )
    return WarmupResult(
        total=total,
        created=result.created,
        cached=cached,
        aborted=result.aborted,
        cache_path=cache.path,
    )
