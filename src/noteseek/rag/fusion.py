"""Multi-query retrieval fused with Reciprocal Rank Fusion.

Each query is searched independently at a widened top_k; the ranked lists are
merged with

  score(d) = Σ 1 / (k + rank + 1)   over every list containing d, k = 60, rank 0-based

Ties are broken by the best raw score d reached in any list. If fewer than
``min(top_k, 3)`` hits survive, the fusion is rerun with a relaxed min_score,
then once more unfiltered.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from noteseek.models import Chunk, NoteHit, round_score
from noteseek.rag.retriever import SearchOptions, search

if TYPE_CHECKING:
    from noteseek.store import RetrievalStore

logger = logging.getLogger(__name__)

RRF_K = 60
MAX_QUERIES = 8
_PER_QUERY_CAP = 20
_RELAXED_FLOOR = 0.12
_UNFILTERED = -1.0


@dataclass
class _Fused:
    source: str
    snippet: str
    best: float
    rank_score: float


def normalize_queries(queries: Sequence[str], max_queries: int = MAX_QUERIES) -> list[str]:
    """Trim, drop empties, dedupe (first occurrence wins) and cap."""
    seen = dict.fromkeys(q.strip() for q in queries if q and q.strip())
    return list(seen)[: max(0, max_queries)]


def relaxed_min_score(base: float) -> float:
    return _RELAXED_FLOOR if base >= 0.2 else base * 0.6


def merge_ranked(lists: Sequence[Sequence[NoteHit]], top_k: int) -> list[NoteHit]:
    """RRF-merge per-query hit lists keyed by (source, snippet)."""
    merged: dict[tuple[str, str], _Fused] = {}
    for hits in lists:
        for rank, hit in enumerate(hits):
            rrf = 1.0 / (RRF_K + rank + 1)
            key = (hit.source, hit.snippet)
            entry = merged.get(key)
            if entry is None:
                merged[key] = _Fused(hit.source, hit.snippet, hit.score, rrf)
            else:
                entry.rank_score += rrf
                entry.best = max(entry.best, hit.score)

    ordered = sorted(merged.values(), key=lambda e: (-e.rank_score, -e.best))
    return [
        NoteHit(score=round_score(e.best), source=e.source, snippet=e.snippet)
        for e in ordered[:top_k]
    ]


async def search_multi(
    queries: Sequence[str],
    corpus: Sequence[Chunk],
    options: SearchOptions,
    store: RetrievalStore,
    *,
    max_queries: int = MAX_QUERIES,
    concurrency: int = 4,
) -> list[NoteHit]:
    """Search every query in *queries* and return one fused, ranked list.

    Per-query searches run concurrently, at most *concurrency* at a time.
    The fused order depends only on query order, not completion order.
    """
    limited = normalize_queries(queries, max_queries)
    if not limited or not corpus:
        return []

    top_k = max(1, options.top_k)
    per_query_k = max(top_k, min(top_k * 2, _PER_QUERY_CAP))
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _one(query: str, min_score: float) -> list[NoteHit]:
        async with semaphore:
            return await search(
                query,
                corpus,
                replace(options, top_k=per_query_k, min_score=min_score),
                store,
            )

    async def _run(min_score: float) -> list[NoteHit]:
        tasks = [asyncio.ensure_future(_one(q, min_score)) for q in limited]
        try:
            lists = await asyncio.gather(*tasks)
        except BaseException:
            # one failed search fails the fusion; stop its siblings too
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return merge_ranked(lists, top_k)

    base = options.min_score
    min_hits = min(top_k, 3)

    hits = await _run(base)
    if len(hits) < min_hits and base > 0:
        relaxed = relaxed_min_score(base)
        logger.debug("Only %d hits at min_score=%.3f; relaxing to %.3f", len(hits), base, relaxed)
        hits = await _run(relaxed)
    if len(hits) < min_hits and base > _UNFILTERED:
        logger.debug("Only %d hits after relaxation; running unfiltered", len(hits))
        hits = await _run(_UNFILTERED)
    return hits
