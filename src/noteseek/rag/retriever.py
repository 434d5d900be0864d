"""Single-query similarity search over a chunk list.

Two modes:
  keyword — token overlap. CJK text is tokenized as overlapping character
            bigrams (whitespace removed); anything else as lowercase
            alphanumeric words. score = |hits| / max(1, |query tokens|)
  vector  — cosine similarity between the query embedding and each chunk's
            cached embedding. Chunks without a cached vector are skipped.

Results are filtered to ``score >= min_score``, sorted best-first (ties keep
corpus order) and cut to ``top_k``.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from noteseek.config import ConfigError, NoteseekConfig, VectorCfg
from noteseek.models import Chunk, NoteHit, make_snippet, round_score
from noteseek.rag.embedding_cache import ensure_embeddings

if TYPE_CHECKING:
    from noteseek.store import RetrievalStore

logger = logging.getLogger(__name__)

_CJK_RE = re.compile(r"[\u4e00-\u9fff]")
_WS_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class SearchOptions:
    """Per-call retrieval options.

    Attributes:
        mode: 'vector' or 'keyword'.
        top_k: Maximum number of hits (clamped to >= 1).
        min_score: Hits scoring below this are dropped.
        vector: Embedding provider config; required for vector mode.
    """

    mode: str = "vector"
    top_k: int = 5
    min_score: float = 0.0
    vector: VectorCfg | None = None

    @classmethod
    def from_config(cls, cfg: NoteseekConfig) -> SearchOptions:
        return cls(
            mode=cfg.retrieval.mode,
            top_k=cfg.retrieval.top_k,
            min_score=cfg.retrieval.min_score,
            vector=cfg.embedding,
        )


async def search(
    query: str,
    corpus: Sequence[Chunk],
    options: SearchOptions,
    store: RetrievalStore,
) -> list[NoteHit]:
    """Return the best-matching chunks for *query*, best-first.

    Raises:
        ConfigError: Vector mode without a complete provider/base_url/api_key/model,
            or an unknown mode. Raised before any network call.
    """
    if not query or not corpus:
        return []
    top_k = max(1, options.top_k)

    if options.mode == "keyword":
        return _keyword_search(query, corpus, top_k, options.min_score)
    if options.mode != "vector":
        raise ConfigError(f"Unknown retrieval mode '{options.mode}'")

    vector = options.vector
    if vector is None:
        raise ConfigError("Vector retrieval requires an embedding config")
    vector.require_complete()
    return await _vector_search(query, corpus, top_k, options.min_score, vector, store)


# ------------------------------------------------------------------
# Keyword mode
# ------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Character bigrams for CJK text, lowercase alphanumeric words otherwise."""
    if _CJK_RE.search(text):
        compact = _WS_RE.sub("", text)
        return [compact[i : i + 2] for i in range(len(compact) - 1)]
    return [t for t in _NON_ALNUM_RE.split(text.lower()) if t]


def score_tokens(query_tokens: Sequence[str], text_tokens: Sequence[str]) -> float:
    if not query_tokens or not text_tokens:
        return 0.0
    text_set = set(text_tokens)
    hits = sum(1 for token in query_tokens if token in text_set)
    return hits / max(1, len(query_tokens))


def _keyword_search(
    query: str, corpus: Sequence[Chunk], top_k: int, min_score: float
) -> list[NoteHit]:
    query_tokens = tokenize(query)
    scored = [(score_tokens(query_tokens, tokenize(c.text)), c) for c in corpus]
    return _rank(scored, top_k, min_score)


# ------------------------------------------------------------------
# Vector mode
# ------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine over the overlapping prefix of *a* and *b*; 0.0 if either norm is zero.

    Non-finite components are ignored.
    """
    dot = norm_a = norm_b = 0.0
    for av, bv in zip(a, b):
        if not (math.isfinite(av) and math.isfinite(bv)):
            continue
        dot += av * bv
        norm_a += av * av
        norm_b += bv * bv
    if not norm_a or not norm_b:
        return 0.0
    sim = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, sim))


async def _vector_search(
    query: str,
    corpus: Sequence[Chunk],
    top_k: int,
    min_score: float,
    vector: VectorCfg,
    store: RetrievalStore,
) -> list[NoteHit]:
    trimmed = query.strip()
    if vector.query_max_chars > 0:
        trimmed = trimmed[: vector.query_max_chars]
    if not trimmed:
        return []

    embedder = store.embedder(vector)
    query_vectors = await embedder.embed([trimmed])
    query_vector = query_vectors[0] if query_vectors else None
    if not query_vector:
        logger.warning("Embedding provider returned no vector for the query")
        return []

    cache = store.embedding_cache(vector)
    # vectors are read under the lock; another corpus on this store may prune them
    async with store.lock_for(vector):
        await ensure_embeddings(corpus, cache, embedder, batch_size=vector.batch_size)
        embedded = [(chunk, cache.get(chunk)) for chunk in corpus]

    scored: list[tuple[float, Chunk]] = []
    for chunk, embedding in embedded:
        if embedding is None:
            continue
        score = cosine_similarity(query_vector, embedding)
        if math.isfinite(score):
            scored.append((score, chunk))
    return _rank(scored, top_k, min_score)


# ------------------------------------------------------------------
# Ranking
# ------------------------------------------------------------------


def _rank(
    scored: list[tuple[float, Chunk]], top_k: int, min_score: float
) -> list[NoteHit]:
    kept = [(s, c) for s, c in scored if s >= min_score]
    # sort is stable: equal scores keep corpus order
    kept.sort(key=lambda pair: pair[0], reverse=True)
    return [
        NoteHit(score=round_score(s), source=c.source, snippet=make_snippet(c.text))
        for s, c in kept[:top_k]
    ]
