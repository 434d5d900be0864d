"""Async LiteLLM embedding client.

All embedding calls route through this module. LiteLLM's built-in retry is used
(``num_retries`` from ``embedding.max_retries``); the retrieval core issues no
retries of its own. Timeout policy comes from ``embedding.timeout_sec``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

import litellm

from noteseek.config import VectorCfg

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider routing
# ------------------------------------------------------------------

# Providers that expose an OpenAI-compatible /embeddings endpoint at base_url.
_OPENAI_COMPATIBLE: frozenset[str] = frozenset(
    ["openai", "openai_compatible", "baidu_qianfan"]
)


class Embedder(Protocol):
    """The embedding collaborator used by the cache, search and warmup."""

    async def embed(self, texts: Sequence[str]) -> list[list[float] | None]:
        """Return one vector per input text, ``None`` where the provider gave none."""
        ...


def litellm_route(cfg: VectorCfg) -> tuple[str, str]:
    """Return the ``(model, api_base)`` pair LiteLLM should be called with.

    Examples:
        openai_compatible + https://api.x.com/v1 -> ("openai/m", "https://api.x.com/v1")
        volc_doubao + https://ark.example.com    -> ("openai/m", "https://ark.example.com/api/v3")
    """
    base = cfg.base_url.rstrip("/")
    if cfg.provider == "volc_doubao":
        return f"openai/{cfg.model}", f"{base}/api/v3"
    if cfg.provider in _OPENAI_COMPATIBLE:
        return f"openai/{cfg.model}", base
    return f"{cfg.provider}/{cfg.model}", base


class EmbeddingClient:
    """Batch embedding via ``litellm.aembedding()``.

    Args:
        cfg: Fully populated vector config. Incomplete configs are rejected
            here so that no request is ever made with missing credentials.
    """

    def __init__(self, cfg: VectorCfg) -> None:
        cfg.require_complete()
        self._cfg = cfg
        self._model, self._api_base = litellm_route(cfg)

    async def embed(self, texts: Sequence[str]) -> list[list[float] | None]:
        """Embed *texts* in one request.

        Returns:
            A list aligned with *texts*. Entries the provider left out or
            returned empty are ``None``.

        Raises:
            litellm.exceptions.APIError: On persistent API failure after retries.
        """
        if not texts:
            return []
        response = await litellm.aembedding(
            model=self._model,
            input=list(texts),
            api_base=self._api_base,
            api_key=self._cfg.api_key,
            timeout=self._cfg.timeout_sec,
            num_retries=self._cfg.max_retries,
        )
        return _align_vectors(response.data, len(texts))


def _align_vectors(data: Sequence[Any], count: int) -> list[list[float] | None]:
    """Place each returned embedding at its ``index`` (or list position)."""
    vectors: list[list[float] | None] = [None] * count
    for pos, item in enumerate(data or []):
        embedding = _field(item, "embedding")
        index = _field(item, "index")
        slot = index if isinstance(index, int) else pos
        if 0 <= slot < count and isinstance(embedding, list) and embedding:
            vectors[slot] = [float(v) for v in embedding]
    return vectors


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
