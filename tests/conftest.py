"""Shared pytest fixtures."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from noteseek.config import VectorCfg
from noteseek.store import RetrievalStore


class FakeEmbedder:
    """Deterministic stand-in for the embedding provider.

    Each text maps to a 32-dim bag-of-characters vector unless an explicit
    vector is registered in ``overrides``. Texts listed in ``drop`` come back
    as ``None`` (provider left them out). Every call is recorded.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.overrides: dict[str, list[float]] = {}
        self.drop: set[str] = set()
        self.fail_with: Exception | None = None

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.calls for t in call]

    async def embed(self, texts: Sequence[str]) -> list[list[float] | None]:
        self.calls.append(list(texts))
        if self.fail_with is not None:
            raise self.fail_with
        out: list[list[float] | None] = []
        for text in texts:
            if text in self.drop:
                out.append(None)
            elif text in self.overrides:
                out.append(list(self.overrides[text]))
            else:
                vec = [0.0] * 32
                for ch in text.lower():
                    if not ch.isspace():
                        vec[ord(ch) % 32] += 1.0
                out.append(vec)
        return out


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vector_cfg() -> VectorCfg:
    """A complete vector config; no request ever leaves the process in tests."""
    return VectorCfg(
        provider="openai_compatible",
        base_url="https://embeddings.test/v1",
        model="test-embedding",
        api_key="sk-test",
        batch_size=2,
    )


@pytest.fixture
def store(tmp_path, fake_embedder):
    """RetrievalStore with an on-disk cache in tmp_path and the fake embedder."""
    s = RetrievalStore(
        cache_dir=tmp_path / "cache",
        embedder_factory=lambda cfg: fake_embedder,
    )
    yield s
    s.close()
