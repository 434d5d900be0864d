"""Value types shared by the corpus builder and the retrieval pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass

_WS_RE = re.compile(r"\s+")

SNIPPET_MAX_CHARS = 160


@dataclass(frozen=True)
class Chunk:
    """One bounded-length excerpt of a source file.

    Attributes:
        kind: Caller-supplied category (notes, prompts, rubrics, knowledge, examples).
        source: Absolute path of the file the excerpt was taken from.
        text: The excerpt itself.
    """

    kind: str
    source: str
    text: str


@dataclass(frozen=True)
class NoteHit:
    """A ranked retrieval result handed to the evaluator."""

    score: float
    source: str
    snippet: str


def make_snippet(text: str) -> str:
    """Collapse whitespace runs and cap at ``SNIPPET_MAX_CHARS`` characters."""
    return _WS_RE.sub(" ", text)[:SNIPPET_MAX_CHARS]


def round_score(score: float) -> float:
    """Round *score* to 3 decimals for presentation in a NoteHit."""
    return round(score, 3)
