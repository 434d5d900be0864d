"""noteseek ingest — directory walking and chunking."""

from noteseek.ingest.chunker import NoteChunker
from noteseek.ingest.corpus import CorpusBuilder, summarize

__all__ = [
    "CorpusBuilder",
    "NoteChunker",
    "summarize",
]
