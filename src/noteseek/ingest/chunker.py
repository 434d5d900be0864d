"""Heading-aware paragraph packer for notes, rubrics and reference material."""

from __future__ import annotations

import re

# Matches H2 and H3 headings only; H1 is usually the document title.
_HEADING_RE = re.compile(r"^#{2,3}\s+")

# Blank-line paragraph separator (lines holding only whitespace count as blank).
_PARAGRAPH_RE = re.compile(r"\n\s*\n")

_JOINER = "\n\n"


class NoteChunker:
    """Split a text document into chunks of at most ``max_chunk_len`` characters.

    Strategy:
    - If the document has H2/H3 headings, split into sections at each heading.
      Content before the first heading (preamble) is carried into the first
      section rather than emitted on its own.
    - Otherwise the whole document is one block.
    - Each block is split on blank lines and consecutive paragraphs are packed
      greedily until the next one would push the chunk past the limit.
    - A paragraph that alone exceeds the limit becomes its own oversized chunk;
      paragraphs are never cut mid-sentence.
    """

    def __init__(self, max_chunk_len: int = 1200) -> None:
        if max_chunk_len < 1:
            raise ValueError("max_chunk_len must be >= 1")
        self.max_chunk_len = max_chunk_len

    def chunk(self, content: str) -> list[str]:
        """Return the ordered chunk texts for *content*."""
        normalized = (content or "").replace("\r\n", "\n")
        if not normalized.strip():
            return []

        sections = self._split_on_headings(normalized)
        blocks = sections if sections else [normalized.strip()]

        chunks: list[str] = []
        for block in blocks:
            block = block.strip()
            if block:
                chunks.extend(self._pack_paragraphs(block))
        return chunks

    def _split_on_headings(self, content: str) -> list[str]:
        """Split *content* on H2/H3 boundaries.

        Returns an empty list if no headings are found (signals single block).
        """
        has_heading = False
        sections: list[str] = []
        current: list[str] = []
        preamble: list[str] = []

        for raw_line in content.split("\n"):
            line = raw_line.rstrip()
            stripped = line.strip()
            if _HEADING_RE.match(stripped):
                has_heading = True
                if current:
                    sections.append("\n".join(current).strip())
                    current = []
                if preamble:
                    current.extend(preamble)
                    preamble = []
                current.append(stripped)
                continue
            if not has_heading and not current:
                if stripped:
                    preamble.append(stripped)
                elif preamble:
                    # keep paragraph breaks inside the preamble
                    preamble.append("")
                continue
            current.append(line)

        if not has_heading:
            return []
        if current:
            sections.append("\n".join(current).strip())
        return sections

    def _pack_paragraphs(self, block: str) -> list[str]:
        """Greedily pack blank-line-separated paragraphs of *block*."""
        parts = [p.strip() for p in _PARAGRAPH_RE.split(block)]
        parts = [p for p in parts if p]

        chunks: list[str] = []
        current: list[str] = []
        length = 0
        for part in parts:
            added = len(part) + (len(_JOINER) if current else 0)
            if current and length + added > self.max_chunk_len:
                chunks.append(_JOINER.join(current))
                current = [part]
                length = len(part)
            else:
                current.append(part)
                length += added
        if current:
            chunks.append(_JOINER.join(current))
        return chunks
