"""Markdown chunker: heading-aware splits over raw bytes."""

from __future__ import annotations

import posixpath
import re

from idx.chunking.base import DOC, BaseChunker
from idx.db.models import Chunk

# Matches H1, H2, H3 headings at the start of a line.
_HEADING_RE = re.compile(rb"^(#{1,3}) +(.+?) *#* *\r?$", re.MULTILINE)
_FENCE_RE = re.compile(rb"^(```|~~~)", re.MULTILINE)


class MarkdownChunker(BaseChunker):
    """Split Markdown (READMEs, docs) on H1/H2/H3 heading boundaries.

    Strategy:
    - Each heading + its following content is a *section*, symbol = heading text.
    - Content before the first heading (preamble) is its own section, symbol =
      file name.
    - Headings inside fenced code blocks are ignored.
    - A document without headings becomes one whole-file chunk.
    """

    language = "markdown"

    def chunk(self, data: bytes, path: str) -> list[Chunk]:
        if not data.strip():
            return []

        headings = self._headings(data)
        if not headings:
            return self._whole_file(data, path)

        chunks: list[Chunk] = []
        first = headings[0][0]
        if data[:first].strip():
            chunks.append(self._section(data, 0, first, posixpath.basename(path)))
        for i, (start, title) in enumerate(headings):
            end = headings[i + 1][0] if i + 1 < len(headings) else len(data)
            if data[start:end].strip():
                chunks.append(self._section(data, start, end, title))
        return chunks

    def _section(self, data: bytes, start: int, end: int, symbol: str) -> Chunk:
        # Trailing blank lines are not part of the section.
        while end > start and data[end - 1 : end] in (b"\n", b"\r", b" ", b"\t"):
            end -= 1
        return self._make_chunk(data, start, end, DOC, symbol)

    @staticmethod
    def _headings(data: bytes) -> list[tuple[int, str]]:
        """Return ``(byte offset, title)`` of each heading outside code fences."""
        fences = [m.start() for m in _FENCE_RE.finditer(data)]
        headings: list[tuple[int, str]] = []
        for match in _HEADING_RE.finditer(data):
            inside_fence = sum(1 for f in fences if f < match.start()) % 2 == 1
            if not inside_fence:
                title = match.group(2).decode("utf-8", errors="replace").strip()
                headings.append((match.start(), title))
        return headings
