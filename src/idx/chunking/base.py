"""Base chunker interface for all source languages."""

from __future__ import annotations

import hashlib
import posixpath
from abc import ABC, abstractmethod

from idx.db.models import Chunk

# Chunk kinds produced by the chunkers.
FUNCTION = "function"
METHOD = "method"
CLASS = "class"
TYPE = "type"
INTERFACE = "interface"
IMPL = "impl"
MODULE = "module"
DOC = "doc"
FILE = "file"


def text_hash(text: str) -> str:
    """SHA-256 of a chunk's extracted text; the embedding cache key."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Chunkers are pure: the same bytes always produce the same chunks, byte
    ranges and content hashes, so re-chunking an unchanged file never
    invalidates its embeddings. Subclasses implement ``chunk()`` and build
    chunks with ``_make_chunk()``; ``_whole_file()`` is the fallback path.
    """

    language: str = ""

    @abstractmethod
    def chunk(self, data: bytes, path: str) -> list[Chunk]:
        """Split the raw bytes of one source file into Chunks.

        Args:
            data: Raw file contents.
            path: Path of the file inside its package (used for symbols).

        Returns:
            Chunks ordered by start byte. Empty for blank files.
        """

    @staticmethod
    def _make_chunk(data: bytes, start: int, end: int, kind: str, symbol: str) -> Chunk:
        """Build a Chunk for ``data[start:end]`` with 1-indexed inclusive lines."""
        text = data[start:end].decode("utf-8", errors="replace")
        last = max(start, end - 1)
        return Chunk(
            kind=kind,
            symbol=symbol,
            start_byte=start,
            end_byte=end,
            start_line=data.count(b"\n", 0, start) + 1,
            end_line=data.count(b"\n", 0, last) + 1,
            text=text,
            content_hash=text_hash(text),
        )

    def _whole_file(self, data: bytes, path: str) -> list[Chunk]:
        """Single chunk spanning the whole file, or nothing for blank files."""
        if not data.strip():
            return []
        return [self._make_chunk(data, 0, len(data), FILE, posixpath.basename(path))]
