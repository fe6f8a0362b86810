"""idx chunking: grammar-aware decomposition of source files into chunks."""

from __future__ import annotations

import logging

from idx.chunking.base import BaseChunker, text_hash
from idx.chunking.languages import MARKDOWN, SPECS, language_for
from idx.chunking.markdown import MarkdownChunker
from idx.chunking.treesitter import TreeSitterChunker
from idx.db.models import Chunk
from idx.errors import ChunkError

logger = logging.getLogger(__name__)

_CHUNKERS: dict[str, BaseChunker] = {name: TreeSitterChunker(spec) for name, spec in SPECS.items()}
_CHUNKERS[MARKDOWN] = MarkdownChunker()


def chunker_for(path: str) -> BaseChunker:
    """Return the chunker for *path*.

    Raises:
        ChunkError: kind ``unsupported`` if no grammar handles the extension.
    """
    language = language_for(path)
    if language is None:
        raise ChunkError(f"No grammar for '{path}'", "unsupported")
    return _CHUNKERS[language]


def chunk_file(path: str, data: bytes) -> tuple[str | None, list[Chunk]]:
    """Chunk one file.

    Returns:
        ``(language, chunks)``; language is None for unsupported files,
        which yield no chunks and are recorded as such by the caller.
    """
    try:
        chunker = chunker_for(path)
    except ChunkError:
        return None, []
    try:
        return chunker.language, chunker.chunk(data, path)
    except ChunkError as exc:
        logger.debug("%s: %s; recorded as unsupported", path, exc)
        return None, []


__all__ = [
    "BaseChunker",
    "MarkdownChunker",
    "TreeSitterChunker",
    "chunk_file",
    "chunker_for",
    "language_for",
    "text_hash",
]
