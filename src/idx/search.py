"""Semantic search over indexed dependency chunks (exact cosine, sqlite-vec).

Results are fully deterministic for a given index and query vector:
ordered by distance, then package name, file path and byte offset.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from idx.db.models import PackageCoordinate
from idx.db.repository import Repository
from idx.db.vectors import model_to_slug, vec_table_exists, vec_table_name
from idx.embedding.client import EmbeddingClient
from idx.errors import ModelMismatchError, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchFilters:
    """Restrict the candidate set; None means any."""

    registry: str | None = None
    name: str | None = None
    version: str | None = None


@dataclass
class SearchResult:
    """One matching chunk.

    Attributes:
        coordinate: Package the chunk belongs to.
        path: File path inside the package.
        symbol: Declaration name (None for whole-file and preamble chunks).
        kind: Chunk kind (function, class, doc, file, ...).
        start_line / end_line: 1-based inclusive line range.
        start_byte / end_byte: Byte range within the file.
        score: ``1 - cosine distance``; higher is closer.
        text: Chunk source, read from the blob store.
    """

    coordinate: PackageCoordinate
    path: str
    symbol: str | None
    kind: str
    start_line: int
    end_line: int
    start_byte: int
    end_byte: int
    score: float
    text: str


def check_model(repo: Repository, model: str) -> None:
    """Raise ModelMismatchError if the index cannot be searched with *model*.

    An index with no active model yet (nothing embedded) accepts any model.
    """
    active = repo.active_model()
    if active is not None and active != model:
        raise ModelMismatchError(active, model)
    table = vec_table_name(model_to_slug(model))
    if repo.count_embeddings(model) and not vec_table_exists(repo.conn, table):
        raise ModelMismatchError(active or "<none>", model)


def search(
    repo: Repository,
    client: EmbeddingClient,
    query: str,
    filters: SearchFilters | None = None,
    top_k: int = 10,
) -> list[SearchResult]:
    """Embed *query* and return the *top_k* closest chunks.

    Raises:
        ModelMismatchError: If the client's model is not the index's model.
        EmbeddingError: If the query cannot be embedded.
        ValueError: For an empty query or a non-positive *top_k*.
    """
    if not query.strip():
        raise ValueError("Search query must not be empty.")
    if top_k < 1:
        raise ValueError("top_k must be >= 1.")
    filters = filters or SearchFilters()
    model = client.model
    check_model(repo, model)

    table = vec_table_name(model_to_slug(model))
    if not vec_table_exists(repo.conn, table):
        return []

    [vector] = client.embed([query])
    rows = repo.search_vectors(
        model,
        vector,
        registry=filters.registry,
        name=filters.name,
        version=filters.version,
        limit=top_k,
    )
    return [_to_result(repo, row) for row in rows]


def _to_result(repo: Repository, row: sqlite3.Row) -> SearchResult:
    return SearchResult(
        coordinate=PackageCoordinate(row["registry"], row["name"], row["version"]),
        path=row["path"],
        symbol=row["symbol"],
        kind=row["kind"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        start_byte=row["start_byte"],
        end_byte=row["end_byte"],
        score=1.0 - float(row["distance"]),
        text=_chunk_text(repo, row),
    )


def _chunk_text(repo: Repository, row: sqlite3.Row) -> str:
    try:
        data = repo.blobs.get(row["file_hash"])
    except StoreError as exc:
        logger.warning("%s; using the stored chunk text", exc)
        return row["text"]
    return data[row["start_byte"] : row["end_byte"]].decode("utf-8", errors="replace")
