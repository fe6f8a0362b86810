"""Typed error taxonomy for the indexing and retrieval pipeline.

Every error carries a ``kind`` string so callers can branch on the failure
mode without string-matching messages. Scoping rules:

  ManifestError       one manifest / dependency; other ecosystems continue
  FetchError          one package; only ``network`` is retried
  ChunkError          one file; never escapes the chunker
  EmbeddingError      ``auth`` aborts the run, everything else is per chunk
  StoreError          one package; reported, the run continues
  ModelMismatchError  one search call
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from idx.db.models import PackageCoordinate


class IdxError(Exception):
    """Base class for all idx errors."""

    kind: str = "error"

    def __init__(self, message: str, kind: str | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ManifestError(IdxError):
    """A manifest or lockfile is missing, malformed, or unresolvable.

    Kinds: ``missing_file``, ``unparseable``, ``unresolved_placeholder``,
    ``unresolved_range``.
    """

    def __init__(self, message: str, kind: str, path: str | None = None) -> None:
        super().__init__(message, kind)
        self.path = path

    def __str__(self) -> str:
        base = super().__str__()
        return f"{self.path}: {base}" if self.path else base


class FetchError(IdxError):
    """Downloading or unpacking a package archive failed.

    Kinds: ``not_found`` (never retried), ``network`` (retried with backoff),
    ``invalid`` (bad registry metadata or corrupt archive).
    """

    def __init__(
        self,
        message: str,
        kind: str,
        coordinate: PackageCoordinate | None = None,
    ) -> None:
        super().__init__(message, kind)
        self.coordinate = coordinate


class ChunkError(IdxError):
    """A file could not be chunked. Kinds: ``unsupported``, ``syntax``."""


class EmbeddingError(IdxError):
    """The embedding provider rejected or failed a request.

    Kinds: ``auth`` (fatal for the run), ``rate_limited``, ``transient``,
    ``invalid_input``.
    """

    @property
    def fatal(self) -> bool:
        return self.kind == "auth"


class StoreError(IdxError):
    """Metadata, vector, or blob storage failed.

    Kinds: ``io``, ``corrupt``, ``missing_blob``, ``not_found``.
    """


class ModelMismatchError(IdxError):
    """The query model differs from the model the index was built with."""

    kind = "model_mismatch"

    def __init__(self, index_model: str, query_model: str) -> None:
        super().__init__(
            f"Index was built with '{index_model}' but search uses '{query_model}'."
        )
        self.index_model = index_model
        self.query_model = query_model
