"""Embedding pipeline: a package's un-embedded chunks → persisted vectors.

Batches are persisted one transaction at a time, so an interrupted or
partially failing run keeps everything that succeeded; the next run only
embeds what is still missing.

Failure handling per batch:
  rate_limited   back off exponentially, halve the working batch size, retry
  transient      back off and retry up to max_retries, then split the batch
  invalid_input  split immediately
  auth           propagate (aborts the run)
A single chunk that still fails is recorded in ``chunks.embed_error``.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

from idx.config import EmbeddingCfg
from idx.db.repository import Repository
from idx.embedding.client import EmbeddingClient
from idx.errors import EmbeddingError

logger = logging.getLogger(__name__)

_RETRYABLE = frozenset({"rate_limited", "transient"})
_BACKOFF_BASE = 1.0
_BACKOFF_MAX = 60.0

# (content_hash, input text)
_Item = tuple[str, str]


@dataclass
class EmbedReport:
    """Outcome of embedding one package.

    Attributes:
        embedded: Distinct contents newly embedded by this call.
        reused: Chunks whose content already had a vector for the model.
        failed: Distinct contents that could not be embedded.
        errors: One message per failed content.
    """

    embedded: int = 0
    reused: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


def make_batches(items: list[_Item], batch_size: int, max_chars: int) -> Iterator[list[_Item]]:
    """Group *items* so no batch exceeds *batch_size* inputs or *max_chars* characters.

    An input longer than *max_chars* on its own still forms a one-item batch.
    """
    batch: list[_Item] = []
    chars = 0
    for item in items:
        size = len(item[1])
        if batch and (len(batch) >= batch_size or chars + size > max_chars):
            yield batch
            batch, chars = [], 0
        batch.append(item)
        chars += size
    if batch:
        yield batch


class EmbeddingPipeline:
    """Embeds the chunks of one package at a time.

    Args:
        client: Embedding client (already wired to the run's rate limiter).
        cfg: Embedding config (batch limits, truncation, retries).
        sleep: Injected for tests.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        cfg: EmbeddingCfg,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.cfg = cfg
        self._sleep = sleep

    @property
    def model(self) -> str:
        return self.client.model

    def embed_package(self, repo: Repository, package_id: int) -> EmbedReport:
        """Embed every chunk of *package_id* lacking a vector for the active model.

        Raises:
            EmbeddingError: Only for kind ``auth``.
            StoreError: If persisting a batch fails.
        """
        report = EmbedReport()
        missing = repo.missing_embeddings(package_id, self.model)
        report.reused = repo.count_chunks(package_id) - len(missing)

        unique: dict[str, str] = {}
        for chunk in missing:
            unique.setdefault(chunk.content_hash, chunk.text[: self.cfg.max_input_chars])
        if not unique:
            return report
        logger.debug(
            "package %d: embedding %d distinct chunks (%d chunks missing)",
            package_id,
            len(unique),
            len(missing),
        )

        batch_size = max(1, self.cfg.batch_size)
        pending: deque[tuple[list[_Item], int]] = deque(
            (batch, 0)
            for batch in make_batches(list(unique.items()), batch_size, self.cfg.max_batch_chars)
        )
        while pending:
            batch, attempts = pending.popleft()
            try:
                vectors = self.client.embed([text for _, text in batch])
            except EmbeddingError as exc:
                if exc.fatal:
                    raise
                if exc.kind in _RETRYABLE and attempts < self.cfg.max_retries:
                    delay = min(_BACKOFF_MAX, _BACKOFF_BASE * (2**attempts))
                    logger.info(
                        "embedding batch of %d failed (%s); retry %d/%d in %.1fs",
                        len(batch),
                        exc.kind,
                        attempts + 1,
                        self.cfg.max_retries,
                        delay,
                    )
                    self._sleep(delay)
                    if exc.kind == "rate_limited" and len(batch) > 1:
                        batch_size = max(1, min(batch_size, len(batch)) // 2)
                        pieces = [
                            batch[i : i + batch_size] for i in range(0, len(batch), batch_size)
                        ]
                        pending.extendleft((piece, attempts + 1) for piece in reversed(pieces))
                    else:
                        pending.appendleft((batch, attempts + 1))
                    continue
                if len(batch) > 1:
                    mid = len(batch) // 2
                    pending.appendleft((batch[mid:], 0))
                    pending.appendleft((batch[:mid], 0))
                    continue
                content_hash = batch[0][0]
                reason = f"{exc.kind}: {exc}"
                logger.warning("chunk %s could not be embedded: %s", content_hash[:12], reason)
                repo.mark_chunk_failures([content_hash], reason)
                report.failed += 1
                report.errors.append(reason)
                continue

            report.embedded += repo.add_embeddings(
                self.model, [(h, v) for (h, _), v in zip(batch, vectors)]
            )
        return report
