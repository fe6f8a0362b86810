"""Indexing run: coordinates → fetched, chunked, embedded packages.

Each package moves through fetch → chunk+store → embed → finalize on a
worker thread with its own SQLite connection. Packages fail independently;
only an ``auth`` embedding error aborts the run, and every package it stops
is recorded ``failed`` with a ``run aborted`` reason. ``indexed`` is written
exclusively by Repository.finalize_package(), so an interrupted run never
leaves a package claiming vectors it does not have.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from idx.chunking import chunk_file
from idx.config import IdxConfig, embedding_api_key
from idx.db.blobs import BlobStore
from idx.db.connection import Database
from idx.db.models import (
    FAILED,
    FETCHED,
    INDEXED,
    PENDING,
    SKIPPED,
    Package,
    PackageCoordinate,
    PreparedFile,
)
from idx.db.repository import Repository
from idx.embedding import EmbeddingClient, EmbeddingPipeline, RateLimiter
from idx.errors import EmbeddingError, FetchError, IdxError
from idx.registry import RegistryClient, client_for

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[["PackageOutcome"], None]


@dataclass
class PackageOutcome:
    """What happened to one package during a run.

    Attributes:
        coordinate: The package.
        status: ``indexed``, ``skipped`` or ``failed``.
        reason: Why it was skipped or failed.
        fetched: True if the archive was downloaded in this run.
        files: Files stored (only when fetched).
        chunks: Chunks stored (only when fetched).
        embedded: Contents newly embedded.
        reused: Chunks whose vectors already existed.
        failed_chunks: Contents that could not be embedded.
    """

    coordinate: PackageCoordinate
    status: str
    reason: str | None = None
    fetched: bool = False
    files: int = 0
    chunks: int = 0
    embedded: int = 0
    reused: int = 0
    failed_chunks: int = 0


@dataclass
class IndexRunReport:
    """Per-package outcomes of one run, plus the abort reason if it stopped early."""

    outcomes: list[PackageOutcome] = field(default_factory=list)
    aborted: str | None = None

    def _with(self, status: str) -> list[PackageOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def indexed(self) -> list[PackageOutcome]:
        return self._with(INDEXED)

    @property
    def skipped(self) -> list[PackageOutcome]:
        return self._with(SKIPPED)

    @property
    def failed(self) -> list[PackageOutcome]:
        return self._with(FAILED)

    @property
    def ok(self) -> bool:
        return self.aborted is None and not self.failed


class _AbortSignal:
    """Shared by the workers of one run; set once, by the first fatal error."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reason: str | None = None

    def trip(self, reason: str) -> None:
        with self._lock:
            if self.reason is None:
                self.reason = reason


class Indexer:
    """Runs coordinates through the indexing stages on a worker pool.

    Args:
        db_path: The index database; every worker opens its own connection.
        blobs: Shared blob store (thread-safe).
        config: Full configuration.
        embedding_client: Injected for tests; by default one client wired to
            a fresh run-wide RateLimiter is built per run.
        registry_client: Injected for tests; maps a registry name to its client.
        on_outcome: Called (from the coordinating thread) as each package finishes.
    """

    def __init__(
        self,
        db_path: Path,
        blobs: BlobStore,
        config: IdxConfig,
        *,
        embedding_client: EmbeddingClient | None = None,
        registry_client: Callable[[str], RegistryClient] | None = None,
        on_outcome: OutcomeCallback | None = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.blobs = blobs
        self.config = config
        self._embedding_client = embedding_client
        self._registry_client = registry_client or (lambda r: client_for(r, self.config))
        self._on_outcome = on_outcome
        self._clients: dict[str, RegistryClient] = {}
        self._clients_lock = threading.Lock()

    @property
    def model(self) -> str:
        if self._embedding_client is not None:
            return self._embedding_client.model
        return self.config.embedding.model

    def run(
        self,
        coordinates: Iterable[PackageCoordinate],
        *,
        unpinned: set[PackageCoordinate] | None = None,
        force: bool = False,
        jobs: int | None = None,
    ) -> IndexRunReport:
        """Index *coordinates*; already-indexed and skipped packages are left alone.

        Args:
            coordinates: Packages to index (duplicates are ignored).
            unpinned: Coordinates whose version was picked from a range.
            force: Re-fetch and re-embed even ``indexed`` / ``skipped`` packages.
            jobs: Worker count; defaults to ``indexing.concurrency``.
        """
        unpinned = unpinned or set()
        report = IndexRunReport()
        queue: list[Package] = []

        with Database(self.db_path) as conn:
            repo = Repository(conn, self.blobs)
            repo.set_active_model(self.model)
            for coordinate in sorted(set(coordinates)):
                package = repo.upsert_package(coordinate, unpinned=coordinate in unpinned)
                if force:
                    repo.set_status(package.id, PENDING)
                elif package.status in (INDEXED, SKIPPED):
                    reason = "already indexed" if package.status == INDEXED else "marked skipped"
                    self._record(report, PackageOutcome(coordinate, SKIPPED, reason))
                    continue
                queue.append(package)

        if not queue:
            return report

        client = self._embedding_client or EmbeddingClient(
            self.config.embedding,
            api_key=embedding_api_key(),
            limiter=RateLimiter(
                self.config.embedding.max_concurrent,
                self.config.embedding.requests_per_minute,
            ),
        )
        pipeline = EmbeddingPipeline(client, self.config.embedding)
        workers = max(1, jobs or self.config.indexing.concurrency)
        logger.info("indexing %d package(s) with %d worker(s)", len(queue), workers)

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="idx-worker")
        abort = _AbortSignal()
        try:
            futures = [
                executor.submit(self._index_one, package, pipeline, abort) for package in queue
            ]
            for future in as_completed(futures):
                outcome = future.result()
                if abort.reason is not None and report.aborted is None:
                    report.aborted = abort.reason
                    logger.error("run aborted: %s", abort.reason)
                self._record(report, outcome)
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return report

    def _record(self, report: IndexRunReport, outcome: PackageOutcome) -> None:
        report.outcomes.append(outcome)
        if self._on_outcome is not None:
            self._on_outcome(outcome)

    def _client(self, registry: str) -> RegistryClient:
        with self._clients_lock:
            if registry not in self._clients:
                self._clients[registry] = self._registry_client(registry)
            return self._clients[registry]

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _index_one(
        self, queued: Package, pipeline: EmbeddingPipeline, abort: _AbortSignal
    ) -> PackageOutcome:
        with Database(self.db_path) as conn:
            repo = Repository(conn, self.blobs)
            package = repo.get_package_by_id(queued.id)
            if package is None:
                return PackageOutcome(queued.coordinate, FAILED, "removed during the run")
            outcome = PackageOutcome(package.coordinate, FAILED)
            if abort.reason is not None:
                self._fail(repo, package, outcome, f"run aborted: {abort.reason}")
                return outcome
            try:
                if self._needs_fetch(repo, package):
                    self._fetch_and_store(repo, package, outcome)
                if abort.reason is not None:
                    self._fail(repo, package, outcome, f"run aborted: {abort.reason}")
                    return outcome
                embedded = pipeline.embed_package(repo, package.id)
                outcome.embedded = embedded.embedded
                outcome.reused = embedded.reused
                outcome.failed_chunks = embedded.failed
                outcome.status = repo.finalize_package(package.id, pipeline.model)
                if outcome.status == FAILED:
                    outcome.reason = f"{embedded.failed} chunk(s) failed to embed"
                    if embedded.errors:
                        outcome.reason += f" ({embedded.errors[0]})"
            except EmbeddingError as exc:
                if exc.fatal:
                    abort.trip(str(exc))
                    self._fail(repo, package, outcome, f"run aborted: {exc}")
                else:
                    self._fail(repo, package, outcome, f"embedding: {exc}")
            except FetchError as exc:
                self._fail(repo, package, outcome, f"fetch ({exc.kind}): {exc}")
            except (IdxError, sqlite3.Error, OSError) as exc:
                self._fail(repo, package, outcome, f"{type(exc).__name__}: {exc}")
            except Exception as exc:
                # a bug or an unexpected library error fails this package only
                logger.exception("%s: unexpected error", package.coordinate)
                self._fail(repo, package, outcome, f"{type(exc).__name__}: {exc}")
            return outcome

    @staticmethod
    def _needs_fetch(repo: Repository, package: Package) -> bool:
        """Fetched packages, and failed ones that already stored files, skip the download."""
        if package.status == FETCHED:
            return False
        return not (package.status == FAILED and repo.has_files(package.id))

    def _fetch_and_store(
        self, repo: Repository, package: Package, outcome: PackageOutcome
    ) -> None:
        coordinate = package.coordinate
        client = self._client(coordinate.registry)
        prepared: list[PreparedFile] = []
        for fetched in client.fetch(coordinate):
            language, chunks = chunk_file(fetched.path, fetched.data)
            prepared.append(PreparedFile(fetched.path, fetched.data, language, chunks))
        stored = repo.store_files(package.id, prepared)
        outcome.fetched = True
        outcome.files = stored.files
        outcome.chunks = stored.chunks
        logger.debug(
            "%s: stored %d files (%d unsupported), %d chunks",
            coordinate,
            stored.files,
            stored.unsupported,
            stored.chunks,
        )

    @staticmethod
    def _fail(repo: Repository, package: Package, outcome: PackageOutcome, reason: str) -> None:
        logger.warning("%s failed: %s", package.coordinate, reason)
        outcome.status = FAILED
        outcome.reason = reason
        try:
            repo.set_status(package.id, FAILED, reason)
        except sqlite3.Error as exc:
            logger.error("%s: could not record failure: %s", package.coordinate, exc)
