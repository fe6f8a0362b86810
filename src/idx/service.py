"""IndexService: every consumer operation over one project's ``.index/``.

The CLI is a thin layer over this module; each operation returns a
dataclass result or raises a typed IdxError.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from idx.config import INDEX_DIR_NAME, IdxConfig, embedding_api_key, find_project_root, load_config
from idx.db.blobs import BlobStore
from idx.db.connection import Database
from idx.db.migrations import initialize
from idx.db.models import (
    FAILED,
    FETCHED,
    INDEXED,
    PENDING,
    SKIPPED,
    STATUSES,
    Package,
    PackageCoordinate,
)
from idx.db.repository import IndexStats, RecoveryReport, RemoveReport, Repository
from idx.embedding import EmbeddingClient
from idx.errors import ManifestError, StoreError
from idx.indexer import IndexRunReport, Indexer, OutcomeCallback
from idx.manifests import Resolution, resolve_project
from idx.reconcile import ReconcilePlan, diff
from idx.registry import RegistryClient
from idx.search import SearchFilters, SearchResult, search
from idx.watch import ManifestWatcher

logger = logging.getLogger(__name__)

DB_FILE_NAME = "index.db"
BLOB_DIR_NAME = "blobs"


@dataclass
class InitResult:
    index_dir: Path
    created: bool
    resolution: Resolution
    run: IndexRunReport | None = None


@dataclass
class UpdateResult:
    plan: ReconcilePlan
    resolution: Resolution
    removed: list[RemoveReport] = field(default_factory=list)
    run: IndexRunReport | None = None
    model_change: tuple[str, str] | None = None


@dataclass
class StatusReport:
    """Read-only view of what ``update`` would do and what needs attention."""

    plan: ReconcilePlan
    failures: list[Package]
    manifest_errors: list[ManifestError]
    unpinned: list[PackageCoordinate]
    model_change: tuple[str, str] | None = None


@dataclass
class PruneResult:
    candidates: list[PackageCoordinate]
    removed: list[RemoveReport] = field(default_factory=list)


@dataclass
class ServiceStats:
    index: IndexStats
    db_bytes: int
    blob_disk_bytes: int


class IndexService:
    """Operations on one project's index.

    Args:
        root: Project root (the directory holding ``.index/``).
        config: Loaded configuration; defaults to load_config(root).
        embedding_client: Injected for tests; built from config otherwise.
        registry_client: Injected for tests; see Indexer.
    """

    def __init__(
        self,
        root: Path,
        config: IdxConfig | None = None,
        *,
        embedding_client: EmbeddingClient | None = None,
        registry_client: Callable[[str], RegistryClient] | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.config = config or load_config(self.root)
        self.index_dir = self.root / INDEX_DIR_NAME
        self.db_path = self.index_dir / DB_FILE_NAME
        self.blobs = BlobStore(self.index_dir / BLOB_DIR_NAME)
        self._embedding_client = embedding_client
        self._registry_client = registry_client
        self.last_recovery: RecoveryReport | None = None

    @classmethod
    def open(
        cls,
        start: Path | None = None,
        config: IdxConfig | None = None,
        *,
        embedding_client: EmbeddingClient | None = None,
        registry_client: Callable[[str], RegistryClient] | None = None,
    ) -> IndexService:
        """Find the nearest ``.index/`` at or above *start* and open it.

        Raises:
            StoreError: kind ``not_found`` if no index exists.
        """
        root = find_project_root(start)
        if root is None:
            raise StoreError(
                f"No {INDEX_DIR_NAME}/ directory found. Run 'idx init' first.", "not_found"
            )
        service = cls(
            root,
            config,
            embedding_client=embedding_client,
            registry_client=registry_client,
        )
        service.prepare()
        return service

    @property
    def exists(self) -> bool:
        return self.db_path.is_file()

    def prepare(self) -> RecoveryReport:
        """Create or migrate the database, then repair anything a crash left behind."""
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.blobs.root.mkdir(parents=True, exist_ok=True)
        with self._repo() as repo:
            initialize(repo.conn)
            self.last_recovery = repo.recover()
        return self.last_recovery

    @contextmanager
    def _repo(self) -> Iterator[Repository]:
        with Database(self.db_path) as conn:
            yield Repository(conn, self.blobs)

    @property
    def model(self) -> str:
        """The embedding model this service indexes and searches with."""
        if self._embedding_client is not None:
            return self._embedding_client.model
        return self.config.embedding.model

    def _model_change(self, active: str | None) -> tuple[str, str] | None:
        if active is None or active == self.model:
            return None
        return active, self.model

    def _indexer(self, on_outcome: OutcomeCallback | None = None) -> Indexer:
        return Indexer(
            self.db_path,
            self.blobs,
            self.config,
            embedding_client=self._embedding_client,
            registry_client=self._registry_client,
            on_outcome=on_outcome,
        )

    def resolve(self) -> Resolution:
        return resolve_project(self.root, self.config.discovery)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def init(
        self,
        jobs: int | None = None,
        *,
        dry_run: bool = False,
        on_outcome: OutcomeCallback | None = None,
    ) -> InitResult:
        """Create ``.index/`` if missing, then resolve and index every dependency.

        Idempotent: already-indexed packages are skipped.
        """
        created = not self.exists
        resolution = self.resolve()
        result = InitResult(self.index_dir, created, resolution)
        if dry_run:
            return result
        self.prepare()
        if created:
            logger.info("created %s", self.index_dir)
        result.run = self._indexer(on_outcome).run(
            resolution.coordinates, unpinned=resolution.unpinned, jobs=jobs
        )
        return result

    def update(
        self, jobs: int | None = None, *, on_outcome: OutcomeCallback | None = None
    ) -> UpdateResult:
        """Apply the reconcile plan: index new and incomplete, drop replaced versions.

        A changed embedding model is applied first, so every indexed package
        becomes incomplete and is re-embedded from its stored files.
        """
        resolution = self.resolve()
        with self._repo() as repo:
            previous = repo.active_model()
            repo.set_active_model(self.model)
            plan = diff(resolution, repo.list_packages())
            result = UpdateResult(plan, resolution, model_change=self._model_change(previous))
            for old in plan.to_remove:
                package = repo.get_package(old)
                if package is not None:
                    result.removed.append(repo.remove_package(package.id))
        if plan.to_index:
            result.run = self._indexer(on_outcome).run(
                plan.to_index, unpinned=resolution.unpinned, jobs=jobs
            )
        if plan.removed:
            logger.info(
                "%d package(s) no longer referenced; run 'idx prune' to remove them",
                len(plan.removed),
            )
        return result

    def index(
        self,
        coordinate: PackageCoordinate,
        force: bool = False,
        *,
        on_outcome: OutcomeCallback | None = None,
    ) -> IndexRunReport:
        """Index one coordinate, whether or not any manifest references it."""
        return self._indexer(on_outcome).run([coordinate], force=force, jobs=1)

    def watch(
        self, on_update: Callable[[UpdateResult], None] | None = None
    ) -> ManifestWatcher:
        """Start watching manifests; every debounced change runs ``update``."""

        def reconcile() -> None:
            result = self.update()
            if on_update is not None:
                on_update(result)

        watcher = ManifestWatcher(self.root, reconcile, debounce=self.config.watch.debounce)
        watcher.start()
        return watcher

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(
        self, query: str, filters: SearchFilters | None = None, top_k: int = 10
    ) -> list[SearchResult]:
        client = self._embedding_client or EmbeddingClient(
            self.config.embedding, api_key=embedding_api_key()
        )
        with self._repo() as repo:
            return search(repo, client, query, filters, top_k)

    def list_packages(
        self, registry: str | None = None, status: str | None = None
    ) -> list[Package]:
        if status is not None and status not in STATUSES:
            raise ValueError(f"Unknown status '{status}'. Valid: {', '.join(STATUSES)}")
        with self._repo() as repo:
            return repo.list_packages(registry=registry, status=status)

    def get(self, coordinate: PackageCoordinate) -> Package | None:
        with self._repo() as repo:
            return repo.get_package(coordinate)

    def stats(self) -> ServiceStats:
        with self._repo() as repo:
            index_stats = repo.stats()
        db_bytes = sum(
            p.stat().st_size
            for p in self.index_dir.glob(f"{DB_FILE_NAME}*")
            if p.is_file()
        )
        return ServiceStats(index_stats, db_bytes, self.blobs.total_size())

    def status(self) -> StatusReport:
        """The reconcile plan plus failures and manifest errors. Mutates nothing.

        If the configured model differs from the index's, indexed packages
        are reported incomplete, since ``update`` will re-embed them.
        """
        resolution = self.resolve()
        with self._repo() as repo:
            packages = repo.list_packages()
            model_change = self._model_change(repo.active_model())
        planned = packages
        if model_change is not None:
            planned = [replace(p, status=FETCHED) if p.status == INDEXED else p for p in packages]
        return StatusReport(
            plan=diff(resolution, planned),
            failures=[p for p in packages if p.status == FAILED],
            manifest_errors=resolution.errors,
            unpinned=sorted(resolution.unpinned),
            model_change=model_change,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def remove(self, coordinate: PackageCoordinate) -> RemoveReport:
        """Remove one package; blobs shared with other packages survive.

        Raises:
            StoreError: kind ``not_found`` if the package is not in the index.
        """
        with self._repo() as repo:
            return repo.remove_package(self._require(repo, coordinate).id)

    def prune(self, dry_run: bool = False) -> PruneResult:
        """Remove packages no manifest references any more.

        With *dry_run* only the candidates are reported.
        """
        resolution = self.resolve()
        with self._repo() as repo:
            result = PruneResult(diff(resolution, repo.list_packages()).removed)
            if dry_run:
                return result
            for coordinate in result.candidates:
                package = repo.get_package(coordinate)
                if package is not None:
                    result.removed.append(repo.remove_package(package.id))
        return result

    def clean(self) -> bool:
        """Delete the whole index directory. Returns False if there was none."""
        if not self.index_dir.exists():
            return False
        shutil.rmtree(self.index_dir)
        logger.info("removed %s", self.index_dir)
        return True

    def retry(self, coordinate: PackageCoordinate | None = None) -> list[PackageCoordinate]:
        """Return packages to ``pending`` so the next ``update`` picks them up.

        With a coordinate, that package (failed or skipped) is re-queued;
        without one, every failed package is.
        """
        with self._repo() as repo:
            if coordinate is not None:
                targets = [self._require(repo, coordinate)]
            else:
                targets = repo.list_packages(status=FAILED)
            for package in targets:
                repo.set_status(package.id, PENDING)
        return [p.coordinate for p in targets]

    def skip(self, coordinate: PackageCoordinate) -> Package:
        """Mark a package ``skipped``; runs leave it alone until retried."""
        with self._repo() as repo:
            package = self._require(repo, coordinate)
            repo.set_status(package.id, SKIPPED)
            updated = repo.get_package_by_id(package.id)
        if updated is None:
            raise StoreError(f"Package not found: {coordinate}", "not_found")
        return updated

    @staticmethod
    def _require(repo: Repository, coordinate: PackageCoordinate) -> Package:
        package = repo.get_package(coordinate)
        if package is None:
            raise StoreError(f"Package not found: {coordinate}", "not_found")
        return package
