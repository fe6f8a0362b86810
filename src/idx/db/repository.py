"""Repository pattern for all idx index-store operations.

Single interface for: packages, source files + blobs, chunks, embeddings,
vector search, crash recovery and statistics. Vec tables are model-managed
(ensure_vec_table); the repository handles read + write.

Every multi-row write runs inside transaction(), so the metadata rows, the
vector rows and the blob reference counts always change together.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from idx.db.blobs import BlobStore
from idx.db.models import (
    FAILED,
    FETCHED,
    INDEXED,
    PENDING,
    STATUSES,
    Chunk,
    Package,
    PackageCoordinate,
    PreparedFile,
    SourceFile,
)
from idx.db.vectors import (
    drop_vec_table,
    ensure_vec_table,
    model_to_slug,
    vec_table_exists,
    vec_table_name,
)
from idx.errors import StoreError

logger = logging.getLogger(__name__)

_ACTIVE_MODEL_KEY = "embedding_model"


@dataclass
class StoreReport:
    files: int = 0
    unsupported: int = 0
    chunks: int = 0


@dataclass
class RemoveReport:
    coordinate: PackageCoordinate
    files: int = 0
    chunks: int = 0
    embeddings: int = 0
    blobs_deleted: int = 0


@dataclass
class RecoveryReport:
    """What recover() repaired. All zeros on a clean index."""

    dangling_embeddings: int = 0
    dangling_vectors: int = 0
    orphan_embeddings: int = 0
    demoted_packages: int = 0
    reset_packages: int = 0
    refcounts_fixed: int = 0
    orphan_blobs: int = 0

    @property
    def clean(self) -> bool:
        return not any(vars(self).values())


@dataclass
class IndexStats:
    packages_by_registry: dict[str, int] = field(default_factory=dict)
    packages_by_status: dict[str, int] = field(default_factory=dict)
    files: int = 0
    unsupported_files: int = 0
    blobs: int = 0
    blob_bytes: int = 0
    blob_references: int = 0
    chunks: int = 0
    embeddings: int = 0
    failed_chunks: int = 0
    model: str | None = None

    @property
    def packages(self) -> int:
        return sum(self.packages_by_status.values())


class Repository:
    """Data access layer for all idx index entities.

    Wraps an open sqlite3.Connection (autocommit mode, see Database.connect)
    plus the BlobStore that holds file bytes. The connection is owned by the
    caller and must be closed after use; one Repository per thread.
    """

    def __init__(self, conn: sqlite3.Connection, blobs: BlobStore) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see idx.db.migrations.initialize).
            blobs: Blob store rooted in the same index directory.
        """
        self._conn = conn
        self.blobs = blobs

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in one ``BEGIN IMMEDIATE`` transaction (re-entrant)."""
        if self._conn.in_transaction:
            yield self._conn
            return
        try:
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            raise StoreError(f"Cannot start transaction: {exc}", "io") from exc
        try:
            yield self._conn
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Index metadata
    # ------------------------------------------------------------------

    def active_model(self) -> str | None:
        """Return the embedding model the index was built with, or None."""
        row = self._conn.execute(
            "SELECT value FROM index_meta WHERE key = ?", (_ACTIVE_MODEL_KEY,)
        ).fetchone()
        return row["value"] if row else None

    def set_active_model(self, model: str) -> bool:
        """Make *model* the active embedding model.

        Switching models invalidates every embedding of any other model:
        their rows and vec tables are dropped and ``indexed`` packages fall
        back to ``fetched`` so the next run re-embeds without re-fetching.

        Returns:
            True if the active model changed.
        """
        with self.transaction():
            current = self.active_model()
            if current == model:
                return False
            stale = [
                r["model"]
                for r in self._conn.execute(
                    "SELECT DISTINCT model FROM embeddings WHERE model != ?", (model,)
                ).fetchall()
            ]
            if current is not None and current != model and current not in stale:
                stale.append(current)
            for old in stale:
                self._conn.execute("DELETE FROM embeddings WHERE model = ?", (old,))
                drop_vec_table(self._conn, model_to_slug(old))
            demoted = self._conn.execute(
                "UPDATE packages SET status = ?, indexed_at = NULL WHERE status = ?",
                (FETCHED, INDEXED),
            ).rowcount
            self._conn.execute("UPDATE chunks SET embed_error = NULL")
            self._conn.execute(
                """
                INSERT INTO index_meta (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (_ACTIVE_MODEL_KEY, model),
            )
        if current is not None:
            logger.info(
                "embedding model changed %s -> %s; %d package(s) need re-embedding",
                current,
                model,
                demoted,
            )
        return True

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    def upsert_package(self, coordinate: PackageCoordinate, unpinned: bool = False) -> Package:
        """Insert *coordinate* as ``pending`` if unknown and return its record."""
        self._conn.execute(
            """
            INSERT INTO packages (registry, name, version, unpinned)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(registry, name, version) DO UPDATE SET unpinned = excluded.unpinned
            """,
            (coordinate.registry, coordinate.name, coordinate.version, int(unpinned)),
        )
        package = self.get_package(coordinate)
        if package is None:
            raise StoreError(f"{coordinate} vanished right after being stored", "corrupt")
        return package

    def get_package(self, coordinate: PackageCoordinate) -> Package | None:
        """Return the package for *coordinate*, or None if not indexed."""
        row = self._conn.execute(
            "SELECT * FROM packages WHERE registry = ? AND name = ? AND version = ?",
            (coordinate.registry, coordinate.name, coordinate.version),
        ).fetchone()
        return _row_to_package(row) if row else None

    def get_package_by_id(self, package_id: int) -> Package | None:
        row = self._conn.execute(
            "SELECT * FROM packages WHERE id = ?", (package_id,)
        ).fetchone()
        return _row_to_package(row) if row else None

    def list_packages(
        self, registry: str | None = None, status: str | None = None
    ) -> list[Package]:
        """Return packages ordered by registry, name, version.

        Args:
            registry: Only this registry, if given.
            status: Only this status, if given.
        """
        sql = "SELECT * FROM packages WHERE 1 = 1"
        params: list[object] = []
        if registry is not None:
            sql += " AND registry = ?"
            params.append(registry)
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY registry, name, version"
        return [_row_to_package(r) for r in self._conn.execute(sql, params).fetchall()]

    def set_status(self, package_id: int, status: str, reason: str | None = None) -> None:
        """Set a package's status; ``failed`` records *reason* and a timestamp.

        ``indexed`` is rejected here: use finalize_package(), which checks
        that every chunk has an embedding first.
        """
        if status not in STATUSES or status == INDEXED:
            raise ValueError(f"Cannot set status '{status}' directly.")
        if status == FAILED:
            self._conn.execute(
                """
                UPDATE packages
                SET status = ?, failure_reason = ?, failed_at = datetime('now'), indexed_at = NULL
                WHERE id = ?
                """,
                (status, reason or "unknown error", package_id),
            )
        else:
            self._conn.execute(
                """
                UPDATE packages
                SET status = ?, failure_reason = NULL, failed_at = NULL, indexed_at = NULL
                WHERE id = ?
                """,
                (status, package_id),
            )

    # ------------------------------------------------------------------
    # Source files + chunks
    # ------------------------------------------------------------------

    def has_files(self, package_id: int) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM source_files WHERE package_id = ? LIMIT 1", (package_id,)
        ).fetchone()
        return row is not None

    def list_files(self, package_id: int) -> list[SourceFile]:
        rows = self._conn.execute(
            "SELECT * FROM source_files WHERE package_id = ? ORDER BY path", (package_id,)
        ).fetchall()
        return [_row_to_file(r) for r in rows]

    def store_files(self, package_id: int, files: Sequence[PreparedFile]) -> StoreReport:
        """Persist a package's files and chunks and move it to ``fetched``.

        Blob bytes are written first, then one transaction replaces any
        previous files of the package, retains each blob and inserts the
        chunks. A crash before commit leaves only unreferenced blob files,
        which recover() removes.
        """
        digests = [self.blobs.put(f.data) for f in files]
        report = StoreReport()
        with self.transaction():
            released, dropped_chunks = self._drop_files(package_id)
            for prepared, digest in zip(files, digests):
                self.blobs.retain(self._conn, digest, len(prepared.data))
                cur = self._conn.execute(
                    """
                    INSERT INTO source_files (package_id, path, content_hash, size, language)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (package_id, prepared.path, digest, len(prepared.data), prepared.language),
                )
                file_id = cur.lastrowid
                report.files += 1
                if prepared.language is None:
                    report.unsupported += 1
                for chunk in prepared.chunks:
                    self._insert_chunk(file_id, chunk)
                    report.chunks += 1
            self._delete_orphan_embeddings(dropped_chunks)
            self.set_status(package_id, FETCHED)
        # Re-create any file a concurrent purge() removed before our commit.
        for prepared in files:
            self.blobs.put(prepared.data)
        self._purge(released)
        return report

    def _insert_chunk(self, file_id: int, chunk: Chunk) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO chunks (file_id, kind, symbol, start_byte, end_byte,
                                start_line, end_line, text, content_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                file_id,
                chunk.kind,
                chunk.symbol,
                chunk.start_byte,
                chunk.end_byte,
                chunk.start_line,
                chunk.end_line,
                chunk.text,
                chunk.content_hash,
            ),
        )
        chunk.file_id = file_id
        chunk.id = cur.lastrowid
        return cur.lastrowid

    def _drop_files(self, package_id: int) -> tuple[list[str], set[str]]:
        """Delete a package's files (cascading to chunks).

        Returns the blob hashes whose count reached zero and the content
        hashes of the dropped chunks; the caller deletes embeddings left
        without a chunk once its own inserts are done.
        """
        hashes = [
            r["content_hash"]
            for r in self._conn.execute(
                "SELECT content_hash FROM source_files WHERE package_id = ?", (package_id,)
            ).fetchall()
        ]
        if not hashes:
            return [], set()
        chunk_hashes = self._package_chunk_hashes(package_id)
        self._conn.execute("DELETE FROM source_files WHERE package_id = ?", (package_id,))
        return [h for h in hashes if self.blobs.release(self._conn, h)], chunk_hashes

    def _purge(self, hashes: list[str]) -> int:
        return sum(1 for h in set(hashes) if self.blobs.purge(self._conn, h))

    def list_chunks(self, package_id: int) -> list[Chunk]:
        """Return a package's chunks ordered by file path, then byte offset."""
        rows = self._conn.execute(
            """
            SELECT c.* FROM chunks c
            JOIN source_files f ON f.id = c.file_id
            WHERE f.package_id = ?
            ORDER BY f.path, c.start_byte, c.id
            """,
            (package_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def get_chunk(self, chunk_id: int) -> Chunk | None:
        row = self._conn.execute("SELECT * FROM chunks WHERE id = ?", (chunk_id,)).fetchone()
        return _row_to_chunk(row) if row else None

    def count_chunks(self, package_id: int) -> int:
        return self._conn.execute(
            """
            SELECT COUNT(*) FROM chunks c JOIN source_files f ON f.id = c.file_id
            WHERE f.package_id = ?
            """,
            (package_id,),
        ).fetchone()[0]

    def _package_chunk_hashes(self, package_id: int) -> set[str]:
        return {
            r[0]
            for r in self._conn.execute(
                """
                SELECT DISTINCT c.content_hash FROM chunks c
                JOIN source_files f ON f.id = c.file_id
                WHERE f.package_id = ?
                """,
                (package_id,),
            ).fetchall()
        }

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def missing_embeddings(self, package_id: int, model: str) -> list[Chunk]:
        """Return chunks of *package_id* lacking an embedding for *model*.

        Ordered by file path, then byte offset, so batches are reproducible.
        """
        rows = self._conn.execute(
            """
            SELECT c.* FROM chunks c
            JOIN source_files f ON f.id = c.file_id
            WHERE f.package_id = ?
              AND NOT EXISTS (
                SELECT 1 FROM embeddings e
                WHERE e.content_hash = c.content_hash AND e.model = ?
              )
            ORDER BY f.path, c.start_byte, c.id
            """,
            (package_id, model),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def has_embedding(self, content_hash: str, model: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM embeddings WHERE content_hash = ? AND model = ?",
            (content_hash, model),
        ).fetchone()
        return row is not None

    def add_embeddings(self, model: str, items: Sequence[tuple[str, list[float]]]) -> int:
        """Persist ``(content_hash, vector)`` pairs for *model* atomically.

        The embedding row and its vector are written in one transaction;
        pairs whose hash already has an embedding are skipped.

        Returns:
            Number of new embeddings written.

        Raises:
            StoreError: If a vector's dimensions differ from the model's table.
        """
        if not items:
            return 0
        written = 0
        slug = model_to_slug(model)
        with self.transaction():
            existing = self._conn.execute(
                "SELECT dimensions FROM embeddings WHERE model = ? LIMIT 1", (model,)
            ).fetchone()
            for content_hash, vector in items:
                dims = len(vector)
                if existing is not None and existing["dimensions"] != dims:
                    raise StoreError(
                        f"Model '{model}' returned {dims} dimensions; "
                        f"the index holds {existing['dimensions']}.",
                        "corrupt",
                    )
                table = ensure_vec_table(self._conn, slug, dims)
                cur = self._conn.execute(
                    """
                    INSERT INTO embeddings (content_hash, model, dimensions) VALUES (?, ?, ?)
                    ON CONFLICT(content_hash, model) DO NOTHING
                    """,
                    (content_hash, model, dims),
                )
                if cur.rowcount == 0:
                    continue
                self._conn.execute(
                    f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
                    (cur.lastrowid, json.dumps(vector)),
                )
                self._conn.execute(
                    "UPDATE chunks SET embed_error = NULL WHERE content_hash = ?",
                    (content_hash,),
                )
                written += 1
        return written

    def mark_chunk_failures(self, content_hashes: Sequence[str], reason: str) -> None:
        """Record an embedding failure on every chunk with one of *content_hashes*."""
        with self.transaction():
            self._conn.executemany(
                "UPDATE chunks SET embed_error = ? WHERE content_hash = ?",
                [(reason, h) for h in content_hashes],
            )

    def finalize_package(self, package_id: int, model: str) -> str:
        """Mark the package ``indexed`` if every chunk has an embedding.

        Otherwise the package becomes ``failed`` with the number of missing
        embeddings as its reason. Returns the new status.
        """
        with self.transaction():
            missing = self._conn.execute(
                """
                SELECT COUNT(*) FROM chunks c
                JOIN source_files f ON f.id = c.file_id
                WHERE f.package_id = ?
                  AND NOT EXISTS (
                    SELECT 1 FROM embeddings e
                    WHERE e.content_hash = c.content_hash AND e.model = ?
                  )
                """,
                (package_id, model),
            ).fetchone()[0]
            if missing:
                self.set_status(
                    package_id, FAILED, f"{missing} chunk(s) failed to embed"
                )
                return FAILED
            self._conn.execute(
                """
                UPDATE packages
                SET status = ?, failure_reason = NULL, failed_at = NULL,
                    indexed_at = datetime('now')
                WHERE id = ?
                """,
                (INDEXED, package_id),
            )
            return INDEXED

    def _delete_orphan_embeddings(self, content_hashes: set[str]) -> int:
        """Delete embeddings (and vectors) for hashes no chunk references any more."""
        deleted = 0
        for content_hash in sorted(content_hashes):
            still_used = self._conn.execute(
                "SELECT 1 FROM chunks WHERE content_hash = ? LIMIT 1", (content_hash,)
            ).fetchone()
            if still_used:
                continue
            for row in self._conn.execute(
                "SELECT id, model FROM embeddings WHERE content_hash = ?", (content_hash,)
            ).fetchall():
                table = vec_table_name(model_to_slug(row["model"]))
                if vec_table_exists(self._conn, table):
                    self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (row["id"],))
                self._conn.execute("DELETE FROM embeddings WHERE id = ?", (row["id"],))
                deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # Vector search
    # ------------------------------------------------------------------

    def search_vectors(
        self,
        model: str,
        embedding: list[float],
        *,
        registry: str | None = None,
        name: str | None = None,
        version: str | None = None,
        limit: int = 10,
    ) -> list[sqlite3.Row]:
        """Exact cosine nearest-neighbour search over the filtered chunk set.

        Rows are ordered by distance, then package name, file path and byte
        offset, so equal scores always come back in the same order.
        """
        table = vec_table_name(model_to_slug(model))
        sql = f"""
            SELECT c.id AS chunk_id, c.kind, c.symbol, c.start_byte, c.end_byte,
                   c.start_line, c.end_line, c.text,
                   f.path, f.content_hash AS file_hash,
                   p.registry, p.name, p.version,
                   vec_distance_cosine(v.embedding, ?) AS distance
            FROM chunks c
            JOIN source_files f ON f.id = c.file_id
            JOIN packages p ON p.id = f.package_id
            JOIN embeddings e ON e.content_hash = c.content_hash AND e.model = ?
            JOIN {table} v ON v.rowid = e.id
            WHERE 1 = 1
        """
        params: list[object] = [json.dumps(embedding), model]
        for column, value in (("p.registry", registry), ("p.name", name), ("p.version", version)):
            if value is not None:
                sql += f" AND {column} = ?"
                params.append(value)
        sql += " ORDER BY distance, p.name, f.path, c.start_byte, c.id LIMIT ?"
        params.append(limit)
        return self._conn.execute(sql, params).fetchall()

    def count_embeddings(self, model: str | None = None) -> int:
        if model is None:
            return self._conn.execute("SELECT COUNT(*) FROM embeddings").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM embeddings WHERE model = ?", (model,)
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def remove_package(self, package_id: int) -> RemoveReport:
        """Delete a package with its files, chunks, vectors and blob references.

        Metadata rows, vectors and refcounts change in one transaction;
        blob files whose count reached zero are unlinked after commit.

        Raises:
            StoreError: kind ``not_found`` if the package does not exist.
        """
        package = self.get_package_by_id(package_id)
        if package is None:
            raise StoreError(f"Package id {package_id} not found", "not_found")
        report = RemoveReport(coordinate=package.coordinate)
        with self.transaction():
            report.files = len(self.list_files(package_id))
            report.chunks = self.count_chunks(package_id)
            chunk_hashes = self._package_chunk_hashes(package_id)
            hashes = [
                r["content_hash"]
                for r in self._conn.execute(
                    "SELECT content_hash FROM source_files WHERE package_id = ?", (package_id,)
                ).fetchall()
            ]
            self._conn.execute("DELETE FROM packages WHERE id = ?", (package_id,))
            report.embeddings = self._delete_orphan_embeddings(chunk_hashes)
            released = [h for h in hashes if self.blobs.release(self._conn, h)]
        report.blobs_deleted = self._purge(released)
        logger.info(
            "removed %s (%d files, %d chunks, %d blobs deleted)",
            package.coordinate,
            report.files,
            report.chunks,
            report.blobs_deleted,
        )
        return report

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def recover(self) -> RecoveryReport:
        """Bring metadata, vectors and blobs back into agreement.

        Run once when an index is opened, before any new work. Repairs
        (in order): embedding rows without vectors and vice versa, embeddings
        no chunk references, ``indexed`` packages missing embeddings,
        packages whose blob files vanished, refcount drift, and blob files
        no row references.
        """
        report = RecoveryReport()
        with self.transaction():
            models = [
                r["model"]
                for r in self._conn.execute("SELECT DISTINCT model FROM embeddings").fetchall()
            ]
            for model in models:
                table = vec_table_name(model_to_slug(model))
                if not vec_table_exists(self._conn, table):
                    report.dangling_embeddings += self._conn.execute(
                        "DELETE FROM embeddings WHERE model = ?", (model,)
                    ).rowcount
                    continue
                report.dangling_embeddings += self._conn.execute(
                    f"DELETE FROM embeddings WHERE model = ? AND id NOT IN (SELECT rowid FROM {table})",
                    (model,),
                ).rowcount
                report.dangling_vectors += self._conn.execute(
                    f"DELETE FROM {table} WHERE rowid NOT IN "
                    "(SELECT id FROM embeddings WHERE model = ?)",
                    (model,),
                ).rowcount

            orphan_hashes = {
                r[0]
                for r in self._conn.execute(
                    "SELECT DISTINCT content_hash FROM embeddings "
                    "WHERE content_hash NOT IN (SELECT content_hash FROM chunks)"
                ).fetchall()
            }
            report.orphan_embeddings = self._delete_orphan_embeddings(orphan_hashes)

            active = self.active_model()
            for package in self.list_packages(status=INDEXED):
                if active is None or self.missing_embeddings(package.id, active):
                    self._conn.execute(
                        "UPDATE packages SET status = ?, indexed_at = NULL WHERE id = ?",
                        (FETCHED, package.id),
                    )
                    report.demoted_packages += 1

            released: list[str] = []
            broken = self._conn.execute(
                "SELECT DISTINCT package_id, content_hash FROM source_files"
            ).fetchall()
            reset: set[int] = set()
            for row in broken:
                if row["package_id"] not in reset and not self.blobs.exists(row["content_hash"]):
                    reset.add(row["package_id"])
            for package_id in sorted(reset):
                dropped_blobs, dropped_chunks = self._drop_files(package_id)
                released.extend(dropped_blobs)
                self._delete_orphan_embeddings(dropped_chunks)
                self.set_status(package_id, PENDING)
                report.reset_packages += 1

            report.refcounts_fixed = self._conn.execute(
                """
                UPDATE blobs SET refcount = (
                    SELECT COUNT(*) FROM source_files f WHERE f.content_hash = blobs.hash
                )
                WHERE refcount != (
                    SELECT COUNT(*) FROM source_files f WHERE f.content_hash = blobs.hash
                )
                """
            ).rowcount
            self._conn.execute("DELETE FROM blobs WHERE refcount = 0")

        report.orphan_blobs = self._purge(self.blobs.orphans(self._conn) + released)
        if not report.clean:
            logger.warning("index recovery: %s", report)
        return report

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def stats(self) -> IndexStats:
        """Return counts across every table of the index."""
        s = IndexStats(model=self.active_model())
        for row in self._conn.execute(
            "SELECT registry, COUNT(*) AS n FROM packages GROUP BY registry ORDER BY registry"
        ):
            s.packages_by_registry[row["registry"]] = row["n"]
        for row in self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM packages GROUP BY status ORDER BY status"
        ):
            s.packages_by_status[row["status"]] = row["n"]
        s.files = self._conn.execute("SELECT COUNT(*) FROM source_files").fetchone()[0]
        s.unsupported_files = self._conn.execute(
            "SELECT COUNT(*) FROM source_files WHERE language IS NULL"
        ).fetchone()[0]
        blob_row = self._conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(size), 0), COALESCE(SUM(refcount), 0) FROM blobs"
        ).fetchone()
        s.blobs, s.blob_bytes, s.blob_references = blob_row[0], blob_row[1], blob_row[2]
        s.chunks = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        s.embeddings = self.count_embeddings(s.model) if s.model else 0
        s.failed_chunks = self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE embed_error IS NOT NULL"
        ).fetchone()[0]
        return s


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_package(row: sqlite3.Row) -> Package:
    return Package(
        id=row["id"],
        coordinate=PackageCoordinate(row["registry"], row["name"], row["version"]),
        status=row["status"],
        unpinned=bool(row["unpinned"]),
        failure_reason=row["failure_reason"],
        failed_at=row["failed_at"],
        created_at=row["created_at"],
        indexed_at=row["indexed_at"],
    )


def _row_to_file(row: sqlite3.Row) -> SourceFile:
    return SourceFile(
        id=row["id"],
        package_id=row["package_id"],
        path=row["path"],
        content_hash=row["content_hash"],
        size=row["size"],
        language=row["language"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        file_id=row["file_id"],
        kind=row["kind"],
        symbol=row["symbol"],
        start_byte=row["start_byte"],
        end_byte=row["end_byte"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        text=row["text"],
        content_hash=row["content_hash"],
        embed_error=row["embed_error"],
    )


__all__ = [
    "IndexStats",
    "RecoveryReport",
    "RemoveReport",
    "Repository",
    "StoreReport",
]
