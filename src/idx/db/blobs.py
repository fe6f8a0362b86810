"""Content-addressed, reference-counted blob store.

Bytes live on disk under ``<root>/<aa>/<sha256>``; the reference count lives
in the ``blobs`` table so it changes in the same transaction as the
SourceFile rows that own the references. The store knows nothing about
packages or chunks.

Write protocol (see Repository.store_files / remove_package):

  put(data)                 file written if absent (before the transaction)
  retain(conn, hash, size)  refcount + 1, inside the caller's transaction
  put(data)                 again after commit, re-creates a file that a
                            concurrent purge() removed in between
  release(conn, hash)       refcount - 1, row deleted at zero
  purge(conn, hash)         after commit: unlink if the row is gone

File operations on the same hash are serialized by a striped lock, so a
purge and a put of identical content never interleave.
"""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import tempfile
import threading
from pathlib import Path

from idx.errors import StoreError

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest used as the blob key."""
    return hashlib.sha256(data).hexdigest()


class BlobStore:
    """Content-addressed file storage shared by all workers of one index."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    def _lock_for(self, digest: str) -> threading.Lock:
        return self._locks[int(digest[:8], 16) % _LOCK_STRIPES]

    def path_for(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    # ------------------------------------------------------------------
    # File layer
    # ------------------------------------------------------------------

    def put(self, data: bytes) -> str:
        """Store *data* if not already present and return its hash (idempotent)."""
        digest = hash_bytes(data)
        path = self.path_for(digest)
        with self._lock_for(digest):
            if path.exists():
                return digest
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
                try:
                    with os.fdopen(fd, "wb") as fh:
                        fh.write(data)
                    os.replace(tmp, path)
                except BaseException:
                    Path(tmp).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                raise StoreError(f"Cannot write blob {digest}: {exc}", "io") from exc
        return digest

    def get(self, digest: str) -> bytes:
        """Return the bytes stored under *digest*.

        Raises:
            StoreError: kind ``missing_blob`` if the file is absent.
        """
        try:
            return self.path_for(digest).read_bytes()
        except FileNotFoundError as exc:
            raise StoreError(f"Blob {digest} is missing from {self.root}", "missing_blob") from exc
        except OSError as exc:
            raise StoreError(f"Cannot read blob {digest}: {exc}", "io") from exc

    def exists(self, digest: str) -> bool:
        return self.path_for(digest).is_file()

    def iter_hashes(self) -> list[str]:
        """Return the hashes of all blob files on disk, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            p.name
            for p in self.root.glob("??/*")
            if p.is_file() and not p.name.startswith(".tmp-")
        )

    def total_size(self) -> int:
        """Return the summed size in bytes of all blob files on disk."""
        return sum(self.path_for(h).stat().st_size for h in self.iter_hashes())

    # ------------------------------------------------------------------
    # Reference counts (caller owns the transaction)
    # ------------------------------------------------------------------

    def retain(self, conn: sqlite3.Connection, digest: str, size: int) -> None:
        """Add one reference to *digest*, creating its row at refcount 1."""
        conn.execute(
            """
            INSERT INTO blobs (hash, size, refcount) VALUES (?, ?, 1)
            ON CONFLICT(hash) DO UPDATE SET refcount = refcount + 1
            """,
            (digest, size),
        )

    def release(self, conn: sqlite3.Connection, digest: str) -> bool:
        """Drop one reference to *digest*.

        Returns:
            True if the count reached zero and the row was deleted; the caller
            must call purge() after committing.
        """
        cur = conn.execute(
            "UPDATE blobs SET refcount = refcount - 1 WHERE hash = ? AND refcount > 0",
            (digest,),
        )
        if cur.rowcount == 0:
            logger.warning("release of unknown blob %s ignored", digest)
            return False
        if self.refcount(conn, digest) == 0:
            conn.execute("DELETE FROM blobs WHERE hash = ?", (digest,))
            return True
        return False

    def refcount(self, conn: sqlite3.Connection, digest: str) -> int:
        row = conn.execute("SELECT refcount FROM blobs WHERE hash = ?", (digest,)).fetchone()
        return row[0] if row else 0

    def orphans(self, conn: sqlite3.Connection) -> list[str]:
        """Return hashes of blob files on disk that no row references."""
        known = {r[0] for r in conn.execute("SELECT hash FROM blobs").fetchall()}
        return [h for h in self.iter_hashes() if h not in known]

    def purge(self, conn: sqlite3.Connection, digest: str) -> bool:
        """Unlink the file for *digest* if no row references it. Call after commit."""
        with self._lock_for(digest):
            row = conn.execute("SELECT 1 FROM blobs WHERE hash = ?", (digest,)).fetchone()
            if row is not None:
                return False
            try:
                self.path_for(digest).unlink(missing_ok=True)
            except OSError as exc:
                raise StoreError(f"Cannot delete blob {digest}: {exc}", "io") from exc
            logger.debug("purged blob %s", digest)
            return True
