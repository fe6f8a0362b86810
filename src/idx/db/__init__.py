"""idx index store: metadata, vectors and content-addressed blobs."""

from idx.db.blobs import BlobStore, hash_bytes
from idx.db.connection import Database
from idx.db.migrations import MIGRATIONS, initialize, run_migrations
from idx.db.repository import Repository
from idx.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "BlobStore",
    "Database",
    "Repository",
    "hash_bytes",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
