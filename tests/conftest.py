"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
import math

import pytest

from idx.db.blobs import BlobStore
from idx.db.connection import Database
from idx.db.migrations import initialize
from idx.db.repository import Repository
from idx.registry import FetchedFile


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "index.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def blobs(tmp_path):
    return BlobStore(tmp_path / "blobs")


@pytest.fixture
def repo(tmp_db, blobs):
    return Repository(tmp_db, blobs)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep the user's IDX_* variables and ~/.idx config out of every test."""
    for var in (
        "IDX_EMBEDDING_MODEL",
        "IDX_EMBEDDING_API_BASE",
        "IDX_EMBEDDING_API_KEY",
        "IDX_CONCURRENCY",
        "IDX_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("idx.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global-config.yaml")


class FakeEmbeddingClient:
    """Deterministic stand-in for EmbeddingClient.

    Each text maps to a unit vector derived from its SHA-256, so equal texts
    always get equal vectors. ``fail`` maps a substring to an EmbeddingError
    raised whenever a batch contains a text with that substring.
    """

    def __init__(self, model: str = "openai/text-embedding-3-small", dims: int = 8) -> None:
        self.model = model
        self.dims = dims
        self.calls: list[list[str]] = []
        self.fail: dict[str, Exception] = {}
        self.vectors: dict[str, list[float]] = {}

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return self.vectors[text]
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        raw = [b + 1.0 for b in digest[: self.dims]]
        norm = math.sqrt(sum(x * x for x in raw))
        return [x / norm for x in raw]

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        for marker, exc in self.fail.items():
            if any(marker in t for t in texts):
                raise exc
        return [self.vector_for(t) for t in texts]


@pytest.fixture
def fake_client():
    return FakeEmbeddingClient()


class FakeRegistryClient:
    """Serves in-memory files per coordinate instead of downloading archives."""

    def __init__(self, packages: dict[str, dict[str, str]]) -> None:
        self.packages = packages
        self.fetched: list[str] = []
        self.errors: dict[str, Exception] = {}

    def fetch(self, coordinate):
        key = str(coordinate)
        self.fetched.append(key)
        if key in self.errors:
            raise self.errors[key]
        for path, text in sorted(self.packages.get(key, {}).items()):
            yield FetchedFile(path, text.encode("utf-8"))


@pytest.fixture
def fake_registry():
    """Factory: fake_registry({"npm:a@1.0.0": {"index.js": "..."}}) -> FakeRegistryClient."""

    def make(packages: dict[str, dict[str, str]]) -> FakeRegistryClient:
        return FakeRegistryClient(packages)

    return make
