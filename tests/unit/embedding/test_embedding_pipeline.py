"""Tests for the per-package embedding pipeline."""

from __future__ import annotations

import pytest

from idx.chunking import chunk_file
from idx.config import EmbeddingCfg
from idx.db.models import PackageCoordinate, PreparedFile
from idx.embedding import EmbeddingPipeline, make_batches
from idx.errors import EmbeddingError

LODASH = PackageCoordinate("npm", "lodash", "4.17.21")


def _store(repo, files: dict[str, str], coordinate=LODASH) -> int:
    package = repo.upsert_package(coordinate)
    prepared = []
    for path, text in files.items():
        language, chunks = chunk_file(path, text.encode())
        prepared.append(PreparedFile(path, text.encode(), language, chunks))
    repo.store_files(package.id, prepared)
    return package.id


def _functions(*names: str) -> dict[str, str]:
    return {f"{n}.js": f"function {n}() {{ return '{n}'; }}\n" for n in names}


def _pipeline(client, sleeps=None, **cfg):
    sleeps = sleeps if sleeps is not None else []
    return EmbeddingPipeline(client, EmbeddingCfg(**cfg), sleep=sleeps.append)


def test_embeds_every_chunk(repo, fake_client):
    package_id = _store(repo, _functions("a", "b", "c"))
    report = _pipeline(fake_client, batch_size=2).embed_package(repo, package_id)
    assert (report.embedded, report.reused, report.failed) == (3, 0, 0)
    assert [len(call) for call in fake_client.calls] == [2, 1]
    assert repo.missing_embeddings(package_id, fake_client.model) == []


def test_identical_content_is_embedded_once(repo, fake_client):
    text = "function same() { return 1; }\n"
    package_id = _store(repo, {"a.js": text, "b.js": text})
    report = _pipeline(fake_client).embed_package(repo, package_id)
    assert report.embedded == 1
    assert fake_client.calls == [["function same() { return 1; }"]]


def test_second_run_reuses_existing_vectors(repo, fake_client):
    package_id = _store(repo, _functions("a", "b"))
    pipeline = _pipeline(fake_client)
    pipeline.embed_package(repo, package_id)
    report = pipeline.embed_package(repo, package_id)
    assert (report.embedded, report.reused) == (0, 2)
    assert len(fake_client.calls) == 1


def test_long_inputs_are_truncated(repo, fake_client):
    package_id = _store(repo, {"long.js": "function long() { return '" + "x" * 500 + "'; }\n"})
    _pipeline(fake_client, max_input_chars=50).embed_package(repo, package_id)
    assert len(fake_client.calls[0][0]) == 50


def test_invalid_input_isolated_to_one_chunk(repo, fake_client):
    package_id = _store(repo, _functions("a", "b", "poison", "d"))
    fake_client.fail["poison"] = EmbeddingError("input rejected", "invalid_input")
    report = _pipeline(fake_client).embed_package(repo, package_id)
    assert (report.embedded, report.failed) == (3, 1)
    assert "invalid_input" in report.errors[0]
    missing = repo.missing_embeddings(package_id, fake_client.model)
    assert [c.symbol for c in missing] == ["poison"]
    assert missing[0].embed_error.startswith("invalid_input")


def test_auth_error_propagates(repo, fake_client):
    package_id = _store(repo, _functions("a"))
    fake_client.fail["function"] = EmbeddingError("bad key", "auth")
    with pytest.raises(EmbeddingError) as exc_info:
        _pipeline(fake_client).embed_package(repo, package_id)
    assert exc_info.value.kind == "auth"


class FlakyClient:
    """Fails the first *failures* calls with *kind*, then delegates."""

    def __init__(self, inner, failures: int, kind: str) -> None:
        self.inner = inner
        self.failures = failures
        self.kind = kind
        self.calls: list[int] = []

    @property
    def model(self) -> str:
        return self.inner.model

    def embed(self, texts):
        self.calls.append(len(texts))
        if self.failures > 0:
            self.failures -= 1
            raise EmbeddingError("try again", self.kind)
        return self.inner.embed(texts)


def test_transient_errors_retry_with_backoff(repo, fake_client):
    package_id = _store(repo, _functions("a", "b"))
    client = FlakyClient(fake_client, failures=2, kind="transient")
    sleeps: list[float] = []
    report = _pipeline(client, sleeps, max_retries=3).embed_package(repo, package_id)
    assert report.embedded == 2
    assert sleeps == [1.0, 2.0]
    assert client.calls == [2, 2, 2]


def test_transient_errors_exhaust_retries_then_split(repo, fake_client):
    package_id = _store(repo, _functions("a", "b"))
    client = FlakyClient(fake_client, failures=3, kind="transient")
    report = _pipeline(client, max_retries=2).embed_package(repo, package_id)
    assert report.embedded == 2
    assert client.calls == [2, 2, 2, 1, 1]


def test_rate_limit_halves_batch_size(repo, fake_client):
    package_id = _store(repo, _functions("a", "b", "c", "d"))
    client = FlakyClient(fake_client, failures=1, kind="rate_limited")
    report = _pipeline(client, batch_size=4).embed_package(repo, package_id)
    assert report.embedded == 4
    assert client.calls == [4, 2, 2]


def test_make_batches_respects_count_and_chars():
    items = [("h1", "aaaa"), ("h2", "bbbb"), ("h3", "cccccccccc"), ("h4", "d")]
    assert [[h for h, _ in b] for b in make_batches(items, batch_size=2, max_chars=100)] == [
        ["h1", "h2"],
        ["h3", "h4"],
    ]
    assert [[h for h, _ in b] for b in make_batches(items, batch_size=10, max_chars=9)] == [
        ["h1", "h2"],
        ["h3"],
        ["h4"],
    ]


def test_make_batches_empty():
    assert list(make_batches([], batch_size=10, max_chars=10)) == []
