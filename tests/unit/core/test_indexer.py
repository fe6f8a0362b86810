"""Tests for the indexing run: fetch, chunk, embed, finalize."""

from __future__ import annotations

import pytest

from idx.config import IdxConfig
from idx.db.models import FAILED, FETCHED, INDEXED, SKIPPED, PackageCoordinate
from idx.errors import EmbeddingError, FetchError
from idx.indexer import Indexer

LODASH = PackageCoordinate("npm", "lodash", "4.17.21")
RICH = PackageCoordinate("pypi", "rich", "13.7.0")

PACKAGES = {
    str(LODASH): {
        "index.js": "function cloneDeep(value) {\n  return value;\n}\n",
        "README.md": "# lodash\n\nUtilities.\n",
        "package.json": "{\"name\": \"lodash\"}",
    },
    str(RICH): {"rich/console.py": "class Console:\n    def print(self, text):\n        return text\n"},
}


@pytest.fixture
def registry(fake_registry):
    return fake_registry(PACKAGES)


@pytest.fixture
def indexer_for(tmp_db, tmp_path, blobs, fake_client, registry):
    def make(client=None, config=None, on_outcome=None):
        return Indexer(
            tmp_path / "index.db",
            blobs,
            config or IdxConfig(),
            embedding_client=client or fake_client,
            registry_client=lambda _registry: registry,
            on_outcome=on_outcome,
        )

    return make


def test_indexes_every_package(indexer_for, repo, registry):
    report = indexer_for().run([LODASH, RICH], jobs=2)
    assert report.ok
    assert sorted(str(o.coordinate) for o in report.indexed) == [str(LODASH), str(RICH)]
    assert sorted(registry.fetched) == [str(LODASH), str(RICH)]
    assert repo.get_package(LODASH).status == INDEXED
    assert repo.get_package(RICH).status == INDEXED
    assert repo.active_model() == "openai/text-embedding-3-small"
    lodash = next(o for o in report.outcomes if o.coordinate == LODASH)
    assert lodash.fetched
    assert (lodash.files, lodash.chunks) == (3, 2)


def test_second_run_is_a_noop(indexer_for, registry, fake_client):
    indexer_for().run([LODASH])
    calls = len(fake_client.calls)
    report = indexer_for().run([LODASH])
    assert [(o.status, o.reason) for o in report.outcomes] == [(SKIPPED, "already indexed")]
    assert registry.fetched == [str(LODASH)]
    assert len(fake_client.calls) == calls


def test_fetch_failure_is_isolated(indexer_for, repo, registry):
    registry.errors[str(RICH)] = FetchError("gone", "not_found", RICH)
    report = indexer_for().run([LODASH, RICH])
    assert not report.ok
    assert [str(o.coordinate) for o in report.failed] == [str(RICH)]
    assert report.failed[0].reason.startswith("fetch (not_found)")
    assert repo.get_package(RICH).status == FAILED
    assert repo.get_package(LODASH).status == INDEXED


def test_auth_error_aborts_run(indexer_for, repo, fake_client):
    fake_client.fail["def "] = EmbeddingError("invalid api key", "auth")
    fake_client.fail["function"] = EmbeddingError("invalid api key", "auth")
    report = indexer_for().run([LODASH, RICH], jobs=1)
    assert report.aborted is not None
    assert "invalid api key" in report.aborted
    assert repo.get_package(LODASH).status != INDEXED
    assert repo.get_package(RICH).status != INDEXED


def test_chunk_failure_marks_package_failed(indexer_for, repo, fake_client, registry):
    fake_client.fail["cloneDeep"] = EmbeddingError("bad input", "invalid_input")
    report = indexer_for().run([LODASH])
    assert [o.status for o in report.outcomes] == [FAILED]
    assert "1 chunk(s) failed to embed" in report.outcomes[0].reason
    assert repo.get_package(LODASH).status == FAILED
    # the README chunk that did embed is kept
    assert repo.count_embeddings("openai/text-embedding-3-small") == 1
    calls_before = len(fake_client.calls)

    # Rerun re-embeds only the missing chunk without downloading again.
    fake_client.fail.clear()
    report = indexer_for().run([LODASH])
    assert [o.status for o in report.outcomes] == [INDEXED]
    assert not report.outcomes[0].fetched
    assert registry.fetched == [str(LODASH)]
    assert report.outcomes[0].embedded == 1
    assert fake_client.calls[calls_before:] == [
        ["function cloneDeep(value) {\n  return value;\n}"]
    ]
    assert repo.count_embeddings("openai/text-embedding-3-small") == 2


def test_skipped_package_left_alone(indexer_for, repo, registry):
    package = repo.upsert_package(LODASH)
    repo.set_status(package.id, SKIPPED)
    report = indexer_for().run([LODASH])
    assert [(o.status, o.reason) for o in report.outcomes] == [(SKIPPED, "marked skipped")]
    assert registry.fetched == []


def test_force_refetches(indexer_for, registry):
    indexer_for().run([LODASH])
    report = indexer_for().run([LODASH], force=True)
    assert [o.status for o in report.outcomes] == [INDEXED]
    assert report.outcomes[0].fetched
    assert report.outcomes[0].reused == 2
    assert registry.fetched == [str(LODASH), str(LODASH)]


def test_model_change_reembeds_without_refetch(indexer_for, repo, registry, fake_client):
    indexer_for().run([LODASH])
    config = IdxConfig()
    config.embedding.model = "cohere/embed-english-v3.0"
    other = type(fake_client)(model="cohere/embed-english-v3.0", dims=4)

    report = indexer_for(client=other, config=config).run([LODASH])
    assert [o.status for o in report.outcomes] == [INDEXED]
    assert not report.outcomes[0].fetched
    assert registry.fetched == [str(LODASH)]
    assert repo.active_model() == "cohere/embed-english-v3.0"
    assert repo.count_embeddings("openai/text-embedding-3-small") == 0
    assert repo.count_embeddings("cohere/embed-english-v3.0") == 2


def test_outcome_callback_and_unpinned_flag(indexer_for, repo):
    seen = []
    indexer_for(on_outcome=seen.append).run([LODASH, LODASH], unpinned={LODASH})
    assert [o.coordinate for o in seen] == [LODASH]
    assert repo.get_package(LODASH).unpinned



def test_auth_error_records_every_stopped_package(indexer_for, repo, fake_client, registry):
    fake_client.fail["function"] = EmbeddingError("invalid api key", "auth")
    report = indexer_for().run([LODASH, RICH], jobs=1)

    assert report.aborted == "invalid api key"
    assert [(str(o.coordinate), o.status) for o in report.outcomes] == [
        (str(LODASH), FAILED),
        (str(RICH), FAILED),
    ]
    for outcome in report.outcomes:
        assert outcome.reason == "run aborted: invalid api key"
        stored = repo.get_package(outcome.coordinate)
        assert stored.status == FAILED
        assert stored.failure_reason == "run aborted: invalid api key"
    # the package queued behind the failure never started
    assert registry.fetched == [str(LODASH)]
    assert not any("Console" in text for call in fake_client.calls for text in call)


def test_unexpected_error_fails_only_that_package(indexer_for, repo, registry):
    registry.errors[str(RICH)] = RuntimeError("archive reader exploded")
    report = indexer_for().run([LODASH, RICH], jobs=2)
    assert report.aborted is None
    assert [str(o.coordinate) for o in report.failed] == [str(RICH)]
    assert report.failed[0].reason == "RuntimeError: archive reader exploded"
    assert repo.get_package(RICH).failure_reason == "RuntimeError: archive reader exploded"
    assert repo.get_package(LODASH).status == INDEXED
