"""Tests for IndexService: the operations behind every CLI command."""

from __future__ import annotations

import json

import pytest

from idx.config import IdxConfig
from idx.db.models import FAILED, INDEXED, PENDING, SKIPPED, PackageCoordinate
from idx.errors import FetchError, StoreError
from idx.service import IndexService

LODASH = PackageCoordinate("npm", "lodash", "4.17.21")
LODASH_NEXT = PackageCoordinate("npm", "lodash", "4.17.22")
RICH = PackageCoordinate("pypi", "rich", "13.7.0")

PACKAGES = {
    str(LODASH): {"index.js": "function cloneDeep(value) {\n  return value;\n}\n"},
    str(LODASH_NEXT): {"index.js": "function cloneDeep(value) {\n  return copy(value);\n}\n"},
    str(RICH): {"rich/console.py": "class Console:\n    pass\n"},
}


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    _write_manifest(root, {"lodash": "4.17.21"})
    (root / "requirements.txt").write_text("rich==13.7.0\n", encoding="utf-8")
    return root


@pytest.fixture
def registry(fake_registry):
    return fake_registry(PACKAGES)


@pytest.fixture
def service(project, fake_client, registry):
    return IndexService(
        project,
        IdxConfig(),
        embedding_client=fake_client,
        registry_client=lambda _registry: registry,
    )


def _write_manifest(root, dependencies):
    (root / "package.json").write_text(json.dumps({"dependencies": dependencies}), encoding="utf-8")


def _statuses(service):
    return {str(p.coordinate): p.status for p in service.list_packages()}


# ----------------------------------------------------------------------
# init / update / index
# ----------------------------------------------------------------------


def test_init_indexes_every_dependency(service, project):
    result = service.init(jobs=2)
    assert result.created
    assert (project / ".index" / "index.db").is_file()
    assert [str(c) for c in result.resolution.coordinates] == [str(LODASH), str(RICH)]
    assert len(result.run.indexed) == 2
    assert _statuses(service) == {str(LODASH): INDEXED, str(RICH): INDEXED}


def test_init_is_idempotent(service, registry):
    service.init()
    result = service.init()
    assert not result.created
    assert result.run.indexed == []
    assert len(result.run.skipped) == 2
    assert len(registry.fetched) == 2


def test_init_dry_run_touches_nothing(service, project):
    result = service.init(dry_run=True)
    assert result.run is None
    assert len(result.resolution.coordinates) == 2
    assert not (project / ".index").exists()


def test_update_replaces_bumped_version(service, project):
    service.init()
    _write_manifest(project, {"lodash": "4.17.22"})
    result = service.update()
    assert result.plan.changed == [(LODASH, LODASH_NEXT)]
    assert [r.coordinate for r in result.removed] == [LODASH]
    assert [o.coordinate for o in result.run.indexed] == [LODASH_NEXT]
    assert _statuses(service) == {str(LODASH_NEXT): INDEXED, str(RICH): INDEXED}


def test_update_in_sync_does_nothing(service, registry):
    service.init()
    result = service.update()
    assert result.plan.in_sync
    assert result.run is None
    assert len(registry.fetched) == 2


def test_update_does_not_retry_failed(service, registry):
    registry.errors[str(RICH)] = FetchError("gone", "not_found", RICH)
    service.init()
    result = service.update()
    assert result.plan.failed == [RICH]
    assert result.run is None


def test_model_change_is_reported_then_applied_by_update(service, project, registry, fake_client):
    service.init()
    other = type(fake_client)(model="cohere/embed-english-v3.0", dims=4)
    switched = IndexService(
        project,
        IdxConfig(),
        embedding_client=other,
        registry_client=lambda _registry: registry,
    )

    report = switched.status()
    assert report.model_change == ("openai/text-embedding-3-small", "cohere/embed-english-v3.0")
    assert report.plan.incomplete == [LODASH, RICH]
    assert not report.plan.in_sync
    assert switched.get(LODASH).status == INDEXED

    result = switched.update()
    assert result.model_change == report.model_change
    assert sorted(str(o.coordinate) for o in result.run.indexed) == [str(LODASH), str(RICH)]
    # re-embedded from stored files, nothing downloaded again
    assert sorted(registry.fetched) == [str(LODASH), str(RICH)]
    assert len(other.calls) > 0

    after = switched.status()
    assert after.model_change is None
    assert after.plan.in_sync
    assert switched.search("deep copy", top_k=1)


def test_index_single_coordinate(service):
    service.prepare()
    report = service.index(LODASH_NEXT)
    assert [o.coordinate for o in report.indexed] == [LODASH_NEXT]
    assert service.get(LODASH_NEXT).status == INDEXED


# ----------------------------------------------------------------------
# status / list / stats / search
# ----------------------------------------------------------------------


def test_status_reports_pending_changes(service, project):
    service.init()
    _write_manifest(project, {"left-pad": "^1.3.0", "react": ">=16 <19"})
    report = service.status()
    assert report.plan.removed == [LODASH]
    assert report.plan.added == [PackageCoordinate("npm", "left-pad", "1.3.0")]
    assert report.unpinned == [PackageCoordinate("npm", "left-pad", "1.3.0")]
    assert [e.kind for e in report.manifest_errors] == ["unresolved_range"]
    # status is read-only
    assert _statuses(service)[str(LODASH)] == INDEXED


def test_status_lists_failures(service, registry):
    registry.errors[str(RICH)] = FetchError("gone", "not_found", RICH)
    service.init()
    report = service.status()
    assert [p.coordinate for p in report.failures] == [RICH]
    assert "not_found" in report.failures[0].failure_reason


def test_list_packages_filters(service):
    service.init()
    assert [p.coordinate for p in service.list_packages(registry="pypi")] == [RICH]
    assert service.list_packages(status=FAILED) == []
    with pytest.raises(ValueError, match="Unknown status"):
        service.list_packages(status="done")


def test_stats(service):
    service.init()
    stats = service.stats()
    assert stats.index.packages_by_status == {"indexed": 2}
    assert stats.index.model == "openai/text-embedding-3-small"
    assert stats.index.embeddings == stats.index.chunks == 2
    assert stats.db_bytes > 0
    assert stats.blob_disk_bytes == stats.index.blob_bytes > 0


def test_search(service, fake_client):
    service.init()
    query = "deep copy"
    fake_client.vectors[query] = fake_client.vector_for(
        "function cloneDeep(value) {\n  return value;\n}"
    )
    results = service.search(query, top_k=1)
    assert [(r.coordinate, r.symbol) for r in results] == [(LODASH, "cloneDeep")]


# ----------------------------------------------------------------------
# remove / prune / clean / retry / skip
# ----------------------------------------------------------------------


def test_remove(service):
    service.init()
    report = service.remove(RICH)
    assert report.coordinate == RICH
    assert service.get(RICH) is None
    with pytest.raises(StoreError) as exc_info:
        service.remove(RICH)
    assert exc_info.value.kind == "not_found"


def test_prune(service, project):
    service.init()
    (project / "requirements.txt").unlink()
    assert service.prune(dry_run=True).candidates == [RICH]
    assert service.get(RICH) is not None
    result = service.prune()
    assert [r.coordinate for r in result.removed] == [RICH]
    assert service.get(RICH) is None
    assert service.prune().candidates == []


def test_clean(service, project):
    service.init()
    assert service.clean()
    assert not (project / ".index").exists()
    assert not service.clean()


def test_retry_all_failed(service, registry):
    registry.errors[str(RICH)] = FetchError("gone", "network", RICH)
    service.init()
    assert service.retry() == [RICH]
    assert service.get(RICH).status == PENDING
    assert service.get(RICH).failure_reason is None

    del registry.errors[str(RICH)]
    result = service.update()
    assert [o.coordinate for o in result.run.indexed] == [RICH]


def test_skip_and_retry_one(service):
    service.init()
    assert service.skip(LODASH).status == SKIPPED
    assert service.status().plan.unchanged == [LODASH, RICH]
    assert service.retry() == []
    assert service.retry(LODASH) == [LODASH]
    assert service.get(LODASH).status == PENDING


def test_skip_package_removed_concurrently(service, monkeypatch):
    service.init()
    monkeypatch.setattr(
        "idx.db.repository.Repository.get_package_by_id", lambda _self, _package_id: None
    )
    with pytest.raises(StoreError) as exc_info:
        service.skip(LODASH)
    assert exc_info.value.kind == "not_found"


def test_retry_unknown_package(service):
    service.prepare()
    with pytest.raises(StoreError) as exc_info:
        service.retry(LODASH_NEXT)
    assert exc_info.value.kind == "not_found"


# ----------------------------------------------------------------------
# open
# ----------------------------------------------------------------------


def test_open_without_index(project):
    with pytest.raises(StoreError) as exc_info:
        IndexService.open(project, IdxConfig())
    assert exc_info.value.kind == "not_found"


def test_open_from_nested_directory(service, project, fake_client):
    service.init()
    nested = project / "src" / "deep"
    nested.mkdir(parents=True)
    opened = IndexService.open(nested, IdxConfig(), embedding_client=fake_client)
    assert opened.root == project.resolve()
    assert opened.last_recovery.clean
    assert len(opened.list_packages()) == 2
