"""Tests for the reconcile diff between manifests and the index."""

from __future__ import annotations

from idx.db.models import FAILED, FETCHED, INDEXED, PENDING, SKIPPED, Package, PackageCoordinate
from idx.manifests import Resolution
from idx.reconcile import diff


def _c(spec: str) -> PackageCoordinate:
    return PackageCoordinate.parse(spec)


def _stored(*items: tuple[str, str]) -> list[Package]:
    return [Package(id=i, coordinate=_c(spec), status=status) for i, (spec, status) in enumerate(items, 1)]


def test_empty_index_everything_added():
    plan = diff([_c("npm:a@1.0.0"), _c("npm:b@2.0.0")], [])
    assert plan.added == [_c("npm:a@1.0.0"), _c("npm:b@2.0.0")]
    assert plan.to_index == plan.added
    assert plan.to_remove == []
    assert not plan.in_sync


def test_in_sync():
    plan = diff([_c("npm:a@1.0.0")], _stored(("npm:a@1.0.0", INDEXED)))
    assert plan.unchanged == [_c("npm:a@1.0.0")]
    assert plan.in_sync
    assert plan.to_index == []


def test_version_bump_is_changed():
    plan = diff([_c("npm:lodash@4.17.21")], _stored(("npm:lodash@4.17.20", INDEXED)))
    assert plan.changed == [(_c("npm:lodash@4.17.20"), _c("npm:lodash@4.17.21"))]
    assert plan.added == []
    assert plan.removed == []
    assert plan.to_index == [_c("npm:lodash@4.17.21")]
    assert plan.to_remove == [_c("npm:lodash@4.17.20")]


def test_dropped_dependency_is_removed():
    plan = diff([], _stored(("pypi:rich@13.7.0", INDEXED)))
    assert plan.removed == [_c("pypi:rich@13.7.0")]
    assert plan.to_remove == []


def test_incomplete_and_failed():
    plan = diff(
        [_c("npm:a@1.0.0"), _c("npm:b@1.0.0"), _c("npm:c@1.0.0"), _c("npm:d@1.0.0")],
        _stored(
            ("npm:a@1.0.0", PENDING),
            ("npm:b@1.0.0", FETCHED),
            ("npm:c@1.0.0", FAILED),
            ("npm:d@1.0.0", SKIPPED),
        ),
    )
    assert plan.incomplete == [_c("npm:a@1.0.0"), _c("npm:b@1.0.0")]
    assert plan.failed == [_c("npm:c@1.0.0")]
    assert plan.unchanged == [_c("npm:d@1.0.0")]
    assert plan.to_index == [_c("npm:a@1.0.0"), _c("npm:b@1.0.0")]


def test_two_versions_kept_side_by_side():
    # One manifest moves to 2.0.0 while another still needs 1.0.0.
    plan = diff(
        [_c("npm:x@1.0.0"), _c("npm:x@2.0.0")],
        _stored(("npm:x@1.0.0", INDEXED)),
    )
    assert plan.added == [_c("npm:x@2.0.0")]
    assert plan.changed == []


def test_each_new_version_replaces_one_old():
    plan = diff(
        [_c("npm:x@3.0.0")],
        _stored(("npm:x@1.0.0", INDEXED), ("npm:x@2.0.0", INDEXED)),
    )
    assert plan.changed == [(_c("npm:x@1.0.0"), _c("npm:x@3.0.0"))]
    assert plan.removed == [_c("npm:x@2.0.0")]


def test_accepts_resolution():
    resolution = Resolution(coordinates=[_c("go:github.com/pkg/errors@0.9.1")])
    plan = diff(resolution, [])
    assert plan.added == [_c("go:github.com/pkg/errors@0.9.1")]
