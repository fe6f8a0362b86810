"""Tests for manifest discovery and project-wide merging."""

from __future__ import annotations

import json

from idx.config import DiscoveryCfg
from idx.db.models import PackageCoordinate
from idx.manifests import (
    ResolvedDependency,
    discover_manifest_dirs,
    merge_dependencies,
    resolve_project,
)


def _package_json(directory, deps):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "package.json").write_text(json.dumps({"dependencies": deps}), encoding="utf-8")


def test_discover_skips_vendor_dirs(tmp_path):
    _package_json(tmp_path, {})
    _package_json(tmp_path / "web", {})
    _package_json(tmp_path / "node_modules" / "lodash", {})
    _package_json(tmp_path / ".index", {})
    (tmp_path / "svc").mkdir()
    (tmp_path / "svc" / "go.mod").write_text("module svc\n", encoding="utf-8")
    (tmp_path / "docs").mkdir()
    assert discover_manifest_dirs(tmp_path) == [
        tmp_path.resolve(),
        (tmp_path / "svc").resolve(),
        (tmp_path / "web").resolve(),
    ]


def test_discover_roots_and_exclude(tmp_path):
    _package_json(tmp_path / "apps" / "web", {})
    _package_json(tmp_path / "apps" / "legacy", {})
    _package_json(tmp_path / "tools", {})
    cfg = DiscoveryCfg(roots=["apps", "missing"], exclude=["apps/legacy"])
    assert discover_manifest_dirs(tmp_path, cfg) == [(tmp_path / "apps" / "web").resolve()]


def _dep(spec, pinned):
    return ResolvedDependency(PackageCoordinate.parse(spec), pinned, "manifest")


def test_merge_prefers_pinned_versions():
    coords, unpinned = merge_dependencies([
        _dep("npm:lodash@4.17.0", False),
        _dep("npm:lodash@4.17.21", True),
        _dep("npm:react@18.0.0", False),
        _dep("npm:react@18.0.0", False),
    ])
    assert [str(c) for c in coords] == ["npm:lodash@4.17.21", "npm:react@18.0.0"]
    assert unpinned == {PackageCoordinate("npm", "react", "18.0.0")}


def test_merge_pinned_anywhere_is_pinned():
    coords, unpinned = merge_dependencies([
        _dep("pypi:rich@13.7.0", False),
        _dep("pypi:rich@13.7.0", True),
    ])
    assert [str(c) for c in coords] == ["pypi:rich@13.7.0"]
    assert unpinned == set()


def test_resolve_project_isolates_broken_manifests(tmp_path):
    _package_json(tmp_path / "web", {"lodash": "4.17.21"})
    (tmp_path / "api").mkdir()
    (tmp_path / "api" / "requirements.txt").write_text("rich==13.7.0\n", encoding="utf-8")
    (tmp_path / "broken").mkdir()
    (tmp_path / "broken" / "package.json").write_text("{", encoding="utf-8")

    resolution = resolve_project(tmp_path)
    assert [str(c) for c in resolution.coordinates] == [
        "npm:lodash@4.17.21",
        "pypi:rich@13.7.0",
    ]
    assert resolution.unpinned == set()
    assert [e.kind for e in resolution.errors] == ["unparseable"]
    assert len(resolution.manifests) == 3
