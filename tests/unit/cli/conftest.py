"""Fixtures for CLI tests: a project directory and a service wired to fakes."""

from __future__ import annotations

import json

import pytest

from idx.config import IdxConfig
from idx.service import IndexService

PACKAGES = {
    "npm:lodash@4.17.21": {
        "index.js": "function cloneDeep(value) {\n  return value;\n}\n",
    },
    "npm:lodash@4.17.22": {
        "index.js": "function cloneDeep(value) {\n  return copy(value);\n}\n",
    },
    "pypi:rich@13.7.0": {"rich/console.py": "class Console:\n    pass\n"},
}


def _write_manifest(root, dependencies):
    (root / "package.json").write_text(json.dumps({"dependencies": dependencies}), encoding="utf-8")


@pytest.fixture
def write_manifest():
    """Rewrite package.json dependencies: write_manifest(root, {"lodash": "4.17.22"})."""
    return _write_manifest


@pytest.fixture
def registry(fake_registry):
    return fake_registry(PACKAGES)


@pytest.fixture
def project(tmp_path, monkeypatch, fake_client, registry):
    """A project with two pinned dependencies, as the current directory.

    Every IndexService the CLI builds uses the fake embedding and
    registry clients.
    """
    root = tmp_path / "project"
    root.mkdir()
    _write_manifest(root, {"lodash": "4.17.21"})
    (root / "requirements.txt").write_text("rich==13.7.0\n", encoding="utf-8")
    monkeypatch.chdir(root)

    class _FakeService(IndexService):
        def __init__(self, root, config=None, **_clients):
            super().__init__(
                root,
                IdxConfig(),
                embedding_client=fake_client,
                registry_client=lambda _registry: registry,
            )

    monkeypatch.setattr("idx.cli.common.IndexService", _FakeService)
    return root
