"""crates: Cargo.toml + Cargo.lock, including workspaces."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from idx.errors import ManifestError
from idx.manifests.base import ManifestResolver, ResolvedDependency, load_toml, semver_requirement

logger = logging.getLogger(__name__)

_SECTIONS = ("dependencies", "dev-dependencies", "build-dependencies")
# How far up a member crate looks for its workspace root.
_MAX_WORKSPACE_DEPTH = 4


class CargoResolver(ManifestResolver):
    """Reads the three dependency tables of a crate or a whole workspace.

    ``path`` and ``git`` dependencies are skipped; ``workspace = true``
    entries inherit from ``[workspace.dependencies]``; renamed dependencies
    (``package = "..."``) resolve to the real crate name. Versions come from
    the workspace's Cargo.lock when it has the crate.
    """

    registry = "crates"
    manifest_names = ("Cargo.toml", "Cargo.lock")

    def resolve(self, directory: Path, errors: list[ManifestError]) -> list[ResolvedDependency]:
        manifest = directory / "Cargo.toml"
        if not manifest.is_file():
            raise ManifestError(
                "Cargo.lock found without Cargo.toml", "missing_file", str(directory / "Cargo.lock")
            )
        data = load_toml(manifest)

        workspace_dir, workspace = self._workspace(directory, data)
        lockfile = workspace_dir / "Cargo.lock"
        locked = _lock_versions(load_toml(lockfile)) if lockfile.is_file() else {}
        shared = workspace.get("dependencies", {}) if workspace else {}

        crates: list[tuple[Path, dict[str, Any]]] = [(manifest, data)]
        if workspace_dir == directory and workspace:
            crates.extend(self._members(directory, workspace))

        out: list[ResolvedDependency] = []
        for path, crate in crates:
            for section in _SECTIONS:
                table = crate.get(section) or {}
                if not isinstance(table, dict):
                    raise ManifestError(f"[{section}] must be a table", "unparseable", str(path))
                for name, spec in sorted(table.items()):
                    dep = self._dependency(path, name, spec, shared, locked, lockfile, errors)
                    if dep is not None:
                        out.append(dep)
        return out

    def _dependency(
        self,
        manifest: Path,
        name: str,
        spec: Any,
        shared: dict[str, Any],
        locked: dict[str, list[str]],
        lockfile: Path,
        errors: list[ManifestError],
    ) -> ResolvedDependency | None:
        if isinstance(spec, dict) and spec.get("workspace") is True:
            if name not in shared:
                errors.append(
                    ManifestError(
                        f"{name}: 'workspace = true' but no [workspace.dependencies] entry",
                        "unresolved_placeholder",
                        str(manifest),
                    )
                )
                return None
            spec = shared[name]

        crate = name
        if isinstance(spec, str):
            requirement = spec
        elif isinstance(spec, dict):
            if "path" in spec or "git" in spec:
                return None
            crate = str(spec.get("package", name))
            requirement = str(spec.get("version", "*"))
        else:
            errors.append(
                ManifestError(f"{name}: unsupported dependency value", "unparseable", str(manifest))
            )
            return None

        version, exact = semver_requirement(requirement, bare_is_exact=False)
        pinned_version = _pick_locked(locked.get(crate, []), version)
        if pinned_version is not None:
            return self._dep(crate, pinned_version, True, lockfile)
        if version is None:
            errors.append(
                ManifestError(
                    f"{name}: no version can be picked from '{requirement}'",
                    "unresolved_range",
                    str(manifest),
                )
            )
            return None
        return self._dep(crate, version, exact, manifest)

    def _workspace(
        self, directory: Path, data: dict[str, Any]
    ) -> tuple[Path, dict[str, Any] | None]:
        """Return (workspace root, [workspace] table) for the crate in *directory*."""
        if isinstance(data.get("workspace"), dict):
            return directory, data["workspace"]
        parent = directory
        for _ in range(_MAX_WORKSPACE_DEPTH):
            parent = parent.parent
            candidate = parent / "Cargo.toml"
            if candidate.is_file():
                try:
                    root = load_toml(candidate)
                except ManifestError:
                    break
                if isinstance(root.get("workspace"), dict):
                    return parent, root["workspace"]
            if parent == parent.parent:
                break
        return directory, None

    def _members(
        self, directory: Path, workspace: dict[str, Any]
    ) -> list[tuple[Path, dict[str, Any]]]:
        excluded = {(directory / e).resolve() for e in workspace.get("exclude", [])}
        members: list[tuple[Path, dict[str, Any]]] = []
        for pattern in workspace.get("members", []):
            for member in sorted(directory.glob(str(pattern))):
                manifest = member / "Cargo.toml"
                if member.resolve() in excluded or not manifest.is_file():
                    continue
                if member.resolve() == directory.resolve():
                    continue
                members.append((manifest, load_toml(manifest)))
        return members


def _lock_versions(lock: dict[str, Any]) -> dict[str, list[str]]:
    """Map crate name → registry versions recorded in a Cargo.lock."""
    versions: dict[str, list[str]] = {}
    for entry in lock.get("package", []):
        source = str(entry.get("source", ""))
        if not source.startswith(("registry+", "sparse+")):
            continue  # path or git crate
        versions.setdefault(entry["name"], []).append(str(entry["version"]))
    return versions


def _version_key(version: str) -> tuple[int, ...]:
    core = version.split("-", 1)[0].split("+", 1)[0]
    return tuple(int(p) if p.isdigit() else 0 for p in core.split("."))


def _pick_locked(candidates: list[str], requirement: str | None) -> str | None:
    """Choose the locked version a requirement resolved to.

    With several locked versions of one crate, the highest that shares the
    requirement's compatibility prefix (major, or 0.minor) wins.
    """
    if not candidates:
        return None
    if len(candidates) == 1 or requirement is None:
        return max(candidates, key=_version_key)
    req = _version_key(requirement)
    prefix_len = 2 if req and req[0] == 0 else 1
    matching = [c for c in candidates if _version_key(c)[:prefix_len] == req[:prefix_len]]
    return max(matching or candidates, key=_version_key)
