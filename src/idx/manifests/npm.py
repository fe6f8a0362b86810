"""npm: package.json + package-lock.json."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from idx.errors import ManifestError
from idx.manifests.base import (
    ManifestResolver,
    ResolvedDependency,
    load_json,
    semver_requirement,
)

logger = logging.getLogger(__name__)

_SECTIONS = ("dependencies", "devDependencies")
_NON_REGISTRY_PREFIXES = (
    "git:",
    "git+",
    "git://",
    "file:",
    "link:",
    "workspace:",
    "portal:",
    "http:",
    "https:",
    "github:",
    "gitlab:",
    "bitbucket:",
)


class NpmResolver(ManifestResolver):
    """Reads ``dependencies`` and ``devDependencies``.

    Versions come from ``package-lock.json`` when present (lockfile v1, v2
    and v3). Without a lock entry, a simple range (``^1.2.3``, ``~1.2.3``)
    is reduced to its base version and flagged unpinned; compound ranges are
    reported as ``unresolved_range``.
    """

    registry = "npm"
    manifest_names = ("package.json", "package-lock.json")

    def resolve(self, directory: Path, errors: list[ManifestError]) -> list[ResolvedDependency]:
        manifest = directory / "package.json"
        lockfile = directory / "package-lock.json"
        if not manifest.is_file():
            raise ManifestError(
                "package-lock.json found without package.json", "missing_file", str(lockfile)
            )

        data = load_json(manifest)
        locked = _lock_versions(load_json(lockfile)) if lockfile.is_file() else {}

        declared: dict[str, str] = {}
        for section in _SECTIONS:
            table = data.get(section) or {}
            if not isinstance(table, dict):
                raise ManifestError(f"'{section}' must be an object", "unparseable", str(manifest))
            for name, spec in table.items():
                declared.setdefault(str(name), str(spec))

        out: list[ResolvedDependency] = []
        for name, spec in sorted(declared.items()):
            # Aliases: "my-lodash": "npm:lodash@^4"
            real_name = name
            if spec.startswith("npm:"):
                real_name, _, spec = spec[4:].rpartition("@")
                if not real_name:
                    real_name, spec = spec, "*"
            if _is_non_registry(spec):
                logger.debug("%s: skipping non-registry dependency %s (%s)", manifest, name, spec)
                continue
            if name in locked:
                out.append(self._dep(real_name, locked[name], True, lockfile))
                continue
            version, exact = _clean_range(spec)
            if version is None:
                errors.append(
                    ManifestError(
                        f"{name}: no version can be picked from '{spec}'",
                        "unresolved_range",
                        str(manifest),
                    )
                )
                continue
            out.append(self._dep(real_name, version, exact, manifest))
        return out


def _is_non_registry(spec: str) -> bool:
    if spec.startswith(_NON_REGISTRY_PREFIXES):
        return True
    # GitHub shorthand "user/repo" or "user/repo#ref"
    return "/" in spec and not spec.startswith("@")


def _lock_versions(lock: dict[str, Any]) -> dict[str, str]:
    """Map top-level package name → locked version from a package-lock.json."""
    versions: dict[str, str] = {}
    packages = lock.get("packages")
    if isinstance(packages, dict):
        for key, entry in packages.items():
            if not key.startswith("node_modules/") or not isinstance(entry, dict):
                continue
            name = key[len("node_modules/") :]
            if "node_modules/" in name or entry.get("link"):
                continue  # nested copy or workspace link
            if version := entry.get("version"):
                versions[name] = str(version)
        return versions
    dependencies = lock.get("dependencies")
    if isinstance(dependencies, dict):
        for name, entry in dependencies.items():
            if isinstance(entry, dict) and (version := entry.get("version")):
                versions[name] = str(version)
    return versions


def _clean_range(spec: str) -> tuple[str | None, bool]:
    """Strip ``^ ~ = v`` from a simple range; compound ranges give None.

    Partial versions are padded to three components and are never exact.

    ``"^1.2.3"`` -> ``("1.2.3", False)``, ``"1.2.3"`` -> ``("1.2.3", True)``,
    ``"^4"`` -> ``("4.0.0", False)``,
    ``">=1 <2"`` / ``"1.x"`` / ``"*"`` -> ``(None, False)``.
    """
    s = spec.strip()
    exact = not s.startswith(("^", "~"))
    version = s.lstrip("^~=").lstrip("v")
    if (
        not version
        or any(token in version for token in (" ", "||", "<", ">", "*"))
        or "x" in version.lower().split(".")
        or not version[0].isdigit()
    ):
        return None, False
    padded, full = semver_requirement(version)
    if padded is None:
        return None, False
    return padded, exact and full
