"""Manifest resolution: project files → exact package coordinates."""

from __future__ import annotations

import logging
from pathlib import Path

from idx.config import DiscoveryCfg
from idx.db.models import PackageCoordinate
from idx.errors import ManifestError
from idx.manifests.base import ManifestResolver, Resolution, ResolvedDependency
from idx.manifests.cargo import CargoResolver
from idx.manifests.discover import MANIFEST_FILES, SKIP_DIRS, discover_manifest_dirs
from idx.manifests.go import GoResolver
from idx.manifests.maven import MavenResolver
from idx.manifests.npm import NpmResolver
from idx.manifests.python import PythonResolver

logger = logging.getLogger(__name__)

RESOLVERS: tuple[ManifestResolver, ...] = (
    NpmResolver(),
    CargoResolver(),
    PythonResolver(),
    MavenResolver(),
    GoResolver(),
)


def resolve_directory(directory: Path) -> tuple[list[ResolvedDependency], list[ManifestError], list[Path]]:
    """Run every applicable resolver over one directory."""
    deps: list[ResolvedDependency] = []
    errors: list[ManifestError] = []
    manifests: list[Path] = []
    for resolver in RESOLVERS:
        if not resolver.applies(directory):
            continue
        manifests.extend(resolver.present(directory))
        try:
            deps.extend(resolver.resolve(directory, errors))
        except ManifestError as exc:
            logger.warning("%s", exc)
            errors.append(exc)
    return deps, errors, manifests


def merge_dependencies(deps: list[ResolvedDependency]) -> tuple[list[PackageCoordinate], set[PackageCoordinate]]:
    """Deduplicate resolved dependencies.

    A coordinate seen pinned anywhere is pinned. For a ``(registry, name)``
    that has at least one pinned version, unpinned guesses for other
    versions of it are dropped.
    """
    pinned: set[PackageCoordinate] = {d.coordinate for d in deps if d.pinned}
    pinned_keys = {c.key for c in pinned}
    unpinned: set[PackageCoordinate] = {
        d.coordinate
        for d in deps
        if not d.pinned and d.coordinate not in pinned and d.coordinate.key not in pinned_keys
    }
    return sorted(pinned | unpinned), unpinned


def resolve_project(root: Path, cfg: DiscoveryCfg | None = None) -> Resolution:
    """Resolve every manifest under *root* into a deduplicated coordinate set.

    Errors from one manifest or ecosystem are collected in the result and
    never stop the others from resolving.
    """
    all_deps: list[ResolvedDependency] = []
    resolution = Resolution()
    for directory in discover_manifest_dirs(root, cfg):
        deps, errors, manifests = resolve_directory(directory)
        all_deps.extend(deps)
        resolution.errors.extend(errors)
        resolution.manifests.extend(manifests)
    resolution.coordinates, resolution.unpinned = merge_dependencies(all_deps)
    logger.info(
        "resolved %d dependencies from %d manifests (%d unpinned, %d errors)",
        len(resolution.coordinates),
        len(resolution.manifests),
        len(resolution.unpinned),
        len(resolution.errors),
    )
    return resolution


__all__ = [
    "MANIFEST_FILES",
    "RESOLVERS",
    "SKIP_DIRS",
    "ManifestResolver",
    "Resolution",
    "ResolvedDependency",
    "discover_manifest_dirs",
    "merge_dependencies",
    "resolve_directory",
    "resolve_project",
]
