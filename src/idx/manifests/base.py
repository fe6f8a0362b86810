"""Resolver interface shared by every ecosystem."""

from __future__ import annotations

import json
import re
import tomllib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from idx.db.models import PackageCoordinate
from idx.errors import ManifestError

# Exact semver, optionally written as "=1.2.3" or "v1.2.3".
_EXACT_SEMVER_RE = re.compile(
    r"^=?\s*v?(\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?)$"
)
# First version-looking token of a range; "x" / "*" components count as 0.
_LOWER_BOUND_RE = re.compile(r"(\d+)(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(-[0-9A-Za-z.-]+)?")


@dataclass(frozen=True)
class ResolvedDependency:
    """A coordinate plus where it came from and whether a lock pinned it."""

    coordinate: PackageCoordinate
    pinned: bool
    manifest: str


@dataclass
class Resolution:
    """Outcome of resolving every manifest under a project root.

    Attributes:
        coordinates: Deduplicated coordinates, sorted.
        unpinned: Coordinates whose version was picked from a range.
        errors: Per-manifest / per-dependency errors; none of them stopped
            the other manifests from resolving.
        manifests: Manifest files that were read.
    """

    coordinates: list[PackageCoordinate] = field(default_factory=list)
    unpinned: set[PackageCoordinate] = field(default_factory=set)
    errors: list[ManifestError] = field(default_factory=list)
    manifests: list[Path] = field(default_factory=list)


class ManifestResolver(ABC):
    """One ecosystem's manifest + lockfile reader.

    Subclasses declare their registry and the file names that mark a
    directory as belonging to the ecosystem, and implement ``resolve()``.
    Whole-manifest problems raise ManifestError; problems with a single
    dependency are appended to *errors* and that dependency is skipped.
    """

    registry: ClassVar[str]
    manifest_names: ClassVar[tuple[str, ...]]

    def applies(self, directory: Path) -> bool:
        return any((directory / name).is_file() for name in self.manifest_names)

    def present(self, directory: Path) -> list[Path]:
        return [directory / n for n in self.manifest_names if (directory / n).is_file()]

    @abstractmethod
    def resolve(self, directory: Path, errors: list[ManifestError]) -> list[ResolvedDependency]:
        """Return the direct dependencies declared in *directory*.

        Raises:
            ManifestError: If a required file is missing or unparseable.
        """

    def _dep(self, name: str, version: str, pinned: bool, manifest: Path) -> ResolvedDependency:
        return ResolvedDependency(
            coordinate=PackageCoordinate(self.registry, name, version),
            pinned=pinned,
            manifest=str(manifest),
        )


# ---------------------------------------------------------------------------
# Shared parsing helpers
# ---------------------------------------------------------------------------


def load_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(f"cannot read: {exc}", "unparseable", str(path)) from exc
    except json.JSONDecodeError as exc:
        raise ManifestError(f"invalid JSON: {exc}", "unparseable", str(path)) from exc
    if not isinstance(data, dict):
        raise ManifestError("expected a JSON object", "unparseable", str(path))
    return data


def load_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(f"cannot read: {exc}", "unparseable", str(path)) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ManifestError(f"invalid TOML: {exc}", "unparseable", str(path)) from exc


def semver_requirement(spec: str, bare_is_exact: bool = True) -> tuple[str | None, bool]:
    """Pick a version from a semver requirement string.

    Returns:
        ``(version, exact)``. *version* is the exact version, or the range's
        lower bound padded to three components; None when the requirement
        names no version (``*``, ``latest``).

    Examples:
        "4.17.21"   -> ("4.17.21", True)
        "^1.2"      -> ("1.2.0", False)
        ">=2 <3"    -> ("2.0.0", False)
        "1.0.0"     -> ("1.0.0", False)   with bare_is_exact=False (Cargo)
    """
    s = spec.strip()
    exact = _EXACT_SEMVER_RE.match(s)
    if exact and (bare_is_exact or s.startswith("=")):
        return exact.group(1), True
    match = _LOWER_BOUND_RE.search(s)
    if match is None or s.startswith("<"):
        return None, False
    parts = [p if p and p not in ("x", "X", "*") else "0" for p in match.groups()[:3]]
    return ".".join(parts) + (match.group(4) or ""), False
