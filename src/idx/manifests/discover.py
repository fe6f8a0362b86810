"""Find directories holding manifests under a project root."""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path

from idx.config import DiscoveryCfg

logger = logging.getLogger(__name__)

SKIP_DIRS: frozenset[str] = frozenset(
    {
        "node_modules",
        "vendor",
        "target",
        "dist",
        "build",
        ".venv",
        "venv",
        ".git",
        "__pycache__",
        ".index",
        ".tox",
        ".mypy_cache",
        ".pytest_cache",
    }
)

MANIFEST_FILES: tuple[str, ...] = (
    "package.json",
    "package-lock.json",
    "Cargo.toml",
    "Cargo.lock",
    "pyproject.toml",
    "requirements.txt",
    "pom.xml",
    "go.mod",
)


def _excluded(relative: str, name: str, patterns: list[str]) -> bool:
    return any(
        fnmatch.fnmatch(relative, pattern) or fnmatch.fnmatch(name, pattern)
        for pattern in patterns
    )


def discover_manifest_dirs(root: Path, cfg: DiscoveryCfg | None = None) -> list[Path]:
    """Return every directory under *root* that holds at least one manifest.

    Args:
        root: Project root.
        cfg: ``discovery.roots`` restricts the walk to those subdirectories;
            ``discovery.exclude`` patterns match a directory's path relative
            to *root* (or its bare name).

    Returns:
        Sorted, de-duplicated directory list.
    """
    cfg = cfg or DiscoveryCfg()
    root = root.resolve()
    starts = [root / r for r in cfg.roots] if cfg.roots else [root]

    found: set[Path] = set()
    for start in starts:
        if not start.is_dir():
            logger.warning("discovery root %s does not exist; skipping", start)
            continue
        for dirpath, dirnames, filenames in os.walk(start):
            current = Path(dirpath)
            kept = []
            for name in sorted(dirnames):
                if name in SKIP_DIRS:
                    continue
                relative = (current / name).relative_to(root).as_posix()
                if _excluded(relative, name, cfg.exclude):
                    continue
                kept.append(name)
            dirnames[:] = kept
            if any(name in filenames for name in MANIFEST_FILES):
                found.add(current)
    return sorted(found)
