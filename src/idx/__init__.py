"""idx: a local, version-accurate semantic index of a project's dependencies."""

from __future__ import annotations

import importlib.metadata

try:
    __version__ = importlib.metadata.version("idx")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0+unknown"
