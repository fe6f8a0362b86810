"""pypi: pyproject.toml (PEP 621 and Poetry) + requirements.txt."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from idx.errors import ManifestError
from idx.manifests.base import ManifestResolver, ResolvedDependency, load_toml

logger = logging.getLogger(__name__)

# name, optional [extras], remainder (specifiers; markers already stripped)
_PEP508_RE = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*(.*)$")
_SPEC_RE = re.compile(r"(===|==|~=|>=|<=|!=|>|<)\s*([^\s,;()]+)")
_POETRY_RANGE_RE = re.compile(r"^[\^~]?=?\s*(\d+(?:\.\d+)*)")
_PLAIN_VERSION_RE = re.compile(r"^\d+(?:\.\d+)*(?:(?:a|b|rc|\.post|\.dev)\d+)*$")


def normalize_name(name: str) -> str:
    """PEP 503 normalized project name."""
    return re.sub(r"[-_.]+", "-", name).lower()


class PythonResolver(ManifestResolver):
    """Reads PEP 621, Poetry and requirements.txt declarations.

    ``==`` pins are exact; ``>=``, ``~=``, ``^`` and ``~`` resolve to their
    lower bound and are flagged unpinned. When a project appears in both
    pyproject.toml and requirements.txt, pyproject.toml wins.
    """

    registry = "pypi"
    manifest_names = ("pyproject.toml", "requirements.txt")

    def resolve(self, directory: Path, errors: list[ManifestError]) -> list[ResolvedDependency]:
        found: dict[str, ResolvedDependency] = {}

        pyproject = directory / "pyproject.toml"
        if pyproject.is_file():
            data = load_toml(pyproject)
            project = data.get("project") or {}
            for requirement in project.get("dependencies") or []:
                self._add(found, self._from_pep508(str(requirement), pyproject, errors))
            poetry = ((data.get("tool") or {}).get("poetry") or {}).get("dependencies") or {}
            for name, spec in sorted(poetry.items()):
                if name.lower() == "python":
                    continue
                self._add(found, self._from_poetry(name, spec, pyproject, errors))

        requirements = directory / "requirements.txt"
        if requirements.is_file():
            try:
                lines = requirements.read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError) as exc:
                raise ManifestError(f"cannot read: {exc}", "unparseable", str(requirements)) from exc
            for raw in lines:
                line = raw.split(" #", 1)[0].strip()
                if not line or line.startswith(("#", "-")) or "://" in line:
                    continue
                self._add(found, self._from_pep508(line, requirements, errors))

        return [found[k] for k in sorted(found)]

    @staticmethod
    def _add(found: dict[str, ResolvedDependency], dep: ResolvedDependency | None) -> None:
        if dep is not None:
            found.setdefault(normalize_name(dep.coordinate.name), dep)

    def _from_pep508(
        self, requirement: str, manifest: Path, errors: list[ManifestError]
    ) -> ResolvedDependency | None:
        spec = requirement.split(";", 1)[0].strip()
        if " @ " in spec or spec.startswith(("git+", "http")):
            return None  # direct URL reference
        match = _PEP508_RE.match(spec)
        if match is None:
            errors.append(
                ManifestError(f"cannot parse requirement '{requirement}'", "unparseable", str(manifest))
            )
            return None
        name, rest = match.group(1), match.group(2)
        specifiers = _SPEC_RE.findall(rest)
        for op, version in specifiers:
            if op in ("==", "===") and "*" not in version:
                return self._dep(name, version, True, manifest)
        for op, version in specifiers:
            if op in (">=", "~=", "==") or (op == ">" and not version.endswith("*")):
                return self._dep(name, version.rstrip(".*"), False, manifest)
        errors.append(
            ManifestError(
                f"{name}: no version can be picked from '{requirement}'",
                "unresolved_range",
                str(manifest),
            )
        )
        return None

    def _from_poetry(
        self, name: str, spec: Any, manifest: Path, errors: list[ManifestError]
    ) -> ResolvedDependency | None:
        if isinstance(spec, dict):
            if any(k in spec for k in ("path", "git", "url")):
                return None
            spec = spec.get("version", "*")
        if isinstance(spec, list):  # multiple-constraint form; first entry wins
            first = spec[0] if spec else "*"
            spec = first.get("version", "*") if isinstance(first, dict) else first
        text = str(spec).strip()
        if _PLAIN_VERSION_RE.match(text) or text.startswith("=="):
            return self._dep(name, text.lstrip("="), True, manifest)
        match = _POETRY_RANGE_RE.match(text) or re.match(r"^>=\s*(\d+(?:\.\d+)*)", text)
        if match is None:
            errors.append(
                ManifestError(
                    f"{name}: no version can be picked from '{text}'",
                    "unresolved_range",
                    str(manifest),
                )
            )
            return None
        return self._dep(name, match.group(1), False, manifest)
