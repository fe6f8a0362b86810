"""maven: pom.xml with ``${property}`` substitution."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from pathlib import Path

from idx.errors import ManifestError
from idx.manifests.base import ManifestResolver, ResolvedDependency

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")
_EXCLUDED_SCOPES = frozenset({"test", "provided", "system"})
# Nested property references are expanded at most this deep.
_MAX_SUBSTITUTIONS = 10


def _local(tag: str) -> str:
    """Strip the XML namespace from a tag: '{ns}artifactId' -> 'artifactId'."""
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> ET.Element | None:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _child_text(element: ET.Element, name: str) -> str | None:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


class MavenResolver(ManifestResolver):
    """Reads ``<dependencies>`` of a pom.xml.

    Placeholders are substituted from ``<properties>`` (transitively) and
    from ``project.version`` / ``project.groupId`` (falling back to the
    ``<parent>`` values). Dependencies with an unresolvable placeholder are
    reported and skipped. ``dependencyManagement`` entries and the test,
    provided and system scopes are not indexed. Names are
    ``groupId:artifactId``.
    """

    registry = "maven"
    manifest_names = ("pom.xml",)

    def resolve(self, directory: Path, errors: list[ManifestError]) -> list[ResolvedDependency]:
        pom = directory / "pom.xml"
        try:
            root = ET.parse(pom).getroot()
        except ET.ParseError as exc:
            raise ManifestError(f"invalid XML: {exc}", "unparseable", str(pom)) from exc
        except OSError as exc:
            raise ManifestError(f"cannot read: {exc}", "unparseable", str(pom)) from exc

        properties = self._properties(root)
        dependencies = _child(root, "dependencies")
        if dependencies is None:
            return []

        out: list[ResolvedDependency] = []
        for dep in dependencies:
            if _local(dep.tag) != "dependency":
                continue
            scope = _child_text(dep, "scope") or "compile"
            if scope in _EXCLUDED_SCOPES:
                continue
            try:
                group = self._substitute(_child_text(dep, "groupId") or "", properties)
                artifact = self._substitute(_child_text(dep, "artifactId") or "", properties)
                raw_version = _child_text(dep, "version")
                if raw_version is None:
                    errors.append(
                        ManifestError(
                            f"{group}:{artifact}: no <version> (managed by a parent or BOM)",
                            "unresolved_range",
                            str(pom),
                        )
                    )
                    continue
                version = self._substitute(raw_version, properties)
            except ManifestError as exc:
                exc.path = str(pom)
                errors.append(exc)
                continue
            if not group or not artifact:
                errors.append(
                    ManifestError("dependency without groupId/artifactId", "unparseable", str(pom))
                )
                continue
            if version.startswith(("[", "(")):
                errors.append(
                    ManifestError(
                        f"{group}:{artifact}: version ranges are not supported ('{version}')",
                        "unresolved_range",
                        str(pom),
                    )
                )
                continue
            out.append(self._dep(f"{group}:{artifact}", version, True, pom))
        return out

    @staticmethod
    def _properties(root: ET.Element) -> dict[str, str]:
        props: dict[str, str] = {}
        parent = _child(root, "parent")
        for key in ("groupId", "artifactId", "version"):
            value = _child_text(root, key)
            if value is None and parent is not None:
                value = _child_text(parent, key)
            if value is not None:
                props[f"project.{key}"] = value
                props[f"pom.{key}"] = value
        if parent is not None:
            for key in ("groupId", "artifactId", "version"):
                if (value := _child_text(parent, key)) is not None:
                    props[f"project.parent.{key}"] = value
        section = _child(root, "properties")
        if section is not None:
            for prop in section:
                props[_local(prop.tag)] = (prop.text or "").strip()
        return props

    @staticmethod
    def _substitute(value: str, properties: dict[str, str]) -> str:
        """Expand ``${name}`` references, following nested references.

        Raises:
            ManifestError: kind ``unresolved_placeholder`` for unknown or
                circular references.
        """
        for _ in range(_MAX_SUBSTITUTIONS):
            match = _PLACEHOLDER_RE.search(value)
            if match is None:
                return value
            name = match.group(1)
            if name not in properties:
                raise ManifestError(
                    f"unresolved placeholder '${{{name}}}'", "unresolved_placeholder"
                )
            value = value[: match.start()] + properties[name] + value[match.end() :]
        raise ManifestError(
            f"placeholder nesting too deep in '{value}'", "unresolved_placeholder"
        )
