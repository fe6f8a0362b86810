"""go: go.mod require directives."""

from __future__ import annotations

import re
from pathlib import Path

from idx.errors import ManifestError
from idx.manifests.base import ManifestResolver, ResolvedDependency

_REQUIRE_LINE_RE = re.compile(r"^(\S+)\s+v(\S+)$")


class GoResolver(ManifestResolver):
    """Reads ``require`` directives, single-line and block form.

    go.mod versions are always exact (minimal version selection), so every
    dependency is pinned. ``// indirect`` requirements are skipped. The
    leading ``v`` is stripped from the stored version.
    """

    registry = "go"
    manifest_names = ("go.mod",)

    def resolve(self, directory: Path, errors: list[ManifestError]) -> list[ResolvedDependency]:
        gomod = directory / "go.mod"
        try:
            lines = gomod.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as exc:
            raise ManifestError(f"cannot read: {exc}", "unparseable", str(gomod)) from exc

        out: list[ResolvedDependency] = []
        in_block = False
        for lineno, raw in enumerate(lines, start=1):
            line, _, comment = raw.partition("//")
            line = line.strip()
            if not line:
                continue
            if in_block:
                if line == ")":
                    in_block = False
                    continue
                entry = line
            elif line.startswith("require"):
                rest = line[len("require") :].strip()
                if rest == "(":
                    in_block = True
                    continue
                entry = rest
            else:
                continue

            if "indirect" in comment:
                continue
            match = _REQUIRE_LINE_RE.match(entry)
            if match is None:
                raise ManifestError(
                    f"line {lineno}: malformed require '{line}'", "unparseable", str(gomod)
                )
            out.append(self._dep(match.group(1), match.group(2), True, gomod))

        if in_block:
            raise ManifestError("unterminated require block", "unparseable", str(gomod))
        return out
