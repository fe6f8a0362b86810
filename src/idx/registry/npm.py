"""npm registry client."""

from __future__ import annotations

import urllib.parse

from idx.db.models import PackageCoordinate
from idx.errors import FetchError
from idx.registry.base import Archive, RegistryClient


class NpmClient(RegistryClient):
    """Looks up ``dist.tarball`` in the version document, then fetches the tgz.

    npm tarballs put everything under a single top directory (usually
    ``package/``), which is stripped.
    """

    registry = "npm"

    def archive(self, coordinate: PackageCoordinate) -> Archive:
        name = urllib.parse.quote(coordinate.name, safe="@")
        version = urllib.parse.quote(coordinate.version, safe="")
        meta = self._get_json(f"{self.base_url}/{name}/{version}", coordinate)
        tarball = (meta.get("dist") or {}).get("tarball")
        if not isinstance(tarball, str) or not tarball:
            raise FetchError(
                f"{coordinate}: version document has no dist.tarball", "invalid", coordinate
            )
        return Archive(url=tarball, format="tar", strip_components=1)
