"""crates.io client."""

from __future__ import annotations

import urllib.parse

from idx.db.models import PackageCoordinate
from idx.registry.base import Archive, RegistryClient


class CratesClient(RegistryClient):
    """Fetches ``.crate`` files (gzipped tar, top directory ``name-version/``).

    The static host rejects requests without a User-Agent; the base class
    always sends one.
    """

    registry = "crates"

    def archive(self, coordinate: PackageCoordinate) -> Archive:
        name = urllib.parse.quote(coordinate.name, safe="")
        version = urllib.parse.quote(coordinate.version, safe="")
        return Archive(
            url=f"{self.base_url}/crates/{name}/{name}-{version}.crate",
            format="tar",
            strip_components=1,
        )
