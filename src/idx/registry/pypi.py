"""PyPI client (JSON API)."""

from __future__ import annotations

import urllib.parse
from typing import Any

from idx.db.models import PackageCoordinate
from idx.errors import FetchError
from idx.registry.base import Archive, RegistryClient


class PypiClient(RegistryClient):
    """Prefers the sdist; falls back to a wheel when no sdist was uploaded.

    Sdists carry a ``name-version/`` top directory (stripped); wheels are
    flat zips.
    """

    registry = "pypi"

    def archive(self, coordinate: PackageCoordinate) -> Archive:
        name = urllib.parse.quote(coordinate.name, safe="")
        version = urllib.parse.quote(coordinate.version, safe="")
        meta = self._get_json(f"{self.base_url}/pypi/{name}/{version}/json", coordinate)
        urls: list[dict[str, Any]] = [u for u in meta.get("urls") or [] if isinstance(u, dict)]

        sdist = next((u for u in urls if u.get("packagetype") == "sdist"), None)
        if sdist is not None and sdist.get("url"):
            url = str(sdist["url"])
            fmt = "zip" if url.endswith(".zip") else "tar"
            return Archive(url=url, format=fmt, strip_components=1)

        wheel = next((u for u in urls if u.get("packagetype") == "bdist_wheel"), None)
        if wheel is not None and wheel.get("url"):
            return Archive(url=str(wheel["url"]), format="zip")

        raise FetchError(f"{coordinate}: no sdist or wheel published", "invalid", coordinate)
