"""Go module proxy client."""

from __future__ import annotations

from idx.db.models import PackageCoordinate
from idx.registry.base import Archive, RegistryClient


def escape_module_path(path: str) -> str:
    """Module proxy case encoding: each uppercase letter becomes ``!`` + lowercase.

    >>> escape_module_path("github.com/BurntSushi/toml")
    'github.com/!burnt!sushi/toml'
    """
    return "".join(f"!{c.lower()}" if c.isupper() else c for c in path)


class GoClient(RegistryClient):
    """Fetches ``@v/v<version>.zip`` from a GOPROXY-protocol server.

    Module zips prefix every file with ``<module>@v<version>/``; the module
    path itself contains slashes, so the literal prefix is stripped.
    """

    registry = "go"

    def archive(self, coordinate: PackageCoordinate) -> Archive:
        module = coordinate.name
        version = f"v{coordinate.version}"
        return Archive(
            url=f"{self.base_url}/{escape_module_path(module)}/@v/{escape_module_path(version)}.zip",
            format="zip",
            strip_prefix=f"{module}@{version}/",
        )
