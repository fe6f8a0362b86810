"""Maven Central client (sources jars)."""

from __future__ import annotations

import urllib.parse

from idx.db.models import PackageCoordinate
from idx.errors import FetchError
from idx.registry.base import Archive, RegistryClient


class MavenClient(RegistryClient):
    """Fetches ``<artifact>-<version>-sources.jar`` for a ``group:artifact`` name."""

    registry = "maven"

    def archive(self, coordinate: PackageCoordinate) -> Archive:
        group, sep, artifact = coordinate.name.partition(":")
        if not sep or not group or not artifact:
            raise FetchError(
                f"{coordinate}: maven names must be 'groupId:artifactId'", "invalid", coordinate
            )
        group_path = "/".join(urllib.parse.quote(p, safe="") for p in group.split("."))
        artifact_q = urllib.parse.quote(artifact, safe="")
        version = urllib.parse.quote(coordinate.version, safe="")
        return Archive(
            url=(
                f"{self.base_url}/{group_path}/{artifact_q}/{version}/"
                f"{artifact_q}-{version}-sources.jar"
            ),
            format="zip",
        )
