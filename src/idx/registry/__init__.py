"""Registry clients: coordinate → allow-listed source files."""

from __future__ import annotations

from idx.config import IdxConfig
from idx.registry.base import (
    ALLOWED_EXTENSIONS,
    Archive,
    FetchedFile,
    RegistryClient,
    is_indexable,
    safe_member_path,
)
from idx.registry.crates import CratesClient
from idx.registry.go import GoClient, escape_module_path
from idx.registry.maven import MavenClient
from idx.registry.npm import NpmClient
from idx.registry.pypi import PypiClient

CLIENTS: dict[str, type[RegistryClient]] = {
    "npm": NpmClient,
    "crates": CratesClient,
    "pypi": PypiClient,
    "go": GoClient,
    "maven": MavenClient,
}


def client_for(registry: str, config: IdxConfig | None = None) -> RegistryClient:
    """Build the client for *registry* from the configured base URL and limits.

    Raises:
        ValueError: For an unknown registry.
    """
    config = config or IdxConfig()
    try:
        cls = CLIENTS[registry]
    except KeyError:
        raise ValueError(
            f"Unknown registry '{registry}'. Valid: {', '.join(sorted(CLIENTS))}"
        ) from None
    return cls(
        base_url=getattr(config.registries, registry),
        fetch_cfg=config.fetch,
        max_file_bytes=config.indexing.max_file_bytes,
    )


__all__ = [
    "ALLOWED_EXTENSIONS",
    "Archive",
    "CLIENTS",
    "CratesClient",
    "FetchedFile",
    "GoClient",
    "MavenClient",
    "NpmClient",
    "PypiClient",
    "RegistryClient",
    "client_for",
    "escape_module_path",
    "is_indexable",
    "safe_member_path",
]
