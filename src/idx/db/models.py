"""Domain models for the idx index store."""

from __future__ import annotations

from dataclasses import dataclass

REGISTRIES: tuple[str, ...] = ("npm", "crates", "pypi", "maven", "go")

# Package lifecycle. Only Repository.finalize_package() writes INDEXED.
PENDING = "pending"
FETCHED = "fetched"
INDEXED = "indexed"
FAILED = "failed"
SKIPPED = "skipped"
STATUSES: tuple[str, ...] = (PENDING, FETCHED, INDEXED, FAILED, SKIPPED)


@dataclass(frozen=True, order=True)
class PackageCoordinate:
    """Unique identity of a package version within a registry.

    The textual form is ``registry:name@version``; maven names are
    ``groupId:artifactId`` and go versions carry no leading ``v``.
    """

    registry: str
    name: str
    version: str

    def __post_init__(self) -> None:
        if self.registry not in REGISTRIES:
            raise ValueError(
                f"Unknown registry '{self.registry}'. Expected one of: {', '.join(REGISTRIES)}"
            )
        if not self.name or not self.version:
            raise ValueError("Package name and version must be non-empty.")

    def __str__(self) -> str:
        return f"{self.registry}:{self.name}@{self.version}"

    @property
    def key(self) -> tuple[str, str]:
        """(registry, name): identity across versions."""
        return (self.registry, self.name)

    @classmethod
    def parse(cls, spec: str) -> PackageCoordinate:
        """Parse ``registry:name@version``.

        The version is split on the last ``@`` so scoped npm names
        (``npm:@types/node@20.1.0``) work.

        Raises:
            ValueError: If *spec* is not in the expected form.
        """
        registry, sep, rest = spec.partition(":")
        if not sep:
            raise ValueError(
                f"Invalid package spec '{spec}'. Expected registry:name@version "
                "(e.g. npm:lodash@4.17.21)"
            )
        name, sep, version = rest.rpartition("@")
        if not sep or not name:
            raise ValueError(
                f"Invalid package spec '{spec}'. Expected registry:name@version "
                "(e.g. npm:lodash@4.17.21)"
            )
        if registry == "go":
            version = version.removeprefix("v")
        return cls(registry=registry, name=name, version=version)


@dataclass
class Package:
    id: int
    coordinate: PackageCoordinate
    status: str = PENDING
    unpinned: bool = False
    failure_reason: str | None = None
    failed_at: str | None = None
    created_at: str | None = None
    indexed_at: str | None = None


@dataclass
class SourceFile:
    package_id: int
    path: str
    content_hash: str
    size: int
    language: str | None = None  # None = no grammar available
    id: int | None = None  # set after insert


@dataclass
class Chunk:
    """A semantic unit extracted from one source file.

    Byte offsets are into the file's raw bytes; lines are 1-indexed and
    inclusive. ``content_hash`` is the SHA-256 of ``text``.
    """

    kind: str
    symbol: str
    start_byte: int
    end_byte: int
    start_line: int
    end_line: int
    text: str
    content_hash: str
    file_id: int | None = None
    id: int | None = None
    embed_error: str | None = None


@dataclass
class PreparedFile:
    """A fetched file with its chunks, ready for Repository.store_files()."""

    path: str
    data: bytes
    language: str | None
    chunks: list[Chunk]
