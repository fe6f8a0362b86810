"""Registry client base: download, stage, unpack, and filter a package archive.

Security requirements:
- Archives are staged in a private temporary directory (mode 0o700) that is
  removed when the fetch completes, successfully or not.
- Archive members with absolute paths or ``..`` components are rejected.
- Nothing is ever extracted to disk; members are read straight from the
  archive into memory.
- Only allow-listed source and documentation files are returned.
"""

from __future__ import annotations

import http.client
import json
import logging
import os
import posixpath
import shutil
import tarfile
import tempfile
import time
import urllib.error
import urllib.request
import zipfile
import zlib
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, TypeVar

from idx import __version__
from idx.config import FetchCfg
from idx.db.models import PackageCoordinate
from idx.errors import FetchError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

USER_AGENT = f"idx/{__version__} (dependency source indexer)"

ALLOWED_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".ts", ".tsx", ".mts", ".cts",
        ".js", ".jsx", ".mjs", ".cjs",
        ".py", ".pyi",
        ".rs", ".go", ".java", ".kt",
        ".md", ".markdown",
    }
)
_SKIP_FILE_MARKERS = (".min.", ".bundle.")
_SKIP_FILE_SUFFIXES = (".d.ts", ".map", "_test.go")
SKIP_ARCHIVE_DIRS: frozenset[str] = frozenset(
    {
        "node_modules", "dist", "build", "__pycache__", ".git",
        "test", "tests", "__tests__", "spec",
        "benchmark", "benchmarks", "vendor", "testdata", "examples",
    }
)
_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class FetchedFile:
    """One allow-listed file from a package archive. *path* is POSIX, relative."""

    path: str
    data: bytes


@dataclass(frozen=True)
class Archive:
    """Where a package's archive lives and how its members are laid out.

    Attributes:
        url: Download URL.
        format: ``"tar"`` (any compression tarfile understands) or ``"zip"``.
        strip_components: Leading path components to drop from every member.
        strip_prefix: Literal prefix to drop instead (Go module zips, whose
            top directory itself contains slashes).
    """

    url: str
    format: str
    strip_components: int = 0
    strip_prefix: str | None = None


def is_indexable(path: str) -> bool:
    """True if an (already prefix-stripped) archive path passes the allow-list."""
    name = posixpath.basename(path)
    _, ext = posixpath.splitext(name)
    if ext.lower() not in ALLOWED_EXTENSIONS:
        return False
    if any(marker in name for marker in _SKIP_FILE_MARKERS):
        return False
    if name.endswith(_SKIP_FILE_SUFFIXES):
        return False
    directories = path.split("/")[:-1]
    return not any(d in SKIP_ARCHIVE_DIRS for d in directories)


def safe_member_path(name: str) -> str | None:
    """Normalize an archive member name; None if it is absolute or escapes the root."""
    name = name.replace("\\", "/")
    if name.startswith("/") or (len(name) > 1 and name[1] == ":"):
        return None
    parts = [p for p in name.split("/") if p not in ("", ".")]
    if any(p == ".." for p in parts):
        return None
    return "/".join(parts)


class RegistryClient(ABC):
    """Downloads one registry's package archives and yields their source files.

    Subclasses implement ``archive()``, mapping a coordinate to its download
    location; everything else (retrying, staging, unpacking, filtering) is
    shared.
    """

    registry: ClassVar[str]

    def __init__(
        self,
        base_url: str,
        fetch_cfg: FetchCfg | None = None,
        max_file_bytes: int = 1_048_576,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cfg = fetch_cfg or FetchCfg()
        self.max_file_bytes = max_file_bytes
        self._sleep = time.sleep

    @abstractmethod
    def archive(self, coordinate: PackageCoordinate) -> Archive:
        """Resolve *coordinate* to its archive location.

        Raises:
            FetchError: ``not_found`` / ``network`` / ``invalid`` from any
                metadata lookup.
        """

    def fetch(self, coordinate: PackageCoordinate) -> Iterator[FetchedFile]:
        """Yield the allow-listed files of *coordinate*'s source archive.

        The archive is downloaded before the first file is yielded, so all
        network errors surface on the first ``next()``.
        """
        self._check_registry(coordinate)
        archive = self.archive(coordinate)
        staging = tempfile.mkdtemp(prefix="idx-fetch-")
        os.chmod(staging, 0o700)
        try:
            target = Path(staging) / "archive"
            self._download(archive.url, target, coordinate)
            logger.debug(
                "downloaded %s (%d bytes) from %s", coordinate, target.stat().st_size, archive.url
            )
            yield from self._unpack(target, archive, coordinate)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": USER_AGENT}

    def _urlopen(self, url: str) -> Any:
        request = urllib.request.Request(url, headers=self._headers())
        return urllib.request.urlopen(request, timeout=self.cfg.timeout)

    def _retrying(
        self, url: str, coordinate: PackageCoordinate, operation: Callable[[], _T]
    ) -> _T:
        """Run *operation*, retrying ``network`` failures with exponential backoff.

        404 and 410 raise ``not_found`` at once; other HTTP errors are
        retried only for 429 and 5xx.
        """
        attempts = max(1, self.cfg.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return operation()
            except urllib.error.HTTPError as exc:
                if exc.code in (404, 410):
                    raise FetchError(
                        f"{coordinate}: not found at {url}", "not_found", coordinate
                    ) from exc
                error = FetchError(
                    f"{coordinate}: HTTP {exc.code} from {url}", "network", coordinate
                )
                if exc.code not in _RETRY_STATUSES:
                    raise error from exc
                cause: Exception = exc
            except (
                urllib.error.URLError,
                http.client.IncompleteRead,
                TimeoutError,
                ConnectionError,
            ) as exc:
                error = FetchError(f"{coordinate}: {exc} ({url})", "network", coordinate)
                cause = exc
            if attempt == attempts:
                raise error from cause
            delay = self.cfg.backoff * (2 ** (attempt - 1))
            logger.info(
                "%s: attempt %d/%d failed (%s); retrying in %.1fs",
                coordinate,
                attempt,
                attempts,
                cause,
                delay,
            )
            self._sleep(delay)
        raise AssertionError("unreachable")

    def _read(self, url: str) -> bytes:
        with self._urlopen(url) as response:
            return response.read()

    def _get_json(self, url: str, coordinate: PackageCoordinate) -> dict[str, Any]:
        body = self._retrying(url, coordinate, lambda: self._read(url))
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise FetchError(
                f"{coordinate}: invalid registry metadata from {url}", "invalid", coordinate
            ) from exc
        if not isinstance(data, dict):
            raise FetchError(
                f"{coordinate}: unexpected registry metadata from {url}", "invalid", coordinate
            )
        return data

    def _download(self, url: str, target: Path, coordinate: PackageCoordinate) -> None:
        """Stream *url* into *target*; a connection lost mid-body is retried from scratch."""

        def attempt() -> None:
            with self._urlopen(url) as response, target.open("wb") as out:
                shutil.copyfileobj(response, out)

        self._retrying(url, coordinate, attempt)

    # ------------------------------------------------------------------
    # Unpacking
    # ------------------------------------------------------------------

    def _unpack(
        self, path: Path, archive: Archive, coordinate: PackageCoordinate
    ) -> Iterator[FetchedFile]:
        try:
            if archive.format == "zip":
                yield from self._unpack_zip(path, archive, coordinate)
            else:
                yield from self._unpack_tar(path, archive, coordinate)
        except (tarfile.TarError, zipfile.BadZipFile, EOFError, zlib.error) as exc:
            raise FetchError(f"{coordinate}: corrupt archive: {exc}", "invalid", coordinate) from exc

    def _unpack_tar(
        self, path: Path, archive: Archive, coordinate: PackageCoordinate
    ) -> Iterator[FetchedFile]:
        with tarfile.open(path, mode="r:*") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                relative = self._member_path(member.name, archive, coordinate)
                if relative is None or member.size > self.max_file_bytes:
                    continue
                handle = tar.extractfile(member)
                if handle is None:
                    continue
                with handle:
                    data = handle.read()
                if (fetched := self._accept(relative, data)) is not None:
                    yield fetched

    def _unpack_zip(
        self, path: Path, archive: Archive, coordinate: PackageCoordinate
    ) -> Iterator[FetchedFile]:
        with zipfile.ZipFile(path) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                relative = self._member_path(info.filename, archive, coordinate)
                if relative is None or info.file_size > self.max_file_bytes:
                    continue
                if (fetched := self._accept(relative, zf.read(info))) is not None:
                    yield fetched

    def _member_path(
        self, name: str, archive: Archive, coordinate: PackageCoordinate
    ) -> str | None:
        """Strip the archive prefix and apply the allow-list; None = skip."""
        normalized = safe_member_path(name)
        if normalized is None:
            logger.warning("%s: rejecting unsafe archive member %r", coordinate, name)
            return None
        if archive.strip_prefix is not None:
            if not normalized.startswith(archive.strip_prefix):
                return None
            normalized = normalized[len(archive.strip_prefix) :]
        elif archive.strip_components:
            parts = normalized.split("/")
            if len(parts) <= archive.strip_components:
                return None
            normalized = "/".join(parts[archive.strip_components :])
        if not normalized or not is_indexable(normalized):
            return None
        return normalized

    @staticmethod
    def _accept(relative: str, data: bytes) -> FetchedFile | None:
        try:
            data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("skipping non-UTF-8 file %s", relative)
            return None
        return FetchedFile(relative, data)

    def _check_registry(self, coordinate: PackageCoordinate) -> None:
        if coordinate.registry != self.registry:
            raise ValueError(
                f"{type(self).__name__} cannot fetch {coordinate.registry} packages"
            )
