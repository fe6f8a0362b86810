"""Helpers shared by the idx commands: service construction and coordinate parsing."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from idx.cli.errors import err_bad_coordinate, err_config, err_no_index
from idx.config import ConfigError
from idx.db.models import PackageCoordinate
from idx.errors import StoreError
from idx.service import IndexService

console = Console()


def open_service(start: Path | None = None) -> IndexService:
    """Open the index at or above *start*, exiting with a hint if there is none."""
    try:
        return IndexService.open(start)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    except StoreError as exc:
        if exc.kind != "not_found":
            raise
        console.print(err_no_index())
        raise typer.Exit(1) from exc


def new_service(root: Path) -> IndexService:
    """Build a service for *root* without requiring an existing index."""
    try:
        return IndexService(root)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def parse_coordinate(value: str) -> PackageCoordinate:
    try:
        return PackageCoordinate.parse(value)
    except ValueError as exc:
        console.print(err_bad_coordinate(value))
        raise typer.Exit(1) from exc


def human_bytes(size: int) -> str:
    value = float(size)
    if value < 1024:
        return f"{size} B"
    for unit in ("KB", "MB"):
        value /= 1024
        if value < 1024:
            return f"{value:.1f} {unit}"
    return f"{value / 1024:.1f} GB"
