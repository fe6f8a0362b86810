"""idx remove / prune / clean / retry / skip: package lifecycle management.

Usage:
  idx remove npm:lodash@4.17.20 --yes
  idx prune --dry-run
  idx retry --all
  idx skip maven:com.example:huge@1.0.0
"""

from __future__ import annotations

from typing import Annotated

import typer

from idx.cli.common import console, new_service, open_service, parse_coordinate
from idx.cli.errors import err_package_not_found
from idx.config import find_project_root
from idx.db.repository import RemoveReport
from idx.errors import StoreError

CoordinateArg = Annotated[
    str,
    typer.Argument(help="Package as registry:name@version, e.g. npm:lodash@4.17.21."),
]
YesOption = Annotated[
    bool,
    typer.Option("--yes", "-y", help="Skip confirmation prompt."),
]


def remove_cmd(coordinate: CoordinateArg, yes: YesOption = False) -> None:
    """Remove a package with its files, chunks and vectors."""
    coord = parse_coordinate(coordinate)
    service = open_service()
    package = service.get(coord)
    if package is None:
        console.print(err_package_not_found(str(coord)))
        raise typer.Exit(1)

    console.print(f"\nRemove package: [bold]{coord}[/]  [dim]({package.status})[/]")
    if not yes and not typer.confirm("Confirm removal?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)

    try:
        report = service.remove(coord)
    except StoreError as exc:
        if exc.kind != "not_found":
            raise
        console.print(err_package_not_found(str(coord)))
        raise typer.Exit(1) from exc
    console.print(f"[green]✓[/] Removed: {coord}")
    console.print(f"  {_summary(report)}")


def prune_cmd(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="List what would be removed without removing it."),
    ] = False,
    yes: YesOption = False,
) -> None:
    """Remove packages that no manifest references any more."""
    service = open_service()
    candidates = service.prune(dry_run=True).candidates
    if not candidates:
        console.print("[green]✓[/] Nothing to prune.")
        return

    console.print(f"\n[bold]{len(candidates)}[/] unreferenced package(s):")
    for coordinate in candidates:
        console.print(f"  [dim]-[/] {coordinate}")
    if dry_run:
        return
    if not yes and not typer.confirm("Remove them?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)

    removed = service.prune().removed
    blobs = sum(r.blobs_deleted for r in removed)
    console.print(f"[green]✓[/] Pruned {len(removed)} package(s), {blobs} blob(s) deleted.")


def clean_cmd(yes: YesOption = False) -> None:
    """Delete the whole .index/ directory."""
    root = find_project_root()
    if root is None:
        console.print("[dim]No .index/ directory; nothing to clean.[/]")
        return
    service = new_service(root)
    if not yes and not typer.confirm(f"Delete {service.index_dir}?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)
    service.clean()
    console.print(f"[green]✓[/] Deleted {service.index_dir}")


def retry_cmd(
    coordinate: Annotated[
        str | None,
        typer.Argument(help="Package to re-queue (failed or skipped)."),
    ] = None,
    all_failed: Annotated[
        bool,
        typer.Option("--all", help="Re-queue every failed package."),
    ] = False,
) -> None:
    """Return failed packages to pending; the next 'idx update' indexes them."""
    if (coordinate is None) == (not all_failed):
        console.print("[red]Error:[/] Give a package coordinate or --all (not both).")
        raise typer.Exit(1)
    coord = parse_coordinate(coordinate) if coordinate is not None else None
    service = open_service()
    try:
        queued = service.retry(coord)
    except StoreError as exc:
        if exc.kind != "not_found":
            raise
        console.print(err_package_not_found(str(coord)))
        raise typer.Exit(1) from exc

    if not queued:
        console.print("[dim]No failed packages.[/]")
        return
    for c in queued:
        console.print(f"  [yellow]↻[/] {c}")
    console.print(f"Re-queued {len(queued)} package(s).  Run:  idx update")


def skip_cmd(coordinate: CoordinateArg) -> None:
    """Mark a package skipped so runs leave it alone."""
    coord = parse_coordinate(coordinate)
    service = open_service()
    try:
        service.skip(coord)
    except StoreError as exc:
        if exc.kind != "not_found":
            raise
        console.print(err_package_not_found(str(coord)))
        raise typer.Exit(1) from exc
    console.print(f"[green]✓[/] Skipped: {coord}  [dim](idx retry {coord} to undo)[/]")


def _summary(report: RemoveReport) -> str:
    return (
        f"{report.files} files, {report.chunks} chunks, "
        f"{report.embeddings} vectors, {report.blobs_deleted} blobs deleted"
    )
