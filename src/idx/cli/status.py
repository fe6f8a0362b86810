"""idx list / stats / status: read-only views of the index.

status compares the manifests with the index and shows what 'idx update'
would do, without changing anything.
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from idx.cli.common import console, human_bytes, open_service
from idx.cli.errors import warn_manifest, warn_unpinned
from idx.db.models import FAILED, FETCHED, INDEXED, PENDING, SKIPPED

_STATUS_STYLE = {
    INDEXED: "[green]indexed[/]",
    PENDING: "[yellow]pending[/]",
    FETCHED: "[yellow]fetched[/]",
    FAILED: "[red]failed[/]",
    SKIPPED: "[dim]skipped[/]",
}


def list_cmd(
    registry: Annotated[
        str | None,
        typer.Option("--registry", "-r", help="Only this registry."),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Only packages with this status."),
    ] = None,
) -> None:
    """List packages in the index."""
    service = open_service()
    try:
        packages = service.list_packages(registry=registry, status=status)
    except ValueError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc

    if not packages:
        console.print("[dim]No packages.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Registry", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Status")
    table.add_column("Indexed at", style="dim")
    for package in packages:
        coord = package.coordinate
        version = f"{coord.version} [yellow](unpinned)[/]" if package.unpinned else coord.version
        table.add_row(
            coord.registry,
            coord.name,
            version,
            _STATUS_STYLE.get(package.status, package.status),
            (package.indexed_at or "")[:16],
        )
    console.print(table)


def stats_cmd() -> None:
    """Show index size: packages, files, blobs, chunks and embeddings."""
    service = open_service()
    result = service.stats()
    stats = result.index

    by_status = "  ".join(
        f"{_STATUS_STYLE.get(s, s)} {n}" for s, n in sorted(stats.packages_by_status.items())
    )
    by_registry = "  ".join(f"{r} {n}" for r, n in sorted(stats.packages_by_registry.items()))
    lines = [
        f"Packages:    [bold]{stats.packages}[/]  ({by_registry or 'none'})",
        f"  {by_status}" if by_status else "",
        f"Files:       [bold]{stats.files:,}[/]  ({stats.unsupported_files:,} without a grammar)",
        f"Blobs:       [bold]{stats.blobs:,}[/]  {human_bytes(stats.blob_bytes)}, "
        f"{stats.blob_references:,} references",
        f"Chunks:      [bold]{stats.chunks:,}[/]",
        f"Embeddings:  [bold]{stats.embeddings:,}[/]  ({stats.failed_chunks:,} failed chunks)",
        f"Model:       {stats.model or '[dim](none yet)[/]'}",
        f"Database:    {human_bytes(result.db_bytes)}  |  Blobs on disk: "
        f"{human_bytes(result.blob_disk_bytes)}",
    ]
    console.print(
        Panel(
            "\n".join(line for line in lines if line),
            title=f"[bold]Index[/] [dim]{service.index_dir}[/]",
            expand=False,
        )
    )


def status_cmd() -> None:
    """Show what 'idx update' would change, plus failures and manifest problems."""
    service = open_service()
    report = service.status()
    plan = report.plan

    if report.model_change is not None:
        old, new = report.model_change
        console.print(
            f"[yellow]⚠[/] Embedding model changed: {old} → {new}. "
            "Run:  idx update  to re-embed."
        )

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("", width=2)
    table.add_column("Package")
    table.add_column("Change", style="dim")
    for coordinate in plan.added:
        table.add_row("[green]+[/]", str(coordinate), "new")
    for old, new in plan.changed:
        table.add_row("[cyan]~[/]", str(new), f"replaces {old.version}")
    for coordinate in plan.incomplete:
        table.add_row("[yellow]…[/]", str(coordinate), "incomplete")
    for coordinate in plan.removed:
        table.add_row("[dim]-[/]", str(coordinate), "unreferenced (idx prune)")

    pending = len(plan.added) + len(plan.changed) + len(plan.incomplete) + len(plan.removed)
    if pending:
        console.print(Panel(table, title=f"[bold]Pending changes[/] [dim]({pending})[/]", expand=False))
    else:
        console.print(
            f"[green]✓[/] {len(plan.unchanged)} package(s) in sync with the manifests."
        )

    if report.failures:
        failures = Table(show_header=False, box=None, padding=(0, 1))
        failures.add_column("Package", style="bold")
        failures.add_column("Reason", style="dim")
        for package in report.failures:
            failures.add_row(str(package.coordinate), package.failure_reason or "")
        console.print(
            Panel(
                failures,
                title=f"[bold red]Failed[/] [dim]({len(report.failures)}; idx retry --all)[/]",
                expand=False,
            )
        )
    for error in report.manifest_errors:
        console.print(warn_manifest(error))
    if report.unpinned:
        console.print(warn_unpinned(len(report.unpinned)))
