"""idx init / update / index / watch: commands that fetch and embed packages.

Usage:
  idx init                     resolve every manifest and index it all
  idx update -j 8              apply manifest changes since the last run
  idx index npm:lodash@4.17.21 --force
  idx watch                    re-run update whenever a manifest changes
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from idx.cli.common import console, new_service, open_service, parse_coordinate
from idx.cli.errors import err_no_api_key, warn_failed, warn_manifest, warn_unpinned
from idx.db.models import FAILED, INDEXED
from idx.indexer import IndexRunReport, OutcomeCallback, PackageOutcome
from idx.manifests import Resolution
from idx.reconcile import ReconcilePlan
from idx.service import IndexService, UpdateResult

_DEFAULT_PROJECT_DIR = Path(".")

JobsOption = Annotated[
    int | None,
    typer.Option("--jobs", "-j", min=1, help="Packages to index in parallel."),
]


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Project root. Defaults to the current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    jobs: JobsOption = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Resolve manifests and list dependencies without indexing."),
    ] = False,
) -> None:
    """Create .index/ and index every dependency the manifests resolve to."""
    project_dir = project_dir.resolve()
    if not project_dir.is_dir():
        console.print(f"[red]Error:[/] Not a directory: '{project_dir}'")
        raise typer.Exit(1)

    service = new_service(project_dir)
    if dry_run:
        result = service.init(dry_run=True)
        _print_resolution(result.resolution, verbose=True)
        return

    with _run_progress() as on_outcome:
        result = service.init(jobs, on_outcome=on_outcome)
    if result.created:
        console.print(f"[green]✓[/] Created {result.index_dir}")
    _print_resolution(result.resolution)
    if result.run is not None:
        _finish(service, result.run)


def update_cmd(jobs: JobsOption = None) -> None:
    """Index new and changed dependencies; drop versions that were replaced."""
    service = open_service()
    with _run_progress() as on_outcome:
        result = service.update(jobs, on_outcome=on_outcome)
    _print_update(result)
    if result.run is not None:
        _finish(service, result.run)


def index_cmd(
    coordinate: Annotated[
        str,
        typer.Argument(help="Package as registry:name@version, e.g. npm:lodash@4.17.21."),
    ],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Re-fetch and re-embed even if already indexed."),
    ] = False,
) -> None:
    """Index one package, whether or not a manifest references it."""
    coord = parse_coordinate(coordinate)
    service = open_service()
    with _run_progress() as on_outcome:
        report = service.index(coord, force=force, on_outcome=on_outcome)
    _finish(service, report)


def watch_cmd() -> None:
    """Watch manifests and run 'idx update' after each change. Ctrl-C stops."""
    service = open_service()
    watcher = service.watch(on_update=_print_update)
    console.print(
        f"[bold]Watching[/] {service.root} "
        f"[dim](debounce {service.config.watch.debounce:.1f}s, Ctrl-C to stop)[/]"
    )
    try:
        while watcher.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()
    console.print(f"[dim]Stopped after {watcher.runs} update(s).[/]")


# ------------------------------------------------------------------
# Output
# ------------------------------------------------------------------


@contextmanager
def _run_progress() -> Iterator[OutcomeCallback]:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed} done"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Indexing…", total=None)

        def on_outcome(outcome: PackageOutcome) -> None:
            progress.update(task, advance=1, description=str(outcome.coordinate))
            if outcome.status == FAILED:
                progress.console.print(
                    f"  [red]✗[/] {outcome.coordinate}  [dim]{outcome.reason}[/]"
                )
            elif outcome.status == INDEXED:
                progress.console.print(
                    f"  [green]✓[/] {outcome.coordinate}  "
                    f"[dim]{outcome.files} files, {outcome.chunks} chunks[/]"
                )

        yield on_outcome


def _print_resolution(resolution: Resolution, verbose: bool = False) -> None:
    console.print(
        f"Resolved [bold]{len(resolution.coordinates)}[/] dependencies "
        f"from {len(resolution.manifests)} manifest(s)."
    )
    if verbose:
        for coordinate in resolution.coordinates:
            marker = " [yellow](unpinned)[/]" if coordinate in resolution.unpinned else ""
            console.print(f"  {coordinate}{marker}")
    for error in resolution.errors:
        console.print(warn_manifest(error))
    if resolution.unpinned:
        console.print(warn_unpinned(len(resolution.unpinned)))


def _print_plan(plan: ReconcilePlan) -> None:
    if plan.in_sync:
        console.print("[green]✓[/] Index is in sync with the manifests.")
        return
    for coordinate in plan.added:
        console.print(f"  [green]+[/] {coordinate}")
    for old, new in plan.changed:
        console.print(f"  [cyan]~[/] {old.registry}:{old.name} {old.version} → {new.version}")
    for coordinate in plan.incomplete:
        console.print(f"  [yellow]…[/] {coordinate} (incomplete)")
    for coordinate in plan.failed:
        console.print(f"  [red]✗[/] {coordinate} (failed; idx retry to re-queue)")
    for coordinate in plan.removed:
        console.print(f"  [dim]-[/] {coordinate} (unreferenced; idx prune to remove)")


def _print_update(result: UpdateResult) -> None:
    if result.model_change is not None:
        old, new = result.model_change
        console.print(
            f"[cyan]~[/] Embedding model changed: {old} → {new}; re-embedding stored chunks."
        )
    _print_plan(result.plan)
    for error in result.resolution.errors:
        console.print(warn_manifest(error))
    if result.removed:
        console.print(f"Removed {len(result.removed)} replaced version(s).")


def _finish(service: IndexService, report: IndexRunReport) -> None:
    already = sum(1 for o in report.skipped if o.reason == "already indexed")
    console.print(
        f"\n[bold]Indexed[/] {len(report.indexed)}  |  "
        f"[bold]Already indexed[/] {already}  |  "
        f"[bold]Skipped[/] {len(report.skipped) - already}  |  "
        f"[bold]Failed[/] {len(report.failed)}"
    )
    if report.aborted is not None:
        console.print(err_no_api_key(service.config.embedding.model))
        console.print(f"  [dim]{report.aborted}[/]")
        console.print("  After fixing the key, run:  idx retry --all")
        raise typer.Exit(1)
    if report.failed:
        console.print(warn_failed(len(report.failed)))
