"""
CLI: ``reprocache store`` — artifact store commands.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from reprocache.cli.utils import console, exit_with_error, load_pipeline, make_store, print_json, setup_logging
from reprocache.core.errors import ReproError
from reprocache.core.hashing import fingerprint_all

app = typer.Typer(no_args_is_help=True)


@app.command("list")
def list_artifacts(
    unit: str | None = typer.Option(None, "--unit", "-u", help="Only artifacts produced by this unit"),
    store_dir: Path | None = typer.Option(None, "--store", help="Artifact store directory"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List stored artifacts, oldest first."""
    setup_logging()
    artifacts = make_store(store_dir).list_artifacts(unit_id=unit)

    if json_out:
        print_json([meta.to_dict() for meta in artifacts])
        return

    if not artifacts:
        console.print("[dim]No artifacts.[/dim]")
        return

    table = Table(title="Artifacts", pad_edge=False)
    table.add_column("fingerprint")
    table.add_column("unit")
    table.add_column("created_at")
    table.add_column("bytes", justify="right")
    table.add_column("serializer")
    for meta in artifacts:
        table.add_row(
            meta.fingerprint[:16],
            meta.unit_id,
            meta.created_at.isoformat(timespec="seconds"),
            str(meta.size_bytes),
            meta.serializer,
        )
    console.print(table)


@app.command("invalidate")
def invalidate_artifact(
    fingerprint: str = typer.Argument(..., help="Full fingerprint of the artifact"),
    store_dir: Path | None = typer.Option(None, "--store", help="Artifact store directory"),
) -> None:
    """Remove one artifact so its unit re-executes on the next run."""
    setup_logging()
    try:
        removed = make_store(store_dir).invalidate(fingerprint)
    except (ReproError, ValueError) as e:
        exit_with_error(e)

    if not removed:
        console.print(f"[yellow]No artifact for {fingerprint}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Invalidated[/green] {fingerprint}")


@app.command("prune")
def prune_artifacts(
    pipeline: str = typer.Argument(..., help="Pipeline whose current artifacts are kept"),
    store_dir: Path | None = typer.Option(None, "--store", help="Artifact store directory"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete artifacts not referenced by the pipeline's current fingerprints."""
    setup_logging()
    graph = load_pipeline(pipeline)
    store = make_store(store_dir)
    try:
        keep = set(fingerprint_all(graph[uid] for uid in graph.topological_order()).values())
    except ReproError as e:
        exit_with_error(e)

    stale = [meta for meta in store.list_artifacts() if meta.fingerprint not in keep]
    if not stale:
        console.print("[dim]Nothing to prune.[/dim]")
        return

    if not yes:
        typer.confirm(f"Delete {len(stale)} stale artifact(s)?", abort=True)

    removed = store.prune(keep)
    console.print(f"[green]Pruned[/green] {len(removed)} artifact(s)")
