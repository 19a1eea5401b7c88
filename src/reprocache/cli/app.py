"""
Root Typer application for the reprocache CLI.

Commands:
    reprocache run MODULE:ATTR        execute outdated units
    reprocache outdated MODULE:ATTR   list units a run would execute
    reprocache graph MODULE:ATTR      print the graph as Mermaid
    reprocache store ...              inspect and maintain the artifact store
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table
from typer import Typer

from reprocache import __version__
from reprocache.cli.store import app as store_app
from reprocache.cli.utils import (
    console,
    err_console,
    exit_with_error,
    load_pipeline,
    make_store,
    print_json,
    setup_logging,
)
from reprocache.core.errors import ReproError
from reprocache.core.settings import get_settings
from reprocache.execution.cancellation import CancelToken, cancel_on_signal
from reprocache.orchestration.outdated import outdated as plan_outdated
from reprocache.orchestration.runner import PipelineRunner, RunReport, RunStatus, UnitState
from reprocache.orchestration.visualizer import visualize_mermaid

app = Typer(
    name="reprocache",
    help="reprocache — fingerprinted, cached pipeline execution.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_STATE_STYLES = {
    UnitState.DONE: "green",
    UnitState.FAILED: "bold red",
    UnitState.SKIPPED: "yellow",
}

_STATUS_STYLES = {
    RunStatus.SUCCESS: "bold green",
    RunStatus.PARTIAL: "bold yellow",
    RunStatus.FAILED: "bold red",
    RunStatus.CANCELLED: "bold yellow",
}


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"reprocache {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """reprocache CLI — run pipelines, check what is outdated, manage artifacts."""


# ── Commands ─────────────────────────────────────────────────────────────


def _render_report(report: RunReport) -> None:
    table = Table(title=f"Run {report.run_id} ({report.graph_name})", pad_edge=False)
    table.add_column("unit")
    table.add_column("state")
    table.add_column("fingerprint")
    table.add_column("seconds", justify="right")
    table.add_column("note", overflow="fold")

    for record in report.units:
        if record.cached:
            state, note = "cached", ""
        else:
            state = record.state.value
            note = record.skip_reason.value if record.skip_reason else (record.error.message if record.error else "")
        style = _STATE_STYLES.get(record.state, "")
        duration = f"{record.duration_seconds:.3f}" if record.duration_seconds is not None else "-"
        table.add_row(
            record.unit_id,
            f"[{style}]{state}[/{style}]" if style else state,
            (record.fingerprint or "")[:12],
            duration,
            escape(note),
        )

    console.print(table)
    style = _STATUS_STYLES[report.status]
    console.print(
        f"[{style}]{report.status.value.upper()}[/{style}]  "
        f"executed={len(report.executed)} cached={len(report.cache_hits)} "
        f"failed={len(report.failed)} skipped={len(report.skipped)}"
    )


@app.command("run")
def run_pipeline(
    pipeline: str = typer.Argument(..., help="Pipeline reference, MODULE:ATTR or FILE.py:ATTR"),
    targets: list[str] | None = typer.Option(None, "--target", "-t", help="Only run these units (and their upstream)"),
    workers: int | None = typer.Option(None, "--workers", "-w", min=1, help="Units executed concurrently"),
    force: bool = typer.Option(False, "--force", help="Re-execute units even when cached"),
    store_dir: Path | None = typer.Option(None, "--store", help="Artifact store directory"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a pipeline, executing only outdated units."""
    setup_logging()
    graph = load_pipeline(pipeline)
    store = make_store(store_dir)
    runner = PipelineRunner(store, max_workers=workers or get_settings().max_workers, force=force)

    try:
        with cancel_on_signal(CancelToken()) as token:
            report = runner.run(graph, targets=targets or None, cancel=token)
    except (ReproError, KeyError) as e:
        exit_with_error(e)

    if json_out:
        print_json(report.to_dict())
    else:
        _render_report(report)
        for record in report.units:
            if record.error is not None and getattr(record.error, "traceback", None):
                err_console.print(f"[dim]{record.unit_id}:[/dim]\n{escape(record.error.traceback)}")

    if report.status != RunStatus.SUCCESS:
        raise typer.Exit(code=1)


@app.command("outdated")
def outdated_units(
    pipeline: str = typer.Argument(..., help="Pipeline reference, MODULE:ATTR or FILE.py:ATTR"),
    targets: list[str] | None = typer.Option(None, "--target", "-t"),
    store_dir: Path | None = typer.Option(None, "--store", help="Artifact store directory"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the units a run would execute (nothing is executed)."""
    setup_logging()
    graph = load_pipeline(pipeline)
    try:
        report = plan_outdated(graph, make_store(store_dir), targets=targets or None)
    except (ReproError, KeyError) as e:
        exit_with_error(e)

    if json_out:
        print_json(report.to_dict())
    else:
        console.print(report.summary(), highlight=False, markup=False)


@app.command("graph")
def show_graph(
    pipeline: str = typer.Argument(..., help="Pipeline reference, MODULE:ATTR or FILE.py:ATTR"),
    status: bool = typer.Option(False, "--status", help="Colour units by cache status"),
    direction: str = typer.Option("LR", "--direction", "-d", help="LR or TD"),
    store_dir: Path | None = typer.Option(None, "--store", help="Artifact store directory"),
) -> None:
    """Print the dependency graph as a Mermaid diagram."""
    setup_logging()
    graph = load_pipeline(pipeline)
    statuses = None
    if status:
        try:
            statuses = plan_outdated(graph, make_store(store_dir)).statuses()
        except ReproError as e:
            exit_with_error(e)
    typer.echo(visualize_mermaid(graph, statuses=statuses, direction=direction))


app.add_typer(store_app, name="store", help="Artifact store maintenance.")


if __name__ == "__main__":  # pragma: no cover
    app()
