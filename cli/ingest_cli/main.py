from __future__ import annotations

import json
from dataclasses import asdict, replace
from typing import Any

import typer

from pipeline.app.config import settings
from pipeline.app.db.session import engine
from pipeline.app.db.store import CanonicalStore
from pipeline.app.errors import PipelineError
from pipeline.app.logs import configure_logging
from pipeline.app.modules.aggregates.service import AggregateMaintainer, AggregateReport
from pipeline.app.modules.identity.suites import backfill_suite
from worker.app.runner import init_database, run_once


app = typer.Typer(help="CI results ingestion pipeline")


EXIT_SUCCESS = 0
EXIT_LOAD_FAILED = 1
EXIT_VALIDATION = 2
EXIT_STORE_ERROR = 3


def _store() -> CanonicalStore:
    return CanonicalStore(engine, batch_size=settings.db_batch_size)


def _print(payload: Any, output: str) -> None:
    if output == "json":
        typer.echo(json.dumps(payload, indent=2, default=str))
    elif isinstance(payload, dict):
        for key, value in payload.items():
            typer.echo(f"{key}: {value}")
    elif isinstance(payload, list):
        for item in payload:
            typer.echo(str(item))
    else:
        typer.echo(str(payload))


def _aggregate_payload(report: AggregateReport) -> dict[str, Any]:
    return asdict(report)


@app.callback()
def main(log_level: str = typer.Option(settings.log_level, "--log-level")) -> None:
    configure_logging(log_level)


@app.command("init-db")
def init_db(output: str = typer.Option("text", "--output")) -> None:
    """Create tables, seed the suite registry and create missing aggregates."""
    try:
        report = init_database(_store())
    except PipelineError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=EXIT_STORE_ERROR) from exc
    _print(_aggregate_payload(report), output)


@app.command("load")
def load(
    loader: list[str] = typer.Option(list(settings.loaders), "--loader"),
    release: list[str] = typer.Option(list(settings.releases), "--release"),
    arch: list[str] = typer.Option(list(settings.architectures), "--arch"),
    init: bool = typer.Option(False, "--init-database"),
    output: str = typer.Option("text", "--output"),
) -> None:
    """Run the selected loaders once, then refresh aggregates."""
    config = replace(settings, loaders=tuple(loader), releases=tuple(release), architectures=tuple(arch))
    store = _store()
    try:
        if init:
            init_database(store)
        outcome = run_once(config, store=store)
    except ValueError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=EXIT_VALIDATION) from exc
    except PipelineError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=EXIT_STORE_ERROR) from exc

    payload = {
        "loaders": outcome.summary,
        "item_errors": outcome.item_errors,
        "errors": [str(err) for err in outcome.errors],
        "aggregates": _aggregate_payload(outcome.aggregates) if outcome.aggregates else None,
        "elapsed_seconds": round(outcome.elapsed_seconds, 1),
    }
    _print(payload, output)
    if outcome.failed:
        typer.echo("errors were encountered while loading database, see logs for details", err=True)
        raise typer.Exit(code=EXIT_LOAD_FAILED)


@app.command("refresh-aggregates")
def refresh_aggregates(output: str = typer.Option("text", "--output")) -> None:
    report = AggregateMaintainer(_store()).refresh()
    _print(_aggregate_payload(report), output)
    if not report.ok:
        raise typer.Exit(code=EXIT_STORE_ERROR)


@app.command("backfill-suite")
def backfill(
    prefix: str = typer.Argument(...),
    output: str = typer.Option("text", "--output"),
) -> None:
    """Move tests stored as "<prefix>.<name>" under the suite <prefix>."""
    try:
        report = backfill_suite(_store(), prefix)
    except PipelineError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=EXIT_STORE_ERROR) from exc
    _print(asdict(report), output)


if __name__ == "__main__":
    app()
