from __future__ import annotations

from dataclasses import replace

from sqlalchemy import func, select, text
from typer.testing import CliRunner

from cli.ingest_cli import main as cli_main
from pipeline.app.config import Settings
from pipeline.app.db import models
from pipeline.app.errors import ConnectorError
from pipeline.app.modules.classification.variants import JobNameVariantClassifier
from pipeline.app.modules.loaders.bugs import BugLoader
from pipeline.app.modules.loaders.context import LoadContext
from pipeline.app.modules.loaders.job_runs import JobRunLoader
from pipeline.app.modules.loaders.releases import ReleasePayloadLoader
from worker.app import runner
from worker.app.runner import build_connectors, build_loaders, init_database, run_cycle, run_once


class DownTracker:
    def find_issues_for_tests(self, names, timeout=None):
        raise ConnectorError("tracker unreachable")


class TagWarehouse:
    def query(self, sql: str, params: dict | None = None) -> list[dict]:
        if "FROM release_tags" in sql:
            return [
                {
                    "name": "4.16.0-0.nightly-2026-10-17-000000",
                    "release": "4.16",
                    "architecture": "amd64",
                    "phase": "Accepted",
                    "forced": False,
                }
            ]
        return []


def _write_runs(write_artifact, make_artifact) -> None:
    write_artifact(
        "1001",
        make_artifact(
            "1001",
            tests=[
                {"name": "openshift-tests.Pods should run", "status": "passed"},
                {"name": "openshift-tests.Services should serve", "status": "failed"},
            ],
        ),
    )
    write_artifact(
        "1002",
        make_artifact(
            "1002",
            tests=[
                {"name": "openshift-tests.Pods should run", "status": "passed"},
                {"name": "Services should serve", "status": "passed"},
            ],
        ),
    )
    write_artifact("1003", '{"id": "1003", "job": ')


def _job_run_loader(store, storage) -> JobRunLoader:
    return JobRunLoader(store, storage, JobNameVariantClassifier(), prefix="runs")


def test_cycle_loads_runs_and_refreshes_aggregates(store, storage, write_artifact, make_artifact) -> None:
    init_database(store)
    _write_runs(write_artifact, make_artifact)

    outcome = run_cycle(store, [_job_run_loader(store, storage)], LoadContext())

    assert not outcome.failed
    assert outcome.item_errors == 1
    assert outcome.aggregates.ok
    assert store.test_names() == ["Pods should run", "Services should serve"]
    with store.engine.connect() as conn:
        runs = conn.execute(select(func.count()).select_from(models.JobRun)).scalar_one()
        report = {
            row.name: row
            for row in conn.execute(
                text("SELECT name, current_runs, current_successes, current_failures FROM prow_test_report_7d_matview")
            )
        }
    assert runs == 2
    assert report["Pods should run"].current_runs == 2
    assert report["Pods should run"].current_successes == 2
    assert report["Services should serve"].current_runs == 2
    assert report["Services should serve"].current_failures == 1


def test_tracker_failure_does_not_stop_other_loaders(store, storage, write_artifact, make_artifact) -> None:
    init_database(store)
    _write_runs(write_artifact, make_artifact)
    loaders = [
        _job_run_loader(store, storage),
        ReleasePayloadLoader(store, TagWarehouse(), ["4.16"], ["amd64"]),
        BugLoader(store, DownTracker()),
    ]

    outcome = run_cycle(store, loaders, LoadContext())

    assert outcome.failed
    assert [err.loader for err in outcome.errors] == ["bugs"]
    assert outcome.errors[0].code == "CONNECTOR_UNAVAILABLE"
    assert outcome.summary[0].startswith("prow: ok")
    assert outcome.summary[1].startswith("releases: ok")
    assert outcome.aggregates.ok
    with store.engine.connect() as conn:
        assert conn.execute(select(func.count()).select_from(models.JobRun)).scalar_one() == 2
        assert conn.execute(select(func.count()).select_from(models.ReleaseTag)).scalar_one() == 1


def test_run_once_from_settings(store, artifact_root, write_artifact, make_artifact) -> None:
    init_database(store)
    _write_runs(write_artifact, make_artifact)
    config = Settings(artifact_local_dir=str(artifact_root), loaders=("prow", "bugs", "releases"))

    outcome = run_once(config, store=store)
    again = run_once(config, store=store)

    assert not outcome.failed
    assert outcome.item_errors == 1
    assert again.item_errors == 0
    names = store.test_names()
    assert "Pods should run" in names
    assert "[sig-sippy] infrastructure should work" in names


def test_run_once_closes_connectors(monkeypatch, store, artifact_root) -> None:
    init_database(store)
    config = Settings(
        artifact_local_dir=str(artifact_root), loaders=("prow",), tracker_url="https://issues.example.test"
    )
    built = []

    def recording(config, selected):
        built.append(build_connectors(config, selected))
        return built[-1]

    monkeypatch.setattr(runner, "build_connectors", recording)

    run_once(config, store=store)

    assert built[0].tracker.client.closed


def test_connectors_close_every_client() -> None:
    config = Settings(tracker_url="https://issues.example.test")

    with build_connectors(config, ["github"]) as connectors:
        clients = [connectors.tracker.client, connectors.source_host.client]
        assert not any(client.closed for client in clients)

    assert all(client.closed for client in clients)


def test_unknown_loader_is_rejected(store) -> None:
    config = Settings(loaders=("prow", "nope"))
    connectors = build_connectors(config, config.loaders)

    try:
        build_loaders(config, store, connectors, config.loaders)
    except ValueError as exc:
        assert "nope" in str(exc)
    else:
        raise AssertionError("unknown loader accepted")


def test_cli_load_reports_summary(monkeypatch, store, artifact_root, write_artifact, make_artifact) -> None:
    _write_runs(write_artifact, make_artifact)
    config = replace(Settings(), artifact_local_dir=str(artifact_root))
    monkeypatch.setattr(cli_main, "settings", config)
    monkeypatch.setattr(cli_main, "_store", lambda: store)

    result = CliRunner().invoke(cli_main.app, ["load", "--loader", "prow", "--init-database", "--output", "json"])

    assert result.exit_code == cli_main.EXIT_SUCCESS, result.output
    assert '"item_errors": 1' in result.output


def test_cli_rejects_unknown_loader(monkeypatch, store) -> None:
    monkeypatch.setattr(cli_main, "_store", lambda: store)

    result = CliRunner().invoke(cli_main.app, ["load", "--loader", "nope"])

    assert result.exit_code == cli_main.EXIT_VALIDATION
