from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import inspect, text

from pipeline.app.modules.aggregates.catalog import (
    DEFAULT_CATALOG,
    AggregateSpec,
    DialectFragment,
    Lookback,
    TEST_REPORT_TEMPLATE,
)
from pipeline.app.modules.aggregates.service import AggregateMaintainer


NAMES = [aggregate.name for aggregate in DEFAULT_CATALOG]


def _seed_results(store, statuses: list[int], days_ago: float = 1) -> None:
    job_ids = store.upsert_jobs([{"name": "job-a", "release": "4.16", "variants": ["aws", "ovn"], "never_stable": False}])
    test_ids = store.ensure_tests(["test-a"])
    started = datetime.now(timezone.utc) - timedelta(days=days_ago)
    external = f"run-{days_ago}"
    run_ids = store.insert_job_runs(
        [{"job_id": job_ids["job-a"], "external_id": external, "started_at": started, "outcome": "success"}]
    )
    store.insert_test_results(
        [
            {
                "job_run_id": run_ids[external],
                "test_id": test_ids["test-a"],
                "invocation": i,
                "status": status,
                "timestamp": started,
            }
            for i, status in enumerate(statuses)
        ]
    )


def test_lookback_renders_per_dialect() -> None:
    assert Lookback(14).render("postgresql") == "NOW() - INTERVAL '14 DAY'"
    assert Lookback(0).render("postgresql") == "NOW()"
    assert Lookback(7).render("sqlite") == "datetime('now', '-7 days')"
    with pytest.raises(ValueError):
        Lookback(1).render("oracle")


def test_render_substitutes_every_placeholder() -> None:
    aggregate = DEFAULT_CATALOG[0]
    rendered = aggregate.render("postgresql")

    assert "|||" not in rendered
    assert "NOW() - INTERVAL '14 DAY'" in rendered
    assert "CAST(jobs.variants AS JSONB)" in rendered


def test_unresolved_placeholder_is_rejected() -> None:
    aggregate = AggregateSpec(name="broken_matview", template=TEST_REPORT_TEMPLATE, parameters={"START": Lookback(1)})
    with pytest.raises(ValueError):
        aggregate.render("sqlite")


def test_invalid_name_is_rejected() -> None:
    with pytest.raises(ValueError):
        AggregateSpec(name="drop table; --", template="SELECT 1")


def test_ensure_creates_then_is_noop(store) -> None:
    maintainer = AggregateMaintainer(store)

    first = maintainer.ensure()
    second = maintainer.ensure()

    assert first.ok and second.ok
    assert first.created == NAMES
    assert second.created == []
    assert second.recreated == []
    assert all(maintainer.exists(name) for name in NAMES)
    assert store.aggregate_definition(NAMES[0]).parameters == DEFAULT_CATALOG[0].parameters_json()


def test_refresh_reflects_new_rows(store) -> None:
    maintainer = AggregateMaintainer(store)
    maintainer.ensure()
    _seed_results(store, [1, 12, 13])

    report = maintainer.refresh()

    assert report.ok
    assert report.refreshed == NAMES
    with store.engine.connect() as conn:
        row = conn.execute(
            text(
                "SELECT name, current_runs, current_successes, current_failures, current_flakes, previous_runs "
                "FROM prow_test_report_7d_matview"
            )
        ).one()
        variants = conn.execute(
            text("SELECT variant, runs FROM prow_test_analysis_by_variant_14d_matview ORDER BY variant")
        ).all()
    assert tuple(row) == ("test-a", 3, 1, 1, 1, 0)
    assert [tuple(v) for v in variants] == [("aws", 3), ("ovn", 3)]


def test_refresh_splits_previous_and_current_windows(store) -> None:
    maintainer = AggregateMaintainer(store)
    _seed_results(store, [1], days_ago=10)
    _seed_results(store, [12], days_ago=1)

    report = maintainer.refresh()

    assert report.created == NAMES
    with store.engine.connect() as conn:
        row = conn.execute(
            text(
                "SELECT previous_runs, previous_successes, current_runs, current_failures "
                "FROM prow_test_report_7d_matview"
            )
        ).one()
    assert tuple(row) == (1, 1, 1, 1)


def test_changed_definition_is_recreated(store) -> None:
    original = AggregateSpec(name="custom_matview", template="SELECT name FROM tests")
    AggregateMaintainer(store, [original]).ensure()

    changed = AggregateSpec(
        name="custom_matview",
        template="SELECT name, |||LABEL||| AS label FROM tests",
        parameters={"LABEL": DialectFragment({"sqlite": "'x'", "postgresql": "'x'"})},
    )
    report = AggregateMaintainer(store, [changed]).refresh()

    assert report.recreated == ["custom_matview"]
    columns = {c["name"] for c in inspect(store.engine).get_columns("custom_matview")}
    assert columns == {"name", "label"}


def test_one_broken_aggregate_does_not_block_others(store) -> None:
    broken = AggregateSpec(name="broken_matview", template="SELECT nope FROM missing_table")
    catalog = [broken, *DEFAULT_CATALOG]

    report = AggregateMaintainer(store, catalog).ensure()

    assert list(report.failed) == ["broken_matview"]
    assert report.created == NAMES
