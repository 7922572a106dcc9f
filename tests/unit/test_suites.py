from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from pipeline.app.db import models
from pipeline.app.errors import RegistryUnavailableError
from pipeline.app.modules.identity.suites import KNOWN_SUITES, SuiteRegistry, backfill_suite, load_registry


def test_split_registered_prefix() -> None:
    registry = SuiteRegistry(KNOWN_SUITES)

    assert registry.split("openshift-tests.Some Test Name") == ("openshift-tests", "Some Test Name")
    assert registry.split("sippy.[sig-sippy] infrastructure should work") == (
        "sippy",
        "[sig-sippy] infrastructure should work",
    )


def test_split_prefers_longest_prefix() -> None:
    registry = SuiteRegistry(["openshift-tests", "openshift-tests-upgrade"])

    assert registry.split("openshift-tests-upgrade.[sig-upgrade] cluster upgrade") == (
        "openshift-tests-upgrade",
        "[sig-upgrade] cluster upgrade",
    )


def test_split_overlapping_dotted_suites() -> None:
    registry = SuiteRegistry(["conformance", "conformance.serial"])

    assert registry.split("conformance.serial.Pods should run") == ("conformance.serial", "Pods should run")
    assert registry.split("conformance.Pods should run") == ("conformance", "Pods should run")


def test_unmatched_name_is_verbatim() -> None:
    registry = SuiteRegistry(KNOWN_SUITES)

    assert registry.split("[sig-network] Services should serve") == (None, "[sig-network] Services should serve")
    assert registry.split("openshift-testsuite.thing") == (None, "openshift-testsuite.thing")
    assert registry.split("openshift-tests.") == (None, "openshift-tests.")


def test_load_registry_requires_seeded_suites(store) -> None:
    with pytest.raises(RegistryUnavailableError):
        load_registry(store)


def test_load_registry_after_seeding(seeded_store) -> None:
    registry, suite_ids = load_registry(seeded_store)

    assert set(registry.suites) == set(KNOWN_SUITES)
    assert set(suite_ids) == set(KNOWN_SUITES)


def _add_run(db: Session, external_id: str) -> models.JobRun:
    job = db.scalar(select(models.Job).where(models.Job.name == "job-a"))
    if job is None:
        job = models.Job(name="job-a", release="4.16", variants=[])
        db.add(job)
        db.flush()
    run = models.JobRun(
        job_id=job.id,
        external_id=external_id,
        started_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
        outcome="success",
    )
    db.add(run)
    db.flush()
    return run


def test_backfill_renames_and_merges(seeded_store) -> None:
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    with Session(seeded_store.engine) as db, db.begin():
        run = _add_run(db, "100")
        prefixed = models.Test(name="e2e-suite.Pods should run")
        lonely = models.Test(name="e2e-suite.Only prefixed")
        canonical = models.Test(name="Pods should run")
        db.add_all([prefixed, lonely, canonical])
        db.flush()
        db.add_all(
            [
                models.TestResult(job_run_id=run.id, test_id=canonical.id, invocation=0, status=1, timestamp=now),
                models.TestResult(job_run_id=run.id, test_id=prefixed.id, invocation=0, status=12, timestamp=now),
                models.TestResult(job_run_id=run.id, test_id=lonely.id, invocation=0, status=1, timestamp=now),
            ]
        )

    report = backfill_suite(seeded_store, "e2e-suite")

    assert report.tests_renamed == 1
    assert report.tests_merged == 1
    assert report.results_moved == 2

    suite_id = seeded_store.suites()["e2e-suite"]
    with Session(seeded_store.engine) as db:
        names = set(db.scalars(select(models.Test.name)))
        assert names == {"Pods should run", "Only prefixed"}

        target = db.scalar(select(models.Test).where(models.Test.name == "Pods should run"))
        results = db.scalars(
            select(models.TestResult).where(models.TestResult.test_id == target.id).order_by(models.TestResult.invocation)
        ).all()
        assert [r.invocation for r in results] == [0, 1]
        assert results[1].suite_id == suite_id
        assert results[1].status == 12

        renamed = db.scalar(select(models.Test).where(models.Test.name == "Only prefixed"))
        moved = db.scalar(select(models.TestResult).where(models.TestResult.test_id == renamed.id))
        assert moved.suite_id == suite_id


def test_backfill_is_repeatable(seeded_store) -> None:
    first = backfill_suite(seeded_store, "e2e-suite")
    second = backfill_suite(seeded_store, "e2e-suite")

    assert first.tests_renamed == second.tests_renamed == 0
    assert "e2e-suite" in seeded_store.suites()
