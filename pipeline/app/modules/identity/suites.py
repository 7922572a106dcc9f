from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import func, select, update

from pipeline.app.db.models import Test, TestOwnership, TestResult
from pipeline.app.db.session import build_session_factory
from pipeline.app.db.store import CanonicalStore
from pipeline.app.errors import RegistryUnavailableError, StoreError


logger = logging.getLogger(__name__)

# Known suites that prefix test names as "<suite>.<test name>". The suite is
# stored on each result so the same test can be compared across suites.
KNOWN_SUITES: tuple[str, ...] = (
    "openshift-tests",
    "openshift-tests-upgrade",
    "sippy",
)

SEPARATOR = "."


class SuiteRegistry:
    def __init__(self, suites: Iterable[str]) -> None:
        # Longest first so a suite that is itself a prefix of another never shadows it.
        self._prefixes = tuple(sorted(set(suites), key=lambda s: (-len(s), s)))

    def __contains__(self, suite: str) -> bool:
        return suite in self._prefixes

    def __len__(self) -> int:
        return len(self._prefixes)

    @property
    def suites(self) -> tuple[str, ...]:
        return self._prefixes

    def split(self, raw_name: str) -> tuple[str | None, str]:
        for prefix in self._prefixes:
            marker = prefix + SEPARATOR
            if raw_name.startswith(marker) and len(raw_name) > len(marker):
                return prefix, raw_name[len(marker) :]
        return None, raw_name


def seed_registry(store: CanonicalStore, suites: Iterable[str] = KNOWN_SUITES) -> SuiteRegistry:
    created = store.seed_suites(suites)
    logger.info("suite registry seeded with %d suites", len(created))
    return SuiteRegistry(created)


def load_registry(store: CanonicalStore) -> tuple[SuiteRegistry, dict[str, int]]:
    """Read the persisted suites. Raises ``RegistryUnavailableError`` when none can be read."""
    try:
        suite_ids = store.suites()
    except StoreError as exc:
        raise RegistryUnavailableError(f"suite registry could not be read: {exc}") from exc
    if not suite_ids:
        raise RegistryUnavailableError("suite registry is empty; run init-db first")
    return SuiteRegistry(suite_ids), suite_ids


@dataclass
class BackfillReport:
    suite: str
    tests_renamed: int = 0
    tests_merged: int = 0
    results_moved: int = 0


def backfill_suite(store: CanonicalStore, prefix: str) -> BackfillReport:
    """Reassign tests stored with a ``<prefix>.`` name to the stripped name and that suite.

    Administrative only: this rewrites historical rows and is never run as
    part of a load cycle. Tests whose name already exists in stripped form are
    merged into it; their results take invocation numbers after the existing
    ones for the same run.
    """
    suite_ids = store.seed_suites([prefix])
    registry = SuiteRegistry(suite_ids)
    suite_id = suite_ids[prefix]
    report = BackfillReport(suite=prefix)

    with build_session_factory(store.engine)() as db, db.begin():
        candidates = db.scalars(
            select(Test).where(Test.name.startswith(prefix + SEPARATOR, autoescape=True)).order_by(Test.id)
        ).all()
        for test in candidates:
            matched, canonical = registry.split(test.name)
            if matched != prefix:
                continue
            target = db.scalar(select(Test).where(Test.name == canonical))
            if target is None:
                test.name = canonical
                moved = db.execute(
                    update(TestResult).where(TestResult.test_id == test.id).values(suite_id=suite_id)
                ).rowcount
                report.tests_renamed += 1
                report.results_moved += moved or 0
                continue

            results = db.scalars(select(TestResult).where(TestResult.test_id == test.id).order_by(TestResult.id)).all()
            for result in results:
                next_invocation = db.scalar(
                    select(func.coalesce(func.max(TestResult.invocation) + 1, 0)).where(
                        TestResult.job_run_id == result.job_run_id, TestResult.test_id == target.id
                    )
                )
                result.test_id = target.id
                result.suite_id = suite_id
                result.invocation = next_invocation
                db.flush()
                report.results_moved += 1

            for bug in list(test.bugs):
                if bug not in target.bugs:
                    target.bugs.append(bug)
            db.execute(update(TestOwnership).where(TestOwnership.test_id == test.id).values(test_id=target.id))
            db.flush()
            db.delete(test)
            report.tests_merged += 1

    logger.info(
        "backfilled suite %s: %d tests renamed, %d merged, %d results moved",
        prefix,
        report.tests_renamed,
        report.tests_merged,
        report.results_moved,
    )
    return report
