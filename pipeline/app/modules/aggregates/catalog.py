from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from pipeline.app.db.models import TestStatus


NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")


@dataclass(frozen=True)
class Lookback:
    """A point ``days`` before the time the aggregate is (re)computed."""

    days: int

    def render(self, dialect: str) -> str:
        if dialect == "postgresql":
            return "NOW()" if self.days == 0 else f"NOW() - INTERVAL '{self.days} DAY'"
        if dialect == "sqlite":
            return "datetime('now')" if self.days == 0 else f"datetime('now', '-{self.days} days')"
        raise ValueError(f"no time expression for dialect {dialect}")

    def to_json(self) -> dict[str, object]:
        return {"lookback_days": self.days}


@dataclass(frozen=True)
class DialectFragment:
    sql: Mapping[str, str]

    def render(self, dialect: str) -> str:
        if dialect not in self.sql:
            raise ValueError(f"no fragment for dialect {dialect}")
        return self.sql[dialect]

    def to_json(self) -> dict[str, object]:
        return {"fragment": dict(sorted(self.sql.items()))}


Parameter = Lookback | DialectFragment


@dataclass(frozen=True)
class AggregateSpec:
    name: str
    template: str
    parameters: Mapping[str, Parameter] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not NAME_PATTERN.match(self.name):
            raise ValueError(f"invalid aggregate name {self.name!r}")

    def render(self, dialect: str) -> str:
        sql = self.template
        for key, parameter in self.parameters.items():
            sql = sql.replace(f"|||{key}|||", parameter.render(dialect))
        if "|||" in sql:
            raise ValueError(f"aggregate {self.name} has unresolved placeholders")
        return sql

    def parameters_json(self) -> dict[str, object]:
        return {key: parameter.to_json() for key, parameter in sorted(self.parameters.items())}


S, F, FL = int(TestStatus.SUCCESS), int(TestStatus.FAILURE), int(TestStatus.FLAKE)

VARIANTS_KEY = DialectFragment(
    {
        "postgresql": "CAST(jobs.variants AS JSONB)",
        "sqlite": "jobs.variants",
    }
)

VARIANT_JOIN = DialectFragment(
    {
        "postgresql": "CROSS JOIN LATERAL json_array_elements_text(jobs.variants) AS variant_rows(value)",
        "sqlite": "JOIN json_each(jobs.variants) AS variant_rows",
    }
)

TEST_REPORT_TEMPLATE = f"""
SELECT
    tests.name AS name,
    COUNT(CASE WHEN test_results.status = {S} AND test_results.timestamp BETWEEN |||START||| AND |||BOUNDARY||| THEN 1 END) AS previous_successes,
    COUNT(CASE WHEN test_results.status = {FL} AND test_results.timestamp BETWEEN |||START||| AND |||BOUNDARY||| THEN 1 END) AS previous_flakes,
    COUNT(CASE WHEN test_results.status = {F} AND test_results.timestamp BETWEEN |||START||| AND |||BOUNDARY||| THEN 1 END) AS previous_failures,
    COUNT(CASE WHEN test_results.timestamp BETWEEN |||START||| AND |||BOUNDARY||| THEN 1 END) AS previous_runs,
    COUNT(CASE WHEN test_results.status = {S} AND test_results.timestamp BETWEEN |||BOUNDARY||| AND |||END||| THEN 1 END) AS current_successes,
    COUNT(CASE WHEN test_results.status = {FL} AND test_results.timestamp BETWEEN |||BOUNDARY||| AND |||END||| THEN 1 END) AS current_flakes,
    COUNT(CASE WHEN test_results.status = {F} AND test_results.timestamp BETWEEN |||BOUNDARY||| AND |||END||| THEN 1 END) AS current_failures,
    COUNT(CASE WHEN test_results.timestamp BETWEEN |||BOUNDARY||| AND |||END||| THEN 1 END) AS current_runs,
    |||VARIANTS||| AS variants,
    jobs.release AS release
FROM test_results
    JOIN tests ON tests.id = test_results.test_id
    JOIN job_runs ON job_runs.id = test_results.job_run_id
    JOIN jobs ON jobs.id = job_runs.job_id
GROUP BY tests.name, |||VARIANTS|||, jobs.release
"""

TEST_ANALYSIS_BY_VARIANT_TEMPLATE = f"""
SELECT
    tests.id AS test_id,
    tests.name AS test_name,
    date(test_results.timestamp) AS date,
    variant_rows.value AS variant,
    jobs.release AS release,
    COUNT(*) AS runs,
    COUNT(CASE WHEN test_results.status = {S} THEN 1 END) AS passes,
    COUNT(CASE WHEN test_results.status = {FL} THEN 1 END) AS flakes,
    COUNT(CASE WHEN test_results.status = {F} THEN 1 END) AS failures
FROM test_results
    JOIN tests ON tests.id = test_results.test_id
    JOIN job_runs ON job_runs.id = test_results.job_run_id
    JOIN jobs ON jobs.id = job_runs.job_id
    |||VARIANT_JOIN|||
WHERE test_results.timestamp > |||START|||
GROUP BY tests.id, tests.name, date(test_results.timestamp), variant_rows.value, jobs.release
"""

TEST_ANALYSIS_BY_JOB_TEMPLATE = f"""
SELECT
    tests.id AS test_id,
    tests.name AS test_name,
    date(test_results.timestamp) AS date,
    jobs.release AS release,
    jobs.name AS job_name,
    COUNT(*) AS runs,
    COUNT(CASE WHEN test_results.status = {S} THEN 1 END) AS passes,
    COUNT(CASE WHEN test_results.status = {FL} THEN 1 END) AS flakes,
    COUNT(CASE WHEN test_results.status = {F} THEN 1 END) AS failures
FROM test_results
    JOIN tests ON tests.id = test_results.test_id
    JOIN job_runs ON job_runs.id = test_results.job_run_id
    JOIN jobs ON jobs.id = job_runs.job_id
WHERE test_results.timestamp > |||START|||
GROUP BY tests.id, tests.name, date(test_results.timestamp), jobs.release, jobs.name
"""

DEFAULT_CATALOG: tuple[AggregateSpec, ...] = (
    AggregateSpec(
        name="prow_test_report_7d_matview",
        template=TEST_REPORT_TEMPLATE,
        parameters={
            "START": Lookback(14),
            "BOUNDARY": Lookback(7),
            "END": Lookback(0),
            "VARIANTS": VARIANTS_KEY,
        },
    ),
    AggregateSpec(
        name="prow_test_analysis_by_variant_14d_matview",
        template=TEST_ANALYSIS_BY_VARIANT_TEMPLATE,
        parameters={"START": Lookback(14), "VARIANT_JOIN": VARIANT_JOIN},
    ),
    AggregateSpec(
        name="prow_test_analysis_by_job_14d_matview",
        template=TEST_ANALYSIS_BY_JOB_TEMPLATE,
        parameters={"START": Lookback(14)},
    ),
    AggregateSpec(
        name="prow_test_report_2d_matview",
        template=TEST_REPORT_TEMPLATE,
        parameters={
            "START": Lookback(9),
            "BOUNDARY": Lookback(2),
            "END": Lookback(0),
            "VARIANTS": VARIANTS_KEY,
        },
    ),
)
