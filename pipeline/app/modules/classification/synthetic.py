from __future__ import annotations

from pipeline.app.schemas.artifacts import JobRunArtifact, TestCaseRecord


SYNTHETIC_SUITE = "sippy"

INFRASTRUCTURE_TEST = "[sig-sippy] infrastructure should work"
TESTS_FINISHED_TEST = "[sig-sippy] openshift-tests should work"
UPGRADE_TEST = "[sig-sippy] upgrade should work"


class SyntheticTestClassifier:
    """Adds pass/fail tests derived from the run as a whole rather than from its own results."""

    def __init__(self, suite: str = SYNTHETIC_SUITE) -> None:
        self.suite = suite

    def _name(self, test: str) -> str:
        return f"{self.suite}.{test}"

    def synthesize(self, artifact: JobRunArtifact) -> list[TestCaseRecord]:
        existing = {case.name for case in artifact.tests}
        synthetic: list[TestCaseRecord] = [
            TestCaseRecord(
                name=self._name(INFRASTRUCTURE_TEST),
                status="failed" if artifact.infrastructure_failure else "passed",
            )
        ]

        if not artifact.infrastructure_failure and artifact.outcome in {"success", "failure"}:
            any_failed = any(case.status == "failed" for case in artifact.tests)
            synthetic.append(
                TestCaseRecord(name=self._name(TESTS_FINISHED_TEST), status="failed" if any_failed else "passed")
            )

        if "upgrade" in artifact.job and not artifact.infrastructure_failure:
            upgrade_failed = any(case.status == "failed" and "[sig-upgrade]" in case.name for case in artifact.tests)
            synthetic.append(
                TestCaseRecord(name=self._name(UPGRADE_TEST), status="failed" if upgrade_failed else "passed")
            )

        return [case for case in synthetic if case.name not in existing]
