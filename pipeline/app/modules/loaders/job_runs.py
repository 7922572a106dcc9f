from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator, Sequence
from itertools import islice
from typing import Any

from pipeline.app.connectors.object_storage import ObjectStorageConnector
from pipeline.app.connectors.warehouse import WarehouseConnector
from pipeline.app.db.models import TestStatus
from pipeline.app.db.store import CanonicalStore
from pipeline.app.errors import ArtifactNotFound
from pipeline.app.modules.classification.synthetic import SyntheticTestClassifier
from pipeline.app.modules.classification.variants import VariantClassifier
from pipeline.app.modules.identity.suites import SuiteRegistry, load_registry
from pipeline.app.modules.loaders.base import DataLoader, LoadResult
from pipeline.app.modules.loaders.commenter import PullRequestCommenter
from pipeline.app.modules.loaders.context import LoadContext
from pipeline.app.schemas.artifacts import JobRunArtifact


logger = logging.getLogger(__name__)

HIGH_WATER_CATEGORY = "job_runs"

CASE_STATUS = {
    "passed": TestStatus.SUCCESS,
    "failed": TestStatus.FAILURE,
    "flaked": TestStatus.FLAKE,
}

WAREHOUSE_RUNS_QUERY = """
SELECT build_id AS run_id
FROM jobs
WHERE build_id > :since
ORDER BY build_id
"""


def _batches(ids: Iterable[str], size: int) -> Iterator[list[str]]:
    iterator = iter(ids)
    while batch := list(islice(iterator, size)):
        yield batch


class JobRunLoader(DataLoader):
    name = "prow"

    def __init__(
        self,
        store: CanonicalStore,
        storage: ObjectStorageConnector,
        classifier: VariantClassifier,
        *,
        prefix: str,
        batch_size: int = 100,
        synthetic: SyntheticTestClassifier | None = None,
        warehouse: WarehouseConnector | None = None,
        releases: Sequence[str] = (),
        commenter: PullRequestCommenter | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.classifier = classifier
        self.prefix = prefix
        self.batch_size = batch_size
        self.synthetic = synthetic
        self.warehouse = warehouse
        self.releases = set(releases)
        self.commenter = commenter

    def _candidate_ids(self, since: str | None) -> Iterable[str]:
        listed = self.storage.list_run_artifacts(self.prefix, since)
        if self.warehouse is None:
            return listed
        rows = self.warehouse.query(WAREHOUSE_RUNS_QUERY, {"since": since or ""})
        return sorted(set(listed) | {str(row["run_id"]) for row in rows})

    def load(self, ctx: LoadContext) -> LoadResult:
        registry, suite_ids = load_registry(self.store)
        result = LoadResult()
        since = self.store.high_water_mark(HIGH_WATER_CATEGORY)
        logger.info("loading job runs after %s", since or "the beginning")

        for batch in _batches(self._candidate_ids(since), self.batch_size):
            ctx.check()
            artifacts = self._fetch(ctx, batch, result)
            if artifacts:
                self._write(ctx, artifacts, registry, suite_ids, result)
            self.store.set_high_water_mark(HIGH_WATER_CATEGORY, batch[-1])
            if self.commenter is not None:
                self.commenter.handle(ctx, artifacts)
            logger.info("job run batch ending at %s stored (%d runs)", batch[-1], len(artifacts))

        if result.item_errors:
            logger.warning("%d job run artifacts were skipped", len(result.item_errors))
        return result

    def _fetch(self, ctx: LoadContext, batch: Sequence[str], result: LoadResult) -> list[JobRunArtifact]:
        artifacts: list[JobRunArtifact] = []
        for run_id in batch:
            ctx.check()
            try:
                raw = self.storage.fetch_artifact(run_id)
            except ArtifactNotFound as exc:
                result.skip(run_id, exc.message, code=exc.code)
                continue
            try:
                artifact = JobRunArtifact.model_validate_json(raw)
            except ValueError as exc:
                result.skip(run_id, f"malformed artifact: {exc}")
                continue
            if artifact.id != run_id:
                result.skip(run_id, f"artifact reports run id {artifact.id}")
                continue
            if self.releases and artifact.release not in self.releases:
                continue
            artifacts.append(artifact)
        return artifacts

    def _cases(self, artifact: JobRunArtifact):
        cases = list(artifact.tests)
        if self.synthetic is not None:
            cases.extend(self.synthetic.synthesize(artifact))
        return [case for case in cases if case.status in CASE_STATUS]

    def _write(
        self,
        ctx: LoadContext,
        artifacts: Sequence[JobRunArtifact],
        registry: SuiteRegistry,
        suite_ids: dict[str, int],
        result: LoadResult,
    ) -> None:
        jobs: dict[str, dict[str, Any]] = {}
        for artifact in artifacts:
            jobs[artifact.job] = {
                "name": artifact.job,
                "release": artifact.release,
                "variants": self.classifier.identify_variants(artifact.job, artifact.release, artifact.cluster_data),
                "never_stable": self.classifier.is_job_never_stable(artifact.job),
            }
        job_ids = self.store.upsert_jobs(list(jobs.values()))

        split_cases = {
            artifact.id: [(registry.split(case.name), case) for case in self._cases(artifact)]
            for artifact in artifacts
        }
        test_ids = self.store.ensure_tests(
            (name for cases in split_cases.values() for (_, name), _ in cases), ctx=ctx
        )

        run_rows = [
            {
                "job_id": job_ids[artifact.job],
                "external_id": artifact.id,
                "started_at": artifact.started_at,
                "outcome": artifact.outcome,
                "artifact_urls": list(artifact.artifacts),
                "succeeded": artifact.outcome == "success",
                "failed": artifact.failed,
                "infrastructure_failure": artifact.infrastructure_failure,
                "test_failures": sum(1 for case in artifact.tests if case.status == "failed"),
            }
            for artifact in artifacts
        ]
        run_ids = self.store.insert_job_runs(run_rows, ctx=ctx)

        result_rows: list[dict[str, Any]] = []
        for artifact in artifacts:
            invocations: dict[int, int] = defaultdict(int)
            for (suite, name), case in split_cases[artifact.id]:
                test_id = test_ids[name]
                result_rows.append(
                    {
                        "job_run_id": run_ids[artifact.id],
                        "test_id": test_id,
                        "suite_id": suite_ids.get(suite) if suite else None,
                        "invocation": invocations[test_id],
                        "status": int(CASE_STATUS[case.status]),
                        "timestamp": artifact.started_at,
                        "duration_seconds": case.duration_seconds,
                    }
                )
                invocations[test_id] += 1
        self.store.insert_test_results(result_rows, ctx=ctx)

        result.count("jobs", len(job_ids))
        result.count("job_runs", len(run_rows))
        result.count("test_results", len(result_rows))
