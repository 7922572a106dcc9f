from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from pipeline.app.connectors.source_host import SourceHostConnector
from pipeline.app.modules.loaders.context import LoadContext
from pipeline.app.schemas.artifacts import JobRunArtifact


logger = logging.getLogger(__name__)

COMMENT_TEMPLATE = """Job **{job}** failed for this pull request (run `{run_id}`, outcome `{outcome}`).

{failures}
"""

MAX_LISTED_FAILURES = 10


class PullRequestCommenter:
    """Posts a failure summary on pull requests tested by failing runs.

    Best effort: a failed post is logged and dropped, it never fails the load.
    """

    def __init__(
        self,
        source_host: SourceHostConnector,
        include_repos: Iterable[str] = (),
        exclude_repos: Iterable[str] = (),
        timeout: float = 30.0,
    ) -> None:
        self.source_host = source_host
        self.include_repos = set(include_repos)
        self.exclude_repos = set(exclude_repos)
        self.timeout = timeout
        self._posted: set[tuple[str, int, str]] = set()
        self.failures = 0

    def wants(self, repo: str) -> bool:
        if repo in self.exclude_repos:
            return False
        return not self.include_repos or repo in self.include_repos

    def render(self, artifact: JobRunArtifact) -> str:
        failed = [case.name for case in artifact.tests if case.status == "failed"]
        if failed:
            lines = [f"- {name}" for name in failed[:MAX_LISTED_FAILURES]]
            if len(failed) > MAX_LISTED_FAILURES:
                lines.append(f"- ... and {len(failed) - MAX_LISTED_FAILURES} more")
            failures = "Failed tests:\n" + "\n".join(lines)
        elif artifact.infrastructure_failure:
            failures = "The run failed before tests could report (infrastructure failure)."
        else:
            failures = "No individual test failures were reported."
        return COMMENT_TEMPLATE.format(job=artifact.job, run_id=artifact.id, outcome=artifact.outcome, failures=failures)

    def handle(self, ctx: LoadContext, artifacts: Sequence[JobRunArtifact]) -> int:
        posted = 0
        for artifact in artifacts:
            if not artifact.failed:
                continue
            for pr in artifact.pull_requests:
                key = (pr.full_repo, pr.number, artifact.id)
                if key in self._posted or not self.wants(pr.full_repo):
                    continue
                if ctx.expired():
                    logger.info("skipping remaining pull request comments, load deadline reached")
                    return posted
                try:
                    self.source_host.post_comment(
                        pr.full_repo, pr.number, self.render(artifact), timeout=ctx.timeout(self.timeout)
                    )
                except Exception as exc:  # noqa: BLE001
                    self.failures += 1
                    logger.warning("commenting on %s#%d failed: %s", pr.full_repo, pr.number, exc)
                    continue
                self._posted.add(key)
                posted += 1
        return posted
