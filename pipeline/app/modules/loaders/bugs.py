from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy import Table

from pipeline.app.connectors.tracker import IssueSearch, IssueTrackerConnector
from pipeline.app.db.models import Job, Test, bug_jobs, bug_tests
from pipeline.app.db.store import CanonicalStore, chunked
from pipeline.app.modules.loaders.base import DataLoader, LoadResult
from pipeline.app.modules.loaders.context import LoadContext
from pipeline.app.schemas.artifacts import BugRecord


logger = logging.getLogger(__name__)

# Names per tracker search; keeps the generated query within URL limits.
SEARCH_CHUNK = 20


class _TrackerLinkLoader(DataLoader):
    link_table: Table
    link_column: str

    def __init__(
        self, store: CanonicalStore, tracker: IssueTrackerConnector | None, http_timeout: float = 30.0
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.http_timeout = http_timeout

    def _names(self) -> list[str]:
        raise NotImplementedError

    def _search(self) -> Callable[..., IssueSearch]:
        raise NotImplementedError

    def _linked_names(self, record: BugRecord) -> list[str]:
        raise NotImplementedError

    def _ids(self, names: Sequence[str]) -> dict[str, int]:
        raise NotImplementedError

    def load(self, ctx: LoadContext) -> LoadResult:
        result = LoadResult()
        if self.tracker is None:
            logger.info("no issue tracker configured, skipping %s", self.name)
            return result

        names = self._names()
        search = self._search()
        records: dict[str, BugRecord] = {}
        linked: dict[str, set[str]] = {}
        for chunk in chunked(names, SEARCH_CHUNK):
            ctx.check()
            found = search(list(chunk), timeout=ctx.timeout(self.http_timeout))
            for err in found.unreadable:
                result.skip(err.item, err.message, code=err.code)
            for record in found.records:
                records[record.external_id] = record
                linked.setdefault(record.external_id, set()).update(self._linked_names(record))

        if not records:
            logger.info("%s: no tracker issues reference the %d known names", self.name, len(names))
            return result

        ctx.check()
        rows: list[dict[str, Any]] = [
            record.model_dump(exclude={"test_names", "job_names"}) for record in records.values()
        ]
        bug_ids = self.store.upsert_bugs(rows)
        name_ids = self._ids(sorted({name for names_ in linked.values() for name in names_}))
        links = {
            bug_ids[external_id]: {name_ids[name] for name in names_ if name in name_ids}
            for external_id, names_ in linked.items()
        }
        self.store.replace_links(self.link_table, "bug_id", self.link_column, links)

        result.count("bugs", len(rows))
        result.count(self.link_table.name, sum(len(targets) for targets in links.values()))
        logger.info("%s: linked %d tracker issues", self.name, len(rows))
        return result


class BugLoader(_TrackerLinkLoader):
    """Tracker bugs that mention known tests."""

    name = "bugs"
    link_table = bug_tests
    link_column = "test_id"

    def _names(self) -> list[str]:
        return self.store.test_names()

    def _search(self) -> Callable[..., IssueSearch]:
        return self.tracker.find_issues_for_tests

    def _linked_names(self, record: BugRecord) -> list[str]:
        return record.test_names

    def _ids(self, names: Sequence[str]) -> dict[str, int]:
        return self.store.ids_by(Test.__table__.c.name, names)


class IssueLinkLoader(_TrackerLinkLoader):
    """Tracker issues that mention known jobs."""

    name = "jira"
    link_table = bug_jobs
    link_column = "job_id"

    def _names(self) -> list[str]:
        return self.store.job_names()

    def _search(self) -> Callable[..., IssueSearch]:
        return self.tracker.find_issues_for_jobs

    def _linked_names(self, record: BugRecord) -> list[str]:
        return record.job_names

    def _ids(self, names: Sequence[str]) -> dict[str, int]:
        return self.store.ids_by(Job.__table__.c.name, names)
