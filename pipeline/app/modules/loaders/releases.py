from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from pipeline.app.connectors.source_host import SourceHostConnector
from pipeline.app.connectors.warehouse import WarehouseConnector
from pipeline.app.db.store import CanonicalStore
from pipeline.app.errors import ConnectorError
from pipeline.app.modules.loaders.base import DataLoader, LoadResult
from pipeline.app.modules.loaders.context import LoadContext
from pipeline.app.schemas.artifacts import ReleasePullRequestRecord, ReleaseTagRecord


logger = logging.getLogger(__name__)

RELEASE_TAGS_QUERY = """
SELECT release_tag AS name, release, architecture, stream, phase, reject_reason, release_time, forced
FROM release_tags
WHERE release = :release AND architecture = :architecture
ORDER BY release_time
"""

RELEASE_PULL_REQUESTS_QUERY = """
SELECT release_tag, url, org, repo, number, sha, bug_url
FROM release_pull_requests
WHERE release = :release AND architecture = :architecture
"""


class ReleasePayloadLoader(DataLoader):
    name = "releases"

    def __init__(
        self,
        store: CanonicalStore,
        warehouse: WarehouseConnector | None,
        releases: Sequence[str],
        architectures: Sequence[str],
        source_host: SourceHostConnector | None = None,
        http_timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.warehouse = warehouse
        self.releases = list(releases)
        self.architectures = list(architectures)
        self.source_host = source_host
        self.http_timeout = http_timeout

    def load(self, ctx: LoadContext) -> LoadResult:
        result = LoadResult()
        if self.warehouse is None:
            logger.info("no warehouse configured, skipping release payloads")
            return result

        for release in self.releases:
            for architecture in self.architectures:
                ctx.check()
                self._load_stream(ctx, release, architecture, result)
        return result

    def _load_stream(self, ctx: LoadContext, release: str, architecture: str, result: LoadResult) -> None:
        params = {"release": release, "architecture": architecture}
        tags: list[dict[str, Any]] = []
        for row in self.warehouse.query(RELEASE_TAGS_QUERY, params):
            try:
                tags.append(ReleaseTagRecord.model_validate(row).model_dump())
            except ValidationError as exc:
                result.skip(str(row.get("name")), f"invalid release tag row: {exc.error_count()} errors")
        tag_ids = self.store.upsert_release_tags(tags)

        pulls: dict[tuple[int, str], dict[str, Any]] = {}
        for row in self.warehouse.query(RELEASE_PULL_REQUESTS_QUERY, params):
            ctx.check()
            try:
                record = ReleasePullRequestRecord.model_validate(row)
            except ValidationError as exc:
                result.skip(str(row.get("url")), f"invalid pull request row: {exc.error_count()} errors")
                continue
            tag_id = tag_ids.get(record.release_tag)
            if tag_id is None:
                result.skip(record.url, f"pull request references unknown tag {record.release_tag}")
                continue
            if not record.sha and self.source_host is not None:
                record = self._with_head_sha(ctx, record, result)
            values = record.model_dump(exclude={"release_tag"})
            pulls[(tag_id, record.url)] = {"release_tag_id": tag_id, **values}
        self.store.upsert_pull_requests(list(pulls.values()))

        result.count("release_tags", len(tags))
        result.count("pull_requests", len(pulls))
        logger.info("release %s/%s: %d tags, %d pull requests", release, architecture, len(tags), len(pulls))

    def _with_head_sha(
        self, ctx: LoadContext, record: ReleasePullRequestRecord, result: LoadResult
    ) -> ReleasePullRequestRecord:
        try:
            pull = self.source_host.get_pull_request(
                f"{record.org}/{record.repo}", record.number, timeout=ctx.timeout(self.http_timeout)
            )
        except ConnectorError as exc:
            if exc.code == "CONNECTOR_AUTH":
                raise
            result.skip(record.url, f"head sha lookup failed: {exc.message}", code="ITEM_NOT_FOUND")
            return record
        sha = (pull.get("head") or {}).get("sha") or ""
        return record.model_copy(update={"sha": sha})
