from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from pipeline.app.config import Settings, settings
from pipeline.app.connectors.http import JsonApiClient
from pipeline.app.errors import ItemError
from pipeline.app.schemas.artifacts import BugRecord


logger = logging.getLogger(__name__)

SEARCH_PATH = "/rest/api/2/search"
SEARCH_FIELDS = "summary,description,status,components,versions,updated"


def _jql_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"\\"{escaped}\\""'


@dataclass
class IssueSearch:
    records: list[BugRecord] = field(default_factory=list)
    unreadable: list[ItemError] = field(default_factory=list)


class IssueTrackerConnector:
    """Full-text issue search against a Jira-compatible tracker.

    Issues that cannot be parsed are returned in ``IssueSearch.unreadable``;
    only transport and auth failures raise.
    """

    def __init__(self, client: JsonApiClient, project_filter: str = "", page_size: int = 100) -> None:
        self.client = client
        self.project_filter = project_filter
        self.page_size = page_size

    def close(self) -> None:
        self.client.close()

    def find_issues_for_tests(self, names: Sequence[str], timeout: float | None = None) -> IssueSearch:
        return self._search(names, "test_names", timeout)

    def find_issues_for_jobs(self, names: Sequence[str], timeout: float | None = None) -> IssueSearch:
        return self._search(names, "job_names", timeout)

    def _search(self, names: Sequence[str], matched_field: str, timeout: float | None) -> IssueSearch:
        search = IssueSearch()
        if not names:
            return search
        clauses = " OR ".join(f"text ~ {_jql_quote(name)}" for name in names)
        jql = f"({clauses})"
        if self.project_filter:
            jql = f"{self.project_filter} AND {jql}"

        start = 0
        while True:
            body = self.client.request(
                "GET",
                SEARCH_PATH,
                params={"jql": jql, "startAt": start, "maxResults": self.page_size, "fields": SEARCH_FIELDS},
                timeout=timeout,
            ) or {}
            issues = body.get("issues", [])
            for issue in issues:
                try:
                    record, text = self._to_record(issue)
                except ItemError as exc:
                    logger.warning("skipping tracker issue %s", exc)
                    search.unreadable.append(exc)
                    continue
                matched = [name for name in names if name in text]
                if matched:
                    search.records.append(record.model_copy(update={matched_field: matched}))
            start += len(issues)
            if not issues or start >= int(body.get("total", 0)):
                break
        return search

    def _to_record(self, issue: dict[str, Any]) -> tuple[BugRecord, str]:
        fields = issue.get("fields") or {}
        updated = fields.get("updated")
        try:
            record = BugRecord(
                external_id=str(issue["id"]),
                key=str(issue["key"]),
                summary=fields.get("summary") or "",
                status=(fields.get("status") or {}).get("name", ""),
                url=f"{self.client.base_url}/browse/{issue['key']}",
                components=[c.get("name", "") for c in fields.get("components") or []],
                affects_versions=[v.get("name", "") for v in fields.get("versions") or []],
                last_change_at=datetime.fromisoformat(updated.replace("Z", "+00:00")) if updated else None,
            )
        except (KeyError, AttributeError, ValueError, ValidationError) as exc:
            item = str(issue.get("key") or issue.get("id") or "<unknown issue>")
            raise ItemError(item, f"unreadable tracker issue: {exc!r}") from exc
        text = f"{record.summary}\n{fields.get('description') or ''}"
        return record, text


def build_tracker(config: Settings = settings) -> IssueTrackerConnector | None:
    if not config.tracker_url:
        return None
    client = JsonApiClient(
        config.tracker_url,
        token=config.tracker_token or None,
        timeout=config.http_timeout_seconds,
        max_retries=config.http_max_retries,
    )
    return IssueTrackerConnector(client)
