from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


RunOutcome = Literal["success", "failure", "aborted", "error", "pending"]
CaseStatus = Literal["passed", "failed", "flaked", "skipped"]

FAILING_OUTCOMES = {"failure", "error"}


class PullRequestRef(BaseModel):
    org: str
    repo: str
    number: int
    sha: str = ""
    link: str = ""
    author: str = ""

    @property
    def full_repo(self) -> str:
        return f"{self.org}/{self.repo}"


class TestCaseRecord(BaseModel):
    name: str = Field(min_length=1)
    status: CaseStatus
    duration_seconds: float | None = None


class JobRunArtifact(BaseModel):
    """One job run's result document as written to object storage."""

    id: str = Field(min_length=1)
    job: str = Field(min_length=1)
    release: str = ""
    started_at: datetime
    outcome: RunOutcome
    infrastructure_failure: bool = False
    cluster_data: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[str] = Field(default_factory=list)
    pull_requests: list[PullRequestRef] = Field(default_factory=list)
    tests: list[TestCaseRecord] = Field(default_factory=list)

    @field_validator("started_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def failed(self) -> bool:
        return self.outcome in FAILING_OUTCOMES


class BugRecord(BaseModel):
    external_id: str
    key: str
    summary: str = ""
    status: str = ""
    url: str = ""
    components: list[str] = Field(default_factory=list)
    affects_versions: list[str] = Field(default_factory=list)
    last_change_at: datetime | None = None
    test_names: list[str] = Field(default_factory=list)
    job_names: list[str] = Field(default_factory=list)


class ReleaseTagRecord(BaseModel):
    name: str
    release: str
    architecture: str
    stream: str = "nightly"
    phase: str = ""
    reject_reason: str | None = None
    release_time: datetime | None = None
    forced: bool = False


class ReleasePullRequestRecord(BaseModel):
    release_tag: str
    url: str
    org: str
    repo: str
    number: int
    sha: str = ""
    bug_url: str | None = None


class TestOwnershipRecord(BaseModel):
    name: str
    component: str
    capabilities: list[str] = Field(default_factory=list)
    staff_approved_obsolete: bool = False

    @field_validator("capabilities", mode="before")
    @classmethod
    def _capability_list(cls, value: Any) -> Any:
        # warehouses without an array type hand back JSON text or a comma list
        if isinstance(value, str):
            if value.startswith("["):
                return json.loads(value)
            return [part.strip() for part in value.split(",") if part.strip()]
        return value
