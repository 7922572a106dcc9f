from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pipeline.app.db.session import Base


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class TestStatus(enum.IntEnum):
    SUCCESS = 1
    FAILURE = 12
    FLAKE = 13


bug_tests = Table(
    "bug_tests",
    Base.metadata,
    Column("bug_id", Integer, ForeignKey("bugs.id", ondelete="CASCADE"), primary_key=True),
    Column("test_id", Integer, ForeignKey("tests.id", ondelete="CASCADE"), primary_key=True),
)

bug_jobs = Table(
    "bug_jobs",
    Base.metadata,
    Column("bug_id", Integer, ForeignKey("bugs.id", ondelete="CASCADE"), primary_key=True),
    Column("job_id", Integer, ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True),
)


class Suite(Base):
    __tablename__ = "suites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), unique=True)


class Test(Base):
    __tablename__ = "tests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, unique=True)

    bugs: Mapped[list["Bug"]] = relationship(secondary=bug_tests, back_populates="tests")


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(512), unique=True)
    release: Mapped[str] = mapped_column(String(64), index=True, default="")
    variants: Mapped[list[str]] = mapped_column(JSON, default=list)
    never_stable: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    bugs: Mapped[list["Bug"]] = relationship(secondary=bug_jobs, back_populates="jobs")


class JobRun(Base):
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(Integer, ForeignKey("jobs.id"), index=True)
    external_id: Mapped[str] = mapped_column(String(128), unique=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    outcome: Mapped[str] = mapped_column(String(32))
    artifact_urls: Mapped[list[str]] = mapped_column(JSON, default=list)
    succeeded: Mapped[bool] = mapped_column(Boolean, default=False)
    failed: Mapped[bool] = mapped_column(Boolean, default=False)
    infrastructure_failure: Mapped[bool] = mapped_column(Boolean, default=False)
    test_failures: Mapped[int] = mapped_column(Integer, default=0)


class TestResult(Base):
    __tablename__ = "test_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_run_id: Mapped[int] = mapped_column(Integer, ForeignKey("job_runs.id"))
    test_id: Mapped[int] = mapped_column(Integer, ForeignKey("tests.id"), index=True)
    suite_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("suites.id"), nullable=True)
    invocation: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[int] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("job_run_id", "test_id", "invocation", name="uq_test_results_run_test_invocation"),
        Index("ix_test_results_test_timestamp", "test_id", "timestamp"),
    )


class Bug(Base):
    __tablename__ = "bugs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), unique=True)
    key: Mapped[str] = mapped_column(String(64))
    summary: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(64), default="")
    url: Mapped[str] = mapped_column(String(512), default="")
    components: Mapped[list[str]] = mapped_column(JSON, default=list)
    affects_versions: Mapped[list[str]] = mapped_column(JSON, default=list)
    last_change_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tests: Mapped[list[Test]] = relationship(secondary=bug_tests, back_populates="bugs")
    jobs: Mapped[list[Job]] = relationship(secondary=bug_jobs, back_populates="bugs")


class ReleaseTag(Base):
    __tablename__ = "release_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), unique=True)
    release: Mapped[str] = mapped_column(String(64), index=True)
    architecture: Mapped[str] = mapped_column(String(32))
    stream: Mapped[str] = mapped_column(String(32), default="nightly")
    phase: Mapped[str] = mapped_column(String(32), default="")
    reject_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    forced: Mapped[bool] = mapped_column(Boolean, default=False)


class PullRequest(Base):
    __tablename__ = "pull_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    release_tag_id: Mapped[int] = mapped_column(Integer, ForeignKey("release_tags.id", ondelete="CASCADE"))
    url: Mapped[str] = mapped_column(String(512))
    org: Mapped[str] = mapped_column(String(128))
    repo: Mapped[str] = mapped_column(String(128))
    number: Mapped[int] = mapped_column(Integer)
    sha: Mapped[str] = mapped_column(String(64), default="")
    bug_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    __table_args__ = (UniqueConstraint("release_tag_id", "url", name="uq_pull_requests_tag_url"),)


class TestOwnership(Base):
    __tablename__ = "test_ownerships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, unique=True)
    test_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("tests.id"), nullable=True)
    component: Mapped[str] = mapped_column(String(256))
    capabilities: Mapped[list[str]] = mapped_column(JSON, default=list)
    staff_approved_obsolete: Mapped[bool] = mapped_column(Boolean, default=False)


class HighWaterMark(Base):
    __tablename__ = "high_water_marks"

    category: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(String(256))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


class AggregateDefinition(Base):
    __tablename__ = "aggregate_definitions"

    name: Mapped[str] = mapped_column(String(128), primary_key=True)
    template: Mapped[str] = mapped_column(Text)
    parameters: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
