"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "suites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=256), nullable=False, unique=True),
    )

    op.create_table(
        "tests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=512), nullable=False, unique=True),
        sa.Column("release", sa.String(length=64), nullable=False),
        sa.Column("variants", sa.JSON(), nullable=False),
        sa.Column("never_stable", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_jobs_release", "jobs", ["release"])

    op.create_table(
        "release_tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=256), nullable=False, unique=True),
        sa.Column("release", sa.String(length=64), nullable=False),
        sa.Column("architecture", sa.String(length=32), nullable=False),
        sa.Column("stream", sa.String(length=32), nullable=False),
        sa.Column("phase", sa.String(length=32), nullable=False),
        sa.Column("reject_reason", sa.Text(), nullable=True),
        sa.Column("release_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("forced", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_release_tags_release", "release_tags", ["release"])

    op.create_table(
        "pull_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "release_tag_id",
            sa.Integer(),
            sa.ForeignKey("release_tags.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("url", sa.String(length=512), nullable=False),
        sa.Column("org", sa.String(length=128), nullable=False),
        sa.Column("repo", sa.String(length=128), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("sha", sa.String(length=64), nullable=False),
        sa.Column("bug_url", sa.String(length=512), nullable=True),
        sa.UniqueConstraint("release_tag_id", "url", name="uq_pull_requests_tag_url"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False, unique=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("artifact_urls", sa.JSON(), nullable=False),
        sa.Column("succeeded", sa.Boolean(), nullable=False),
        sa.Column("failed", sa.Boolean(), nullable=False),
        sa.Column("infrastructure_failure", sa.Boolean(), nullable=False),
        sa.Column("test_failures", sa.Integer(), nullable=False),
    )
    op.create_index("ix_job_runs_job_id", "job_runs", ["job_id"])
    op.create_index("ix_job_runs_started_at", "job_runs", ["started_at"])

    op.create_table(
        "test_results",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_run_id", sa.Integer(), sa.ForeignKey("job_runs.id"), nullable=False),
        sa.Column("test_id", sa.Integer(), sa.ForeignKey("tests.id"), nullable=False),
        sa.Column("suite_id", sa.Integer(), sa.ForeignKey("suites.id"), nullable=True),
        sa.Column("invocation", sa.Integer(), nullable=False),
        sa.Column("status", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.UniqueConstraint(
            "job_run_id", "test_id", "invocation", name="uq_test_results_run_test_invocation"
        ),
    )
    op.create_index("ix_test_results_test_id", "test_results", ["test_id"])
    op.create_index("ix_test_results_test_timestamp", "test_results", ["test_id", "timestamp"])

    op.create_table(
        "bugs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=64), nullable=False),
        sa.Column("url", sa.String(length=512), nullable=False),
        sa.Column("components", sa.JSON(), nullable=False),
        sa.Column("affects_versions", sa.JSON(), nullable=False),
        sa.Column("last_change_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "bug_tests",
        sa.Column("bug_id", sa.Integer(), sa.ForeignKey("bugs.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("test_id", sa.Integer(), sa.ForeignKey("tests.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "bug_jobs",
        sa.Column("bug_id", sa.Integer(), sa.ForeignKey("bugs.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "test_ownerships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("test_id", sa.Integer(), sa.ForeignKey("tests.id"), nullable=True),
        sa.Column("component", sa.String(length=256), nullable=False),
        sa.Column("capabilities", sa.JSON(), nullable=False),
        sa.Column("staff_approved_obsolete", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "high_water_marks",
        sa.Column("category", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.String(length=256), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "aggregate_definitions",
        sa.Column("name", sa.String(length=128), primary_key=True),
        sa.Column("template", sa.Text(), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("aggregate_definitions")
    op.drop_table("high_water_marks")
    op.drop_table("test_ownerships")
    op.drop_table("bug_jobs")
    op.drop_table("bug_tests")
    op.drop_table("bugs")

    op.drop_index("ix_test_results_test_timestamp", table_name="test_results")
    op.drop_index("ix_test_results_test_id", table_name="test_results")
    op.drop_table("test_results")

    op.drop_index("ix_job_runs_started_at", table_name="job_runs")
    op.drop_index("ix_job_runs_job_id", table_name="job_runs")
    op.drop_table("job_runs")

    op.drop_table("pull_requests")
    op.drop_index("ix_release_tags_release", table_name="release_tags")
    op.drop_table("release_tags")

    op.drop_index("ix_jobs_release", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("tests")
    op.drop_table("suites")
