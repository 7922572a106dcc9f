from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import Engine, Table, delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from pipeline.app.db.models import (
    AggregateDefinition,
    Bug,
    HighWaterMark,
    Job,
    JobRun,
    PullRequest,
    ReleaseTag,
    Suite,
    Test,
    TestOwnership,
    TestResult,
)
from pipeline.app.errors import StoreError

if TYPE_CHECKING:
    from pipeline.app.modules.loaders.context import LoadContext


logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL caps bind parameters per statement at 2^16, so inserts go in chunks.
DEFAULT_BATCH_SIZE = 1024


def _now() -> datetime:
    return datetime.now(timezone.utc)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start : start + size]


class CanonicalStore:
    def __init__(self, engine: Engine, batch_size: int = DEFAULT_BATCH_SIZE, write_retries: int = 3) -> None:
        self.engine = engine
        self.batch_size = batch_size
        self.write_retries = write_retries

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _insert(self, table: Table | type):
        target = table.__table__ if hasattr(table, "__table__") else table
        if self.dialect == "postgresql":
            return postgresql.insert(target)
        if self.dialect == "sqlite":
            return sqlite.insert(target)
        raise StoreError(f"unsupported dialect for upserts: {self.dialect}")

    def _write(self, description: str, fn: Callable[[Any], T]) -> T:
        attempts = 0
        while True:
            attempts += 1
            try:
                with self.engine.begin() as conn:
                    return fn(conn)
            except OperationalError as exc:
                if attempts >= self.write_retries:
                    raise StoreError(f"{description} failed after {attempts} attempts: {exc}") from exc
                logger.warning("%s failed (attempt %d), retrying: %s", description, attempts, exc)
                time.sleep(0.2 * attempts)
            except SQLAlchemyError as exc:
                raise StoreError(f"{description} failed: {exc}") from exc

    def _read(self, fn: Callable[[Any], T]) -> T:
        try:
            with self.engine.connect() as conn:
                return fn(conn)
        except SQLAlchemyError as exc:
            raise StoreError(f"read failed: {exc}") from exc

    def insert_chunked(
        self,
        table: Table | type,
        rows: Sequence[dict[str, Any]],
        *,
        conflict_columns: Sequence[str] | None = None,
        ctx: LoadContext | None = None,
    ) -> int:
        """Insert ``rows`` in chunks of at most ``batch_size``.

        Each chunk commits in its own transaction. A failing chunk raises
        ``StoreError`` whose ``committed`` count covers the chunks before it;
        those stay committed. With ``conflict_columns`` rows that collide on
        that key are skipped.
        """
        committed = 0
        name = getattr(table, "__tablename__", getattr(table, "name", "table"))
        for chunk in chunked(rows, self.batch_size):
            if ctx is not None:
                ctx.check()
            stmt = self._insert(table)
            if conflict_columns:
                stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
            try:
                self._write(f"insert into {name}", lambda conn, s=stmt, c=chunk: conn.execute(s, list(c)))
            except StoreError as exc:
                exc.committed = committed
                exc.details["table"] = name
                exc.details["committed"] = committed
                raise
            committed += len(chunk)
        return committed

    def high_water_mark(self, category: str) -> str | None:
        stmt = select(HighWaterMark.value).where(HighWaterMark.category == category)
        return self._read(lambda conn: conn.execute(stmt).scalar_one_or_none())

    def set_high_water_mark(self, category: str, value: str) -> None:
        stmt = self._insert(HighWaterMark).values(category=category, value=value, updated_at=_now())
        stmt = stmt.on_conflict_do_update(
            index_elements=["category"],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        self._write(f"set high water mark {category}", lambda conn: conn.execute(stmt))

    def aggregate_definition(self, name: str) -> AggregateDefinition | None:
        stmt = select(AggregateDefinition.template, AggregateDefinition.parameters).where(
            AggregateDefinition.name == name
        )
        row = self._read(lambda conn: conn.execute(stmt).first())
        if row is None:
            return None
        return AggregateDefinition(name=name, template=row.template, parameters=row.parameters)

    def save_aggregate_definition(self, name: str, template: str, parameters: dict[str, object]) -> None:
        stmt = self._insert(AggregateDefinition).values(
            name=name, template=template, parameters=parameters, updated_at=_now()
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "template": stmt.excluded.template,
                "parameters": stmt.excluded.parameters,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self._write(f"save aggregate definition {name}", lambda conn: conn.execute(stmt))

    def seed_suites(self, names: Iterable[str]) -> dict[str, int]:
        rows = [{"name": name} for name in names]
        if rows:
            self.insert_chunked(Suite, rows, conflict_columns=["name"])
        return self.suites()

    def suites(self) -> dict[str, int]:
        return self._read(lambda conn: {row.name: row.id for row in conn.execute(select(Suite.id, Suite.name))})

    def upsert_jobs(self, rows: Sequence[dict[str, Any]]) -> dict[str, int]:
        """Insert or update jobs by name. Variants are overwritten, never merged."""
        if not rows:
            return {}
        now = _now()
        for chunk in chunked(rows, self.batch_size):
            stmt = self._insert(Job)
            stmt = stmt.on_conflict_do_update(
                index_elements=["name"],
                set_={
                    "release": stmt.excluded.release,
                    "variants": stmt.excluded.variants,
                    "never_stable": stmt.excluded.never_stable,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            values = [{**row, "created_at": now, "updated_at": now} for row in chunk]
            self._write("upsert jobs", lambda conn, s=stmt, v=values: conn.execute(s, v))
        return self.ids_by(Job.__table__.c.name, [row["name"] for row in rows])

    def ensure_tests(self, names: Iterable[str], ctx: LoadContext | None = None) -> dict[str, int]:
        unique = sorted(set(names))
        if not unique:
            return {}
        self.insert_chunked(Test, [{"name": name} for name in unique], conflict_columns=["name"], ctx=ctx)
        return self.ids_by(Test.__table__.c.name, unique)

    def insert_job_runs(self, rows: Sequence[dict[str, Any]], ctx: LoadContext | None = None) -> dict[str, int]:
        if not rows:
            return {}
        self.insert_chunked(JobRun, rows, conflict_columns=["external_id"], ctx=ctx)
        return self.ids_by(JobRun.__table__.c.external_id, [row["external_id"] for row in rows])

    def insert_test_results(self, rows: Sequence[dict[str, Any]], ctx: LoadContext | None = None) -> int:
        return self.insert_chunked(
            TestResult, rows, conflict_columns=["job_run_id", "test_id", "invocation"], ctx=ctx
        )

    def ids_by(self, column: Any, keys: Sequence[str]) -> dict[str, int]:
        table = column.table
        found: dict[str, int] = {}
        for chunk in chunked(list(keys), self.batch_size):
            stmt = select(column, table.c.id).where(column.in_(list(chunk)))
            found.update(self._read(lambda conn, s=stmt: {row[0]: row[1] for row in conn.execute(s)}))
        return found

    def job_names(self) -> list[str]:
        return self._read(lambda conn: list(conn.execute(select(Job.name).order_by(Job.name)).scalars()))

    def test_names(self) -> list[str]:
        return self._read(lambda conn: list(conn.execute(select(Test.name).order_by(Test.name)).scalars()))

    def upsert_bugs(self, rows: Sequence[dict[str, Any]]) -> dict[str, int]:
        if not rows:
            return {}
        for chunk in chunked(rows, self.batch_size):
            stmt = self._insert(Bug)
            stmt = stmt.on_conflict_do_update(
                index_elements=["external_id"],
                set_={
                    column: stmt.excluded[column]
                    for column in ("key", "summary", "status", "url", "components", "affects_versions", "last_change_at")
                },
            )
            self._write("upsert bugs", lambda conn, s=stmt, c=chunk: conn.execute(s, list(c)))
        return self.ids_by(Bug.__table__.c.external_id, [row["external_id"] for row in rows])

    def replace_links(self, link_table: Table, owner_column: str, target_column: str, links: dict[int, set[int]]) -> None:
        """Replace the full target set for every owner in ``links`` atomically per owner chunk."""
        owners = sorted(links)
        for chunk in chunked(owners, self.batch_size):

            def _apply(conn: Any, owner_ids: Sequence[int] = chunk) -> None:
                conn.execute(delete(link_table).where(link_table.c[owner_column].in_(list(owner_ids))))
                values = [
                    {owner_column: owner_id, target_column: target_id}
                    for owner_id in owner_ids
                    for target_id in sorted(links[owner_id])
                ]
                if values:
                    conn.execute(link_table.insert(), values)

            self._write(f"replace {link_table.name}", _apply)

    def upsert_release_tags(self, rows: Sequence[dict[str, Any]]) -> dict[str, int]:
        if not rows:
            return {}
        for chunk in chunked(rows, self.batch_size):
            stmt = self._insert(ReleaseTag)
            stmt = stmt.on_conflict_do_update(
                index_elements=["name"],
                set_={
                    column: stmt.excluded[column]
                    for column in ("release", "architecture", "stream", "phase", "reject_reason", "release_time", "forced")
                },
            )
            self._write("upsert release tags", lambda conn, s=stmt, c=chunk: conn.execute(s, list(c)))
        return self.ids_by(ReleaseTag.__table__.c.name, [row["name"] for row in rows])

    def upsert_pull_requests(self, rows: Sequence[dict[str, Any]]) -> int:
        for chunk in chunked(rows, self.batch_size):
            stmt = self._insert(PullRequest)
            stmt = stmt.on_conflict_do_update(
                index_elements=["release_tag_id", "url"],
                set_={column: stmt.excluded[column] for column in ("org", "repo", "number", "sha", "bug_url")},
            )
            self._write("upsert pull requests", lambda conn, s=stmt, c=chunk: conn.execute(s, list(c)))
        return len(rows)

    def upsert_test_ownerships(self, rows: Sequence[dict[str, Any]]) -> int:
        for chunk in chunked(rows, self.batch_size):
            stmt = self._insert(TestOwnership)
            stmt = stmt.on_conflict_do_update(
                index_elements=["name"],
                set_={
                    column: stmt.excluded[column]
                    for column in ("test_id", "component", "capabilities", "staff_approved_obsolete")
                },
            )
            self._write("upsert test ownership", lambda conn, s=stmt, c=chunk: conn.execute(s, list(c)))
        return len(rows)
