from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from pipeline.app.db.store import CanonicalStore
from pipeline.app.errors import StoreError
from pipeline.app.modules.aggregates.catalog import DEFAULT_CATALOG, AggregateSpec


logger = logging.getLogger(__name__)


@dataclass
class AggregateReport:
    created: list[str] = field(default_factory=list)
    refreshed: list[str] = field(default_factory=list)
    recreated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class AggregateMaintainer:
    """Keeps the rolling-window aggregates in the catalog present and fresh.

    PostgreSQL gets real materialized views. Other engines get a plain table
    snapshot that is rebuilt in one transaction on refresh. Every operation is
    safe to repeat; a failure on one aggregate does not stop the others.
    """

    def __init__(self, store: CanonicalStore, catalog: Sequence[AggregateSpec] = DEFAULT_CATALOG) -> None:
        self.store = store
        self.catalog = list(catalog)

    @property
    def _materialized(self) -> bool:
        return self.store.dialect == "postgresql"

    def exists(self, name: str) -> bool:
        try:
            with self.store.engine.connect() as conn:
                if self._materialized:
                    count = conn.execute(
                        text("SELECT COUNT(*) FROM pg_matviews WHERE matviewname = :name"), {"name": name}
                    ).scalar_one()
                    return count > 0
                return inspect(conn).has_table(name)
        except SQLAlchemyError as exc:
            raise StoreError(f"checking aggregate {name} failed: {exc}") from exc

    def ensure(self) -> AggregateReport:
        return self._apply(refresh=False)

    def refresh(self) -> AggregateReport:
        return self._apply(refresh=True)

    def _apply(self, refresh: bool) -> AggregateReport:
        report = AggregateReport()
        for aggregate in self.catalog:
            try:
                self._apply_one(aggregate, refresh, report)
            except (StoreError, ValueError) as exc:
                report.failed[aggregate.name] = str(exc)
                logger.error("aggregate %s could not be maintained: %s", aggregate.name, exc)
        return report

    def _apply_one(self, aggregate: AggregateSpec, refresh: bool, report: AggregateReport) -> None:
        rendered = aggregate.render(self.store.dialect)
        parameters = aggregate.parameters_json()
        stored = self.store.aggregate_definition(aggregate.name)
        changed = stored is not None and (stored.template != aggregate.template or stored.parameters != parameters)

        if self.exists(aggregate.name):
            if changed:
                logger.info("definition of aggregate %s changed, recreating", aggregate.name)
                self._execute(aggregate.name, [self._drop_sql(aggregate.name), self._create_sql(aggregate.name, rendered)])
                report.recreated.append(aggregate.name)
            elif refresh:
                self._execute(aggregate.name, self._refresh_sql(aggregate.name, rendered))
                report.refreshed.append(aggregate.name)
        else:
            logger.info("creating missing aggregate %s", aggregate.name)
            self._execute(aggregate.name, [self._create_sql(aggregate.name, rendered)])
            report.created.append(aggregate.name)

        if stored is None or changed:
            self.store.save_aggregate_definition(aggregate.name, aggregate.template, parameters)

    def _create_sql(self, name: str, rendered: str) -> str:
        if self._materialized:
            return f"CREATE MATERIALIZED VIEW IF NOT EXISTS {name} AS {rendered}"
        return f"CREATE TABLE IF NOT EXISTS {name} AS {rendered}"

    def _drop_sql(self, name: str) -> str:
        if self._materialized:
            return f"DROP MATERIALIZED VIEW IF EXISTS {name}"
        return f"DROP TABLE IF EXISTS {name}"

    def _refresh_sql(self, name: str, rendered: str) -> list[str]:
        if self._materialized:
            return [f"REFRESH MATERIALIZED VIEW {name}"]
        return [f"DELETE FROM {name}", f"INSERT INTO {name} {rendered}"]

    def _execute(self, name: str, statements: Sequence[str]) -> None:
        try:
            with self.store.engine.begin() as conn:
                for statement in statements:
                    conn.execute(text(statement))
        except SQLAlchemyError as exc:
            raise StoreError(f"maintaining aggregate {name} failed: {exc}", details={"aggregate": name}) from exc
