from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from pipeline.app.config import Settings, settings
from pipeline.app.connectors.object_storage import ObjectStorageConnector, build_object_storage
from pipeline.app.connectors.source_host import SourceHostConnector, build_source_host
from pipeline.app.connectors.tracker import IssueTrackerConnector, build_tracker
from pipeline.app.connectors.warehouse import WarehouseConnector, build_warehouse
from pipeline.app.db import models  # noqa: F401
from pipeline.app.db.session import Base, engine
from pipeline.app.db.store import CanonicalStore
from pipeline.app.modules.aggregates.service import AggregateMaintainer, AggregateReport
from pipeline.app.modules.classification.synthetic import SyntheticTestClassifier
from pipeline.app.modules.classification.variants import JobNameVariantClassifier, VariantClassifier
from pipeline.app.modules.coordinator.service import LoaderCoordinator, LoaderFailure
from pipeline.app.modules.identity.suites import seed_registry
from pipeline.app.modules.loaders.base import DataLoader
from pipeline.app.modules.loaders.bugs import BugLoader, IssueLinkLoader
from pipeline.app.modules.loaders.commenter import PullRequestCommenter
from pipeline.app.modules.loaders.context import LoadContext
from pipeline.app.modules.loaders.job_runs import JobRunLoader
from pipeline.app.modules.loaders.ownership import TestOwnershipLoader
from pipeline.app.modules.loaders.releases import ReleasePayloadLoader


logger = logging.getLogger(__name__)

KNOWN_LOADERS = {"prow", "releases", "jira", "github", "bugs", "test-mapping"}


@dataclass
class Connectors:
    storage: ObjectStorageConnector
    warehouse: WarehouseConnector | None = None
    tracker: IssueTrackerConnector | None = None
    source_host: SourceHostConnector | None = None

    def close(self) -> None:
        for connector in (self.warehouse, self.tracker, self.source_host):
            if connector is not None:
                connector.close()

    def __enter__(self) -> "Connectors":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class CycleOutcome:
    errors: list[LoaderFailure] = field(default_factory=list)
    summary: list[str] = field(default_factory=list)
    item_errors: int = 0
    aggregates: AggregateReport | None = None
    elapsed_seconds: float = 0.0

    @property
    def failed(self) -> bool:
        return bool(self.errors) or (self.aggregates is not None and not self.aggregates.ok)


def init_database(store: CanonicalStore) -> AggregateReport:
    Base.metadata.create_all(bind=store.engine)
    seed_registry(store)
    return AggregateMaintainer(store).ensure()


def build_connectors(config: Settings, selected: Sequence[str]) -> Connectors:
    return Connectors(
        storage=build_object_storage(config),
        warehouse=build_warehouse(config),
        tracker=build_tracker(config),
        source_host=build_source_host(config) if "github" in selected else None,
    )


def build_loaders(
    config: Settings,
    store: CanonicalStore,
    connectors: Connectors,
    selected: Sequence[str],
    classifier: VariantClassifier | None = None,
    synthetic: SyntheticTestClassifier | None = None,
) -> list[DataLoader]:
    unknown = sorted(set(selected) - KNOWN_LOADERS)
    if unknown:
        raise ValueError(f"Unsupported loaders: {', '.join(unknown)}")

    classifier = classifier or JobNameVariantClassifier(config.never_stable_jobs)
    loaders: list[DataLoader] = []
    for name in selected:
        if name == "releases":
            loaders.append(
                ReleasePayloadLoader(
                    store,
                    connectors.warehouse,
                    config.releases,
                    config.architectures,
                    source_host=connectors.source_host,
                    http_timeout=config.http_timeout_seconds,
                )
            )
        elif name == "prow":
            commenter = None
            if connectors.source_host is not None:
                commenter = PullRequestCommenter(
                    connectors.source_host,
                    include_repos=config.comment_include_repos,
                    exclude_repos=config.comment_exclude_repos,
                    timeout=config.http_timeout_seconds,
                )
            loaders.append(
                JobRunLoader(
                    store,
                    connectors.storage,
                    classifier,
                    prefix=config.artifact_prefix,
                    batch_size=config.job_run_batch_size,
                    synthetic=synthetic or SyntheticTestClassifier(),
                    warehouse=connectors.warehouse if config.load_warehouse_jobs else None,
                    releases=config.releases,
                    commenter=commenter,
                )
            )
        elif name == "jira":
            loaders.append(IssueLinkLoader(store, connectors.tracker, config.http_timeout_seconds))
        elif name == "test-mapping":
            loaders.append(TestOwnershipLoader(store, connectors.warehouse))
        elif name == "bugs":
            loaders.append(BugLoader(store, connectors.tracker, config.http_timeout_seconds))
    return loaders


def run_cycle(
    store: CanonicalStore,
    loaders: Sequence[DataLoader],
    ctx: LoadContext,
    max_workers: int = 1,
) -> CycleOutcome:
    start = time.monotonic()
    coordinator = LoaderCoordinator(loaders, max_workers=max_workers)
    errors = coordinator.run(ctx)
    outcome = CycleOutcome(errors=errors, summary=coordinator.summary(), item_errors=coordinator.item_error_count())
    logger.info("database load complete in %.1fs", time.monotonic() - start)

    # strictly after every loader has finished
    outcome.aggregates = AggregateMaintainer(store).refresh()
    outcome.elapsed_seconds = time.monotonic() - start

    if errors:
        logger.warning("%d errors were encountered while loading database:", len(errors))
        for err in errors:
            logger.error("%s", err)
    else:
        logger.info("no errors encountered during db refresh")
    return outcome


def run_once(config: Settings = settings, store: CanonicalStore | None = None) -> CycleOutcome:
    store = store or CanonicalStore(engine, batch_size=config.db_batch_size)
    selected = list(config.loaders)
    with build_connectors(config, selected) as connectors:
        loaders = build_loaders(config, store, connectors, selected)
        ctx = LoadContext.with_timeout(config.load_timeout_seconds)
        return run_cycle(store, loaders, ctx, max_workers=config.max_workers)


if __name__ == "__main__":
    from pipeline.app.logs import configure_logging

    configure_logging(settings.log_level)
    raise SystemExit(1 if run_once().failed else 0)
