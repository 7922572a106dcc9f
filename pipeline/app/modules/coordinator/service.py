from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pipeline.app.errors import ItemError, LoaderFatalError, PipelineError
from pipeline.app.modules.loaders.base import DataLoader
from pipeline.app.modules.loaders.context import LoadContext


logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
DONE = "done"


class CoordinatorStateError(RuntimeError):
    pass


class LoaderFailure(PipelineError):
    """A fatal error tagged with the loader that raised it."""

    def __init__(self, loader: str, cause: BaseException) -> None:
        code = cause.code if isinstance(cause, PipelineError) else "LOADER_CRASHED"
        super().__init__(code, f"{loader}: {cause}", {"loader": loader})
        self.loader = loader
        self.cause = cause


@dataclass
class LoaderMetrics:
    name: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_seconds: float = 0.0
    item_errors: list[ItemError] = field(default_factory=list)
    written: dict[str, int] = field(default_factory=dict)
    fatal_error: LoaderFailure | None = None

    @property
    def succeeded(self) -> bool:
        return self.fatal_error is None

    def summary_line(self) -> str:
        state = "ok" if self.succeeded else f"FAILED ({self.fatal_error.cause})"
        return (
            f"{self.name}: {state} in {self.duration_seconds:.1f}s, "
            f"{len(self.item_errors)} skipped items"
        )


class LoaderCoordinator:
    """Runs a fixed set of loaders once, isolating their failures.

    One instance per invocation: ``pending -> running -> done``. Writes made
    by loaders that succeed are kept even when others fail.
    """

    def __init__(self, loaders: Sequence[DataLoader], max_workers: int = 1) -> None:
        self.loaders = list(loaders)
        self.max_workers = max(1, max_workers)
        self.state = PENDING
        self.metrics: dict[str, LoaderMetrics] = {loader.name: LoaderMetrics(loader.name) for loader in self.loaders}

    def run(self, ctx: LoadContext) -> list[LoaderFailure]:
        if self.state != PENDING:
            raise CoordinatorStateError(f"coordinator already {self.state}; create a new one per invocation")
        self.state = RUNNING
        try:
            if self.max_workers == 1 or len(self.loaders) <= 1:
                for loader in self.loaders:
                    self._run_one(loader, ctx)
            else:
                with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="loader") as pool:
                    list(pool.map(lambda loader: self._run_one(loader, ctx), self.loaders))
        finally:
            self.state = DONE
        return self.errors()

    def _run_one(self, loader: DataLoader, ctx: LoadContext) -> None:
        metrics = self.metrics[loader.name]
        metrics.started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        logger.info("loader %s starting", loader.name)
        try:
            result = loader.load(ctx)
            metrics.item_errors = list(result.item_errors)
            metrics.written = dict(result.written)
        except LoaderFatalError as exc:
            metrics.fatal_error = LoaderFailure(loader.name, exc)
            logger.error("loader %s failed: %s", loader.name, exc)
        except Exception as exc:  # noqa: BLE001
            metrics.fatal_error = LoaderFailure(loader.name, exc)
            logger.exception("loader %s crashed", loader.name)
        finally:
            metrics.finished_at = datetime.now(timezone.utc)
            metrics.duration_seconds = time.monotonic() - start
        if metrics.succeeded:
            logger.info(
                "loader %s finished in %.1fs (%d skipped items)",
                loader.name,
                metrics.duration_seconds,
                len(metrics.item_errors),
            )

    def errors(self) -> list[LoaderFailure]:
        return [
            self.metrics[loader.name].fatal_error
            for loader in self.loaders
            if self.metrics[loader.name].fatal_error is not None
        ]

    @property
    def failed(self) -> bool:
        return bool(self.errors())

    def item_error_count(self) -> int:
        return sum(len(metrics.item_errors) for metrics in self.metrics.values())

    def summary(self) -> list[str]:
        return [self.metrics[loader.name].summary_line() for loader in self.loaders]
