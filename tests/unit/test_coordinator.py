from __future__ import annotations

import pytest

from pipeline.app.errors import ConnectorError, ItemError, StoreError
from pipeline.app.modules.coordinator.service import DONE, PENDING, CoordinatorStateError, LoaderCoordinator
from pipeline.app.modules.loaders.base import DataLoader, LoadResult
from pipeline.app.modules.loaders.context import LoadContext


class StubLoader(DataLoader):
    def __init__(self, name: str, error: Exception | None = None, skipped: int = 0) -> None:
        self.name = name
        self.error = error
        self.skipped = skipped
        self.calls = 0

    def load(self, ctx: LoadContext) -> LoadResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        result = LoadResult()
        for i in range(self.skipped):
            result.skip(f"item-{i}", "unreadable")
        result.count("rows", 3)
        return result


def test_failures_are_isolated_and_tagged() -> None:
    loaders = [
        StubLoader("prow", skipped=1),
        StubLoader("bugs", error=ConnectorError("tracker unreachable")),
        StubLoader("releases"),
        StubLoader("test-mapping", error=StoreError("disk full")),
    ]
    coordinator = LoaderCoordinator(loaders)

    errors = coordinator.run(LoadContext())

    assert all(loader.calls == 1 for loader in loaders)
    assert [err.loader for err in errors] == ["bugs", "test-mapping"]
    assert errors[0].code == "CONNECTOR_UNAVAILABLE"
    assert errors[1].code == "STORE_WRITE_FAILED"
    assert coordinator.failed
    assert coordinator.metrics["prow"].succeeded
    assert coordinator.metrics["prow"].written == {"rows": 3}
    assert coordinator.item_error_count() == 1
    assert isinstance(coordinator.metrics["prow"].item_errors[0], ItemError)


def test_unexpected_exception_is_contained() -> None:
    coordinator = LoaderCoordinator([StubLoader("prow", error=KeyError("boom")), StubLoader("releases")])

    errors = coordinator.run(LoadContext())

    assert [err.loader for err in errors] == ["prow"]
    assert errors[0].code == "LOADER_CRASHED"
    assert coordinator.metrics["releases"].succeeded


def test_state_machine_is_single_use() -> None:
    coordinator = LoaderCoordinator([StubLoader("prow")])
    assert coordinator.state == PENDING

    assert coordinator.run(LoadContext()) == []
    assert coordinator.state == DONE
    assert not coordinator.failed

    with pytest.raises(CoordinatorStateError):
        coordinator.run(LoadContext())


def test_records_timing_and_summary() -> None:
    coordinator = LoaderCoordinator([StubLoader("prow", skipped=2), StubLoader("bugs", error=ConnectorError("401"))])
    coordinator.run(LoadContext())

    prow = coordinator.metrics["prow"]
    assert prow.started_at is not None
    assert prow.finished_at is not None
    assert prow.finished_at >= prow.started_at
    assert prow.duration_seconds >= 0

    lines = coordinator.summary()
    assert lines[0].startswith("prow: ok")
    assert "2 skipped items" in lines[0]
    assert lines[1].startswith("bugs: FAILED")


def test_parallel_run_isolates_failures() -> None:
    loaders = [StubLoader(f"loader-{i}", error=ConnectorError("down") if i == 2 else None) for i in range(5)]
    coordinator = LoaderCoordinator(loaders, max_workers=3)

    errors = coordinator.run(LoadContext())

    assert [err.loader for err in errors] == ["loader-2"]
    assert all(loader.calls == 1 for loader in loaders)
