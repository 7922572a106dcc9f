from __future__ import annotations

import json
import os
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

# Keep the module-level engine on a throwaway sqlite file; tests build their own.
os.environ.setdefault("DATABASE_URL", "sqlite:///./ci_results_test.db")

from pipeline.app.connectors.object_storage import LocalObjectStorage  # noqa: E402
from pipeline.app.db import models  # noqa: E402,F401
from pipeline.app.db.session import Base, build_engine  # noqa: E402
from pipeline.app.db.store import CanonicalStore  # noqa: E402
from pipeline.app.modules.identity.suites import seed_registry  # noqa: E402


PREFIX = "runs"


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Any]:
    db_engine = build_engine(f"sqlite:///{tmp_path / 'ci.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def store(engine) -> CanonicalStore:
    return CanonicalStore(engine, batch_size=50)


@pytest.fixture
def seeded_store(store: CanonicalStore) -> CanonicalStore:
    seed_registry(store)
    return store


@pytest.fixture
def artifact_root(tmp_path: Path) -> Path:
    root = tmp_path / "artifacts"
    (root / PREFIX).mkdir(parents=True)
    return root


@pytest.fixture
def storage(artifact_root: Path) -> LocalObjectStorage:
    return LocalObjectStorage(str(artifact_root), PREFIX)


def artifact(
    run_id: str,
    job: str = "periodic-ci-openshift-release-master-nightly-4.16-e2e-aws-ovn",
    *,
    release: str = "4.16",
    outcome: str = "success",
    tests: list[dict[str, Any]] | None = None,
    started_at: datetime | None = None,
    **extra: Any,
) -> dict[str, Any]:
    started = started_at or datetime.now(timezone.utc) - timedelta(hours=1)
    return {
        "id": run_id,
        "job": job,
        "release": release,
        "started_at": started.isoformat(),
        "outcome": outcome,
        "tests": tests if tests is not None else [],
        **extra,
    }


@pytest.fixture
def write_artifact(artifact_root: Path) -> Callable[[str, dict[str, Any] | str], None]:
    def _write(run_id: str, payload: dict[str, Any] | str) -> None:
        folder = artifact_root / PREFIX / run_id
        folder.mkdir(parents=True, exist_ok=True)
        body = payload if isinstance(payload, str) else json.dumps(payload)
        (folder / "result.json").write_text(body, encoding="utf-8")

    return _write


@pytest.fixture
def make_artifact() -> Callable[..., dict[str, Any]]:
    return artifact
