from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from pipeline.app.connectors.warehouse import WarehouseConnector
from pipeline.app.db.models import Test
from pipeline.app.db.store import CanonicalStore
from pipeline.app.modules.identity.suites import load_registry
from pipeline.app.modules.loaders.base import DataLoader, LoadResult
from pipeline.app.modules.loaders.context import LoadContext
from pipeline.app.schemas.artifacts import TestOwnershipRecord


logger = logging.getLogger(__name__)

TEST_OWNERSHIP_QUERY = """
SELECT name, component, capabilities, staff_approved_obsolete
FROM component_mapping
WHERE created_at = (SELECT MAX(created_at) FROM component_mapping)
"""


class TestOwnershipLoader(DataLoader):
    """Maps canonical test names to the component that owns them."""

    __test__ = False
    name = "test-mapping"

    def __init__(self, store: CanonicalStore, warehouse: WarehouseConnector | None) -> None:
        self.store = store
        self.warehouse = warehouse

    def load(self, ctx: LoadContext) -> LoadResult:
        result = LoadResult()
        if self.warehouse is None:
            logger.info("no warehouse configured, skipping test ownership")
            return result

        registry, _ = load_registry(self.store)
        ctx.check()
        rows: dict[str, dict[str, Any]] = {}
        for row in self.warehouse.query(TEST_OWNERSHIP_QUERY):
            try:
                record = TestOwnershipRecord.model_validate(row)
            except ValidationError as exc:
                result.skip(str(row.get("name")), f"invalid ownership row: {exc.error_count()} errors")
                continue
            _, canonical = registry.split(record.name)
            rows[canonical] = {**record.model_dump(), "name": canonical}

        ctx.check()
        test_ids = self.store.ids_by(Test.__table__.c.name, sorted(rows))
        for name, row in rows.items():
            row["test_id"] = test_ids.get(name)
        self.store.upsert_test_ownerships(list(rows.values()))

        result.count("test_ownerships", len(rows))
        logger.info("stored ownership for %d tests (%d matched known tests)", len(rows), len(test_ids))
        return result
