from __future__ import annotations

from typing import Any

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from pipeline.app.config import Settings, settings
from pipeline.app.errors import ConnectorError


class WarehouseConnector:
    """Runs read-only analytical queries against the columnar warehouse."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def close(self) -> None:
        self.engine.dispose()

    @classmethod
    def from_url(cls, url: str) -> "WarehouseConnector":
        return cls(create_engine(url, future=True))

    def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            raise ConnectorError(f"warehouse query failed: {exc}", {"sql": sql.strip()[:200]}) from exc


def build_warehouse(config: Settings = settings) -> WarehouseConnector | None:
    if not config.warehouse_url:
        return None
    return WarehouseConnector.from_url(config.warehouse_url)
