from __future__ import annotations

from dataclasses import dataclass, field

from pipeline.app.errors import ItemError
from pipeline.app.modules.loaders.context import LoadContext


@dataclass
class LoadResult:
    item_errors: list[ItemError] = field(default_factory=list)
    written: dict[str, int] = field(default_factory=dict)

    def count(self, entity: str, amount: int) -> None:
        self.written[entity] = self.written.get(entity, 0) + amount

    def skip(self, item: str, message: str, code: str = "ITEM_INVALID") -> None:
        self.item_errors.append(ItemError(item, message, code=code))


class DataLoader:
    """One data category. ``load`` returns item-level errors and raises ``LoaderFatalError``."""

    name: str = ""

    def load(self, ctx: LoadContext) -> LoadResult:
        raise NotImplementedError
