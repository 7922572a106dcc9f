from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from pipeline.app.errors import LoadCancelled


@dataclass
class LoadContext:
    """Deadline and cancellation shared by every loader in one invocation."""

    deadline: float | None = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)

    @classmethod
    def with_timeout(cls, seconds: float) -> "LoadContext":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return self.cancelled or (self.deadline is not None and time.monotonic() >= self.deadline)

    def check(self) -> None:
        if self.cancelled:
            raise LoadCancelled("load cancelled")
        if self.expired():
            raise LoadCancelled()

    def timeout(self, default: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)
