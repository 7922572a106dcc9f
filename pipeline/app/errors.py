from __future__ import annotations


class PipelineError(Exception):
    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class LoaderFatalError(PipelineError):
    """Aborts the loader that raised it; other loaders keep running."""


class ConnectorError(LoaderFatalError):
    def __init__(self, message: str, details: dict[str, object] | None = None, code: str = "CONNECTOR_UNAVAILABLE") -> None:
        super().__init__(code, message, details)


class StoreError(LoaderFatalError):
    def __init__(self, message: str, committed: int = 0, details: dict[str, object] | None = None) -> None:
        super().__init__("STORE_WRITE_FAILED", message, details)
        self.committed = committed


class LoadCancelled(LoaderFatalError):
    def __init__(self, message: str = "load deadline exceeded") -> None:
        super().__init__("DEADLINE_EXCEEDED", message)


class RegistryUnavailableError(LoaderFatalError):
    def __init__(self, message: str = "suite registry is not loaded") -> None:
        super().__init__("REGISTRY_UNAVAILABLE", message)


class ArtifactNotFound(PipelineError):
    def __init__(self, run_id: str) -> None:
        super().__init__("ITEM_NOT_FOUND", f"artifact for run {run_id} not found", {"run_id": run_id})
        self.run_id = run_id


class ItemError(PipelineError):
    """A single record that could not be ingested. Collected, never raised past the loader."""

    def __init__(self, item: str, message: str, code: str = "ITEM_INVALID") -> None:
        super().__init__(code, message, {"item": item})
        self.item = item

    def __str__(self) -> str:
        return f"{self.item}: {self.message}"
