from __future__ import annotations

from typing import Any

from pipeline.app.config import Settings, settings
from pipeline.app.connectors.http import JsonApiClient


class SourceHostConnector:
    """GitHub REST access: pull request listing and issue comments."""

    def __init__(self, client: JsonApiClient, page_size: int = 100) -> None:
        self.client = client
        self.page_size = page_size

    def close(self) -> None:
        self.client.close()

    def list_pull_requests(self, repo: str, state: str = "open", timeout: float | None = None) -> list[dict[str, Any]]:
        pulls: list[dict[str, Any]] = []
        page = 1
        while True:
            batch = self.client.request(
                "GET",
                f"/repos/{repo}/pulls",
                params={"state": state, "per_page": self.page_size, "page": page},
                timeout=timeout,
            ) or []
            pulls.extend(batch)
            if len(batch) < self.page_size:
                return pulls
            page += 1

    def get_pull_request(self, repo: str, number: int, timeout: float | None = None) -> dict[str, Any]:
        return self.client.request("GET", f"/repos/{repo}/pulls/{number}", timeout=timeout) or {}

    def post_comment(self, repo: str, number: int, text: str, timeout: float | None = None) -> None:
        self.client.request("POST", f"/repos/{repo}/issues/{number}/comments", json={"body": text}, timeout=timeout)


def build_source_host(config: Settings = settings) -> SourceHostConnector:
    client = JsonApiClient(
        config.source_host_url,
        token=config.source_host_token or None,
        timeout=config.http_timeout_seconds,
        max_retries=config.http_max_retries,
        auth_scheme="token",
    )
    return SourceHostConnector(client)
