from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from pipeline.app.errors import ConnectorError


logger = logging.getLogger(__name__)


class JsonApiClient:
    """httpx wrapper shared by the tracker and source-host connectors.

    5xx responses are retried with a linear backoff; 401/403 surface as
    ``CONNECTOR_AUTH`` so the owning loader aborts instead of skipping items.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.BaseTransport | None = None,
        auth_scheme: str = "Bearer",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.auth_scheme = auth_scheme
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"accept": "application/json"}
        if self.token:
            headers["authorization"] = f"{self.auth_scheme} {self.token}"

        attempts = 0
        while True:
            attempts += 1
            try:
                response = self._client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                    timeout=self.timeout if timeout is None else timeout,
                )
            except httpx.TimeoutException as exc:
                raise ConnectorError(f"{method} {url} timed out: {exc}", {"url": url}) from exc
            except httpx.TransportError as exc:
                raise ConnectorError(f"{method} {url} failed: {exc}", {"url": url}) from exc
            if response.status_code < 500 or attempts > self.max_retries:
                break
            logger.warning("%s %s returned %d, retrying", method, url, response.status_code)
            time.sleep(0.2 * attempts)

        if response.status_code in {401, 403}:
            raise ConnectorError(
                f"{method} {url} was rejected with {response.status_code}",
                {"url": url, "status_code": response.status_code},
                code="CONNECTOR_AUTH",
            )
        if response.status_code >= 400:
            raise ConnectorError(
                f"{method} {url} returned {response.status_code}",
                {"url": url, "status_code": response.status_code},
            )
        if not response.content:
            return None
        return response.json()
