from __future__ import annotations

import os
from collections.abc import Iterator

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from pipeline.app.config import Settings, settings
from pipeline.app.errors import ArtifactNotFound, ConnectorError


RESULT_FILE = "result.json"


class ObjectStorageConnector:
    """Read-only access to per-run result artifacts laid out as ``<prefix>/<run id>/result.json``."""

    def list_run_artifacts(self, prefix: str, since: str | None = None) -> Iterator[str]:
        raise NotImplementedError

    def fetch_artifact(self, run_id: str) -> bytes:
        raise NotImplementedError


class LocalObjectStorage(ObjectStorageConnector):
    def __init__(self, base_dir: str, prefix: str) -> None:
        self.base_dir = base_dir
        self.prefix = prefix

    def _path_for(self, run_id: str) -> str:
        return os.path.join(self.base_dir, self.prefix, run_id, RESULT_FILE)

    def list_run_artifacts(self, prefix: str, since: str | None = None) -> Iterator[str]:
        root = os.path.join(self.base_dir, prefix)
        if not os.path.isdir(root):
            return
        for run_id in sorted(os.listdir(root)):
            if since is not None and run_id <= since:
                continue
            if os.path.isdir(os.path.join(root, run_id)):
                yield run_id

    def fetch_artifact(self, run_id: str) -> bytes:
        path = self._path_for(run_id)
        try:
            with open(path, "rb") as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise ArtifactNotFound(run_id) from exc


class S3ObjectStorage(ObjectStorageConnector):
    def __init__(self, config: Settings, client: object | None = None) -> None:
        self.bucket = config.artifact_bucket
        self.prefix = config.artifact_prefix
        self.client = client or boto3.client(
            "s3",
            endpoint_url=config.s3_endpoint or None,
            aws_access_key_id=config.s3_access_key or None,
            aws_secret_access_key=config.s3_secret_key or None,
            region_name=config.s3_region,
            use_ssl=config.s3_secure,
        )

    def _key(self, run_id: str) -> str:
        return f"{self.prefix}/{run_id}/{RESULT_FILE}"

    def list_run_artifacts(self, prefix: str, since: str | None = None) -> Iterator[str]:
        paginator = self.client.get_paginator("list_objects_v2")
        kwargs: dict[str, object] = {"Bucket": self.bucket, "Prefix": f"{prefix}/", "Delimiter": "/"}
        if since:
            kwargs["StartAfter"] = f"{prefix}/{since}/~"
        try:
            for page in paginator.paginate(**kwargs):
                for common in page.get("CommonPrefixes", []):
                    run_id = common["Prefix"][len(prefix) + 1 :].rstrip("/")
                    if since is not None and run_id <= since:
                        continue
                    yield run_id
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            auth = code in {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
            raise ConnectorError(
                f"listing s3://{self.bucket}/{prefix} failed: {exc}",
                {"bucket": self.bucket, "error_code": code},
                code="CONNECTOR_AUTH" if auth else "CONNECTOR_UNAVAILABLE",
            ) from exc
        except BotoCoreError as exc:
            raise ConnectorError(f"listing s3://{self.bucket}/{prefix} failed: {exc}") from exc

    def fetch_artifact(self, run_id: str) -> bytes:
        key = self._key(run_id)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in {"NoSuchKey", "404", "NotFound"}:
                raise ArtifactNotFound(run_id) from exc
            raise ConnectorError(f"fetching s3://{self.bucket}/{key} failed: {exc}", {"error_code": code}) from exc
        except BotoCoreError as exc:
            raise ConnectorError(f"fetching s3://{self.bucket}/{key} failed: {exc}") from exc


def build_object_storage(config: Settings = settings) -> ObjectStorageConnector:
    if config.artifact_store_mode.lower() == "s3":
        return S3ObjectStorage(config)
    return LocalObjectStorage(config.artifact_local_dir, config.artifact_prefix)
