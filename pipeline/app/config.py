from __future__ import annotations

import os
from dataclasses import dataclass, field


DEFAULT_LOADERS = ("prow", "releases", "jira", "github", "bugs", "test-mapping")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./ci_results.db"
    db_batch_size: int = 1024
    job_run_batch_size: int = 100
    artifact_store_mode: str = "local"
    artifact_bucket: str = "ci-artifacts"
    artifact_prefix: str = "runs"
    artifact_local_dir: str = ".data/artifacts"
    s3_endpoint: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_region: str = "us-east-1"
    s3_secure: bool = True
    warehouse_url: str = ""
    load_warehouse_jobs: bool = False
    tracker_url: str = ""
    tracker_token: str = ""
    source_host_url: str = "https://api.github.com"
    source_host_token: str = ""
    comment_include_repos: tuple[str, ...] = field(default_factory=tuple)
    comment_exclude_repos: tuple[str, ...] = field(default_factory=tuple)
    releases: tuple[str, ...] = field(default_factory=tuple)
    architectures: tuple[str, ...] = ("amd64",)
    loaders: tuple[str, ...] = DEFAULT_LOADERS
    never_stable_jobs: tuple[str, ...] = field(default_factory=tuple)
    load_timeout_seconds: int = 4 * 60 * 60
    http_timeout_seconds: float = 30.0
    http_max_retries: int = 3
    max_workers: int = 1
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "Settings":
        def b(name: str, default: bool = False) -> bool:
            value = os.getenv(name)
            if value is None:
                return default
            return value.strip().lower() in {"1", "true", "yes", "on"}

        def i(name: str, default: int) -> int:
            value = os.getenv(name)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        def f(name: str, default: float) -> float:
            value = os.getenv(name)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                return default

        def csv(name: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
            value = os.getenv(name)
            if value is None:
                return default
            return tuple(part.strip() for part in value.split(",") if part.strip())

        return Settings(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./ci_results.db"),
            db_batch_size=i("DB_BATCH_SIZE", 1024),
            job_run_batch_size=i("JOB_RUN_BATCH_SIZE", 100),
            artifact_store_mode=os.getenv("ARTIFACT_STORE_MODE", "local"),
            artifact_bucket=os.getenv("ARTIFACT_BUCKET", "ci-artifacts"),
            artifact_prefix=os.getenv("ARTIFACT_PREFIX", "runs"),
            artifact_local_dir=os.getenv("ARTIFACT_LOCAL_DIR", ".data/artifacts"),
            s3_endpoint=os.getenv("S3_ENDPOINT", ""),
            s3_access_key=os.getenv("S3_ACCESS_KEY", ""),
            s3_secret_key=os.getenv("S3_SECRET_KEY", ""),
            s3_region=os.getenv("S3_REGION", "us-east-1"),
            s3_secure=b("S3_SECURE", True),
            warehouse_url=os.getenv("WAREHOUSE_URL", ""),
            load_warehouse_jobs=b("LOAD_WAREHOUSE_JOBS", False),
            tracker_url=os.getenv("TRACKER_URL", ""),
            tracker_token=os.getenv("TRACKER_TOKEN", ""),
            source_host_url=os.getenv("SOURCE_HOST_URL", "https://api.github.com"),
            source_host_token=os.getenv("SOURCE_HOST_TOKEN", ""),
            comment_include_repos=csv("COMMENT_INCLUDE_REPOS"),
            comment_exclude_repos=csv("COMMENT_EXCLUDE_REPOS"),
            releases=csv("RELEASES"),
            architectures=csv("ARCHITECTURES", ("amd64",)),
            loaders=csv("LOADERS", DEFAULT_LOADERS),
            never_stable_jobs=csv("NEVER_STABLE_JOBS"),
            load_timeout_seconds=i("LOAD_TIMEOUT_SECONDS", 4 * 60 * 60),
            http_timeout_seconds=f("HTTP_TIMEOUT_SECONDS", 30.0),
            http_max_retries=i("HTTP_MAX_RETRIES", 3),
            max_workers=i("MAX_WORKERS", 1),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


settings = Settings.from_env()
