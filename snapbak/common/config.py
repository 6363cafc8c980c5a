from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

SUPPORTED_STORAGE_BACKENDS: tuple[str, ...] = ("s3", "ibm")
# S3 rejects multipart chunks smaller than 5 MiB (except the last one)
MIN_MULTIPART_CHUNKSIZE_BYTES = 5 * 1024 * 1024


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class Settings:
    CLUSTER_ID: str = "default-cluster"
    BACKUP_ID: str = "default-backup"
    BACKUP_BUCKET: str = "snapshots"
    STORAGE_BACKEND: str = "s3"
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    STORAGE_CLASS: str | None = None
    KMS_KEY_ID: str | None = None
    MULTIPART_THRESHOLD_BYTES: int = 100 * 1024 * 1024
    MULTIPART_CHUNKSIZE_BYTES: int = 25 * 1024 * 1024
    MAX_CONCURRENCY: int = 4
    STALE_UPLOAD_HOURS: int = 24
    REAP_MAX_PAGES: int = 10000
    WAIT_POLL_INTERVAL_SECONDS: float = 0.1
    ENABLE_METRICS: bool = True
    METRICS_PORT: int | None = None

    def __post_init__(self) -> None:
        backend = self.STORAGE_BACKEND.strip().lower()
        if backend not in SUPPORTED_STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(SUPPORTED_STORAGE_BACKENDS)}, "
                f"got {self.STORAGE_BACKEND!r}."
            )
        self.STORAGE_BACKEND = backend
        for name in ("CLUSTER_ID", "BACKUP_ID", "BACKUP_BUCKET"):
            value = getattr(self, name)
            if not value or "/" in value:
                raise ValueError(f"{name} must be a non-empty string without '/'.")
        if self.MULTIPART_CHUNKSIZE_BYTES < MIN_MULTIPART_CHUNKSIZE_BYTES:
            raise ValueError("MULTIPART_CHUNKSIZE_BYTES must be at least 5 MiB.")
        if self.MULTIPART_THRESHOLD_BYTES <= 0 or self.MAX_CONCURRENCY <= 0:
            raise ValueError(
                "MULTIPART_THRESHOLD_BYTES and MAX_CONCURRENCY must be positive."
            )
        if self.STALE_UPLOAD_HOURS <= 0 or self.REAP_MAX_PAGES <= 0:
            raise ValueError("STALE_UPLOAD_HOURS and REAP_MAX_PAGES must be positive.")
        if self.WAIT_POLL_INTERVAL_SECONDS <= 0:
            raise ValueError("WAIT_POLL_INTERVAL_SECONDS must be positive.")

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        metrics_port = _as_optional(os.environ.get("METRICS_PORT"))
        return cls(
            CLUSTER_ID=os.environ.get("CLUSTER_ID", cls.CLUSTER_ID),
            BACKUP_ID=os.environ.get("BACKUP_ID", cls.BACKUP_ID),
            BACKUP_BUCKET=os.environ.get("BACKUP_BUCKET", cls.BACKUP_BUCKET),
            STORAGE_BACKEND=os.environ.get("STORAGE_BACKEND", cls.STORAGE_BACKEND),
            S3_ENDPOINT_URL=_as_optional(os.environ.get("S3_ENDPOINT_URL")),
            # the region falls back to the variable the AWS tooling itself reads
            S3_REGION=os.environ.get(
                "S3_REGION", os.environ.get("AWS_REGION", cls.S3_REGION)
            ),
            S3_ACCESS_KEY_ID=_as_optional(os.environ.get("S3_ACCESS_KEY_ID")),
            S3_SECRET_ACCESS_KEY=_as_optional(os.environ.get("S3_SECRET_ACCESS_KEY")),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=os.environ.get(
                "S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            STORAGE_CLASS=_as_optional(os.environ.get("STORAGE_CLASS")),
            KMS_KEY_ID=_as_optional(os.environ.get("KMS_KEY_ID")),
            MULTIPART_THRESHOLD_BYTES=int(
                os.environ.get(
                    "MULTIPART_THRESHOLD_BYTES", cls.MULTIPART_THRESHOLD_BYTES
                )
            ),
            MULTIPART_CHUNKSIZE_BYTES=int(
                os.environ.get(
                    "MULTIPART_CHUNKSIZE_BYTES", cls.MULTIPART_CHUNKSIZE_BYTES
                )
            ),
            MAX_CONCURRENCY=int(os.environ.get("MAX_CONCURRENCY", cls.MAX_CONCURRENCY)),
            STALE_UPLOAD_HOURS=int(
                os.environ.get("STALE_UPLOAD_HOURS", cls.STALE_UPLOAD_HOURS)
            ),
            REAP_MAX_PAGES=int(os.environ.get("REAP_MAX_PAGES", cls.REAP_MAX_PAGES)),
            WAIT_POLL_INTERVAL_SECONDS=float(
                os.environ.get(
                    "WAIT_POLL_INTERVAL_SECONDS", cls.WAIT_POLL_INTERVAL_SECONDS
                )
            ),
            ENABLE_METRICS=_as_bool(
                os.environ.get("ENABLE_METRICS"), cls.ENABLE_METRICS
            ),
            METRICS_PORT=int(metrics_port) if metrics_port else None,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
