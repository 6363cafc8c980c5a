from __future__ import annotations

import os

import pytest

from snapbak.common.config import Settings, get_settings
from snapbak.infra.observability.metrics import BackupMetrics
from tests.services.mock_storage import MockObjectStoreClient

os.environ.setdefault("CLUSTER_ID", "cluster-a")
os.environ.setdefault("BACKUP_ID", "backup-1")
os.environ.setdefault("BACKUP_BUCKET", "test-bucket")
os.environ["ENABLE_METRICS"] = "false"
get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_settings_cache():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        CLUSTER_ID="cluster-a",
        BACKUP_ID="backup-1",
        BACKUP_BUCKET="test-bucket",
        ENABLE_METRICS=False,
        WAIT_POLL_INTERVAL_SECONDS=0.01,
    )


@pytest.fixture()
def metrics() -> BackupMetrics:
    return BackupMetrics()


@pytest.fixture()
def mock_storage() -> MockObjectStoreClient:
    return MockObjectStoreClient()
