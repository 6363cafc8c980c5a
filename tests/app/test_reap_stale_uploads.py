from __future__ import annotations

from datetime import datetime, timedelta, timezone

from scripts.reap_stale_uploads import reap_stale_uploads
from snapbak.app.services.snapshot_uploader import SnapshotUploader
from snapbak.infra.storage.client import MultipartUploadPage, MultipartUploadRecord
from tests.services.mock_storage import MockObjectStoreClient

NOW = datetime(2024, 10, 17, 12, 0, tzinfo=timezone.utc)


def _listing() -> list[MultipartUploadPage]:
    return [
        MultipartUploadPage(
            records=[
                MultipartUploadRecord(
                    object_key="cluster-a/backup-1/old.db",
                    upload_id="old",
                    initiated=NOW - timedelta(hours=30),
                ),
                MultipartUploadRecord(
                    object_key="cluster-a/backup-1/new.db",
                    upload_id="new",
                    initiated=NOW - timedelta(hours=1),
                ),
            ],
            truncated=False,
        )
    ]


def _uploader(client, settings, metrics) -> SnapshotUploader:
    return SnapshotUploader(client, settings=settings, metrics=metrics, clock=lambda: NOW)


def test_reap_stale_uploads_dry_run_then_abort(settings, metrics):
    client = MockObjectStoreClient(pages=_listing())

    # dry-run 统计
    report = reap_stale_uploads(uploader=_uploader(client, settings, metrics), dry_run=True)
    assert report.stale == 1
    assert client.abort_attempts == []
    assert client.shutdown_calls == 1

    # 实际中止过期 1 个
    client = MockObjectStoreClient(pages=_listing())
    report = reap_stale_uploads(uploader=_uploader(client, settings, metrics))
    assert report.aborted == 1
    assert client.aborted == ["old"]
    # 只列举一次：关闭 uploader 时不会再次清理
    assert len(client.list_calls) == 1
    assert client.shutdown_calls == 1


def test_reap_stale_uploads_custom_window_and_prefix(settings, metrics):
    client = MockObjectStoreClient(pages=_listing())

    report = reap_stale_uploads(
        uploader=_uploader(client, settings, metrics),
        prefix="cluster-a/backup-1",
        older_than=timedelta(minutes=30),
    )

    assert client.list_calls[0]["prefix"] == "cluster-a/backup-1"
    assert sorted(client.aborted) == ["new", "old"]
    assert report.aborted == 2
