"""Tests for SnapshotUploader."""

from __future__ import annotations

import io
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import PurePosixPath, PureWindowsPath
from unittest.mock import MagicMock, patch

import pytest

from snapbak.app.services.base import Interrupted, SessionClosedError
from snapbak.app.services.snapshot_uploader import SnapshotUploader
from snapbak.domain.references import FreshenResult
from snapbak.infra.storage.client import (
    MultipartUploadPage,
    MultipartUploadRecord,
    StorageError,
)

NOW = datetime(2024, 10, 17, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def uploader(mock_storage, settings, metrics):
    return SnapshotUploader(
        mock_storage, settings=settings, metrics=metrics, clock=lambda: NOW
    )


def _opener(payload: bytes, opened: list[int]):
    @contextmanager
    def open_stream():
        opened.append(1)
        yield io.BytesIO(payload)

    return open_stream


class TestRemoteReference:
    def test_reference_is_deterministic(self, uploader):
        first = uploader.object_key_to_remote_reference("data/ks/t1/nb-1-big-Data.db")
        second = uploader.object_key_to_remote_reference(
            PurePosixPath("data", "ks", "t1", "nb-1-big-Data.db")
        )

        assert first.canonical_path == "cluster-a/backup-1/data/ks/t1/nb-1-big-Data.db"
        assert first == second
        assert first.canonical_path == second.canonical_path

    def test_windows_keys_resolve_to_the_same_path(self, uploader):
        ref = uploader.object_key_to_remote_reference(
            PureWindowsPath("data", "ks", "t1", "nb-1-big-Data.db")
        )

        assert ref.canonical_path == "cluster-a/backup-1/data/ks/t1/nb-1-big-Data.db"


class TestFreshenOrUpload:
    def test_existing_object_is_not_uploaded(self, uploader, mock_storage):
        mock_storage.add_object("test-bucket", "cluster-a/backup-1/data/f.db", b"abc")
        opened: list[int] = []

        result = uploader.freshen_or_upload("data/f.db", 3, _opener(b"abc", opened))

        assert result is FreshenResult.FRESHENED
        assert opened == []
        assert mock_storage.puts == []

    def test_missing_object_is_uploaded(self, uploader, mock_storage):
        opened: list[int] = []

        result = uploader.freshen_or_upload("data/f.db", 3, _opener(b"abc", opened))

        assert result is FreshenResult.UPLOAD_REQUIRED
        assert opened == [1]
        assert mock_storage.objects["test-bucket/cluster-a/backup-1/data/f.db"]["data"] == b"abc"

    def test_session_cancel_interrupts_operations(self, uploader, mock_storage):
        mock_storage.hang = True
        ref = uploader.object_key_to_remote_reference("data/f.db")
        uploader.cancel()

        with pytest.raises(Interrupted):
            uploader.freshen_remote_object(ref)
        with pytest.raises(Interrupted):
            uploader.upload_snapshot_file(3, io.BytesIO(b"abc"), ref)


class TestClose:
    def test_close_reaps_then_shuts_down(self, uploader, mock_storage):
        mock_storage.pages = [
            MultipartUploadPage(
                records=[
                    MultipartUploadRecord(
                        object_key="cluster-a/backup-1/old.db",
                        upload_id="old",
                        initiated=NOW - timedelta(days=2),
                    )
                ],
                truncated=False,
            )
        ]

        uploader.close()

        assert mock_storage.aborted == ["old"]
        assert mock_storage.shutdown_calls == 1
        assert uploader.closed is True

    def test_shutdown_runs_once_even_when_reaper_fails(self, uploader, mock_storage):
        with patch.object(uploader.reaper, "reap", side_effect=RuntimeError("boom")):
            uploader.close()
            uploader.close()

        assert mock_storage.shutdown_calls == 1

    def test_interrupted_reaper_still_releases_client(self, uploader, mock_storage):
        with patch.object(uploader.reaper, "reap", side_effect=Interrupted("stop")):
            with pytest.raises(Interrupted):
                uploader.cleanup()

        assert mock_storage.shutdown_calls == 1

    def test_cancelled_session_skips_reaper(self, uploader, mock_storage):
        uploader.cancel()

        uploader.close()

        assert mock_storage.list_calls == []
        assert mock_storage.shutdown_calls == 1

    def test_close_without_reaping(self, uploader, mock_storage):
        uploader.close(reap=False)

        assert mock_storage.list_calls == []
        assert mock_storage.shutdown_calls == 1

    def test_shutdown_failure_is_logged(self, settings, metrics, caplog):
        client = MagicMock()
        client.list_multipart_uploads.return_value = MultipartUploadPage(
            records=[], truncated=False
        )
        client.shutdown.side_effect = StorageError("close failed")
        uploader = SnapshotUploader(client, settings=settings, metrics=metrics)

        uploader.close()

        client.shutdown.assert_called_once_with()
        assert "Failed to release object store client" in caplog.text

    def test_context_manager_closes(self, mock_storage, settings, metrics):
        with SnapshotUploader(mock_storage, settings=settings, metrics=metrics) as uploader:
            ref = uploader.object_key_to_remote_reference("data/f.db")
            uploader.upload_snapshot_file(3, io.BytesIO(b"abc"), ref)

        assert mock_storage.shutdown_calls == 1

    def test_closed_uploader_rejects_work(self, uploader):
        ref = uploader.object_key_to_remote_reference("data/f.db")
        uploader.close()

        with pytest.raises(SessionClosedError):
            uploader.freshen_remote_object(ref)
        with pytest.raises(SessionClosedError):
            uploader.upload_snapshot_file(3, io.BytesIO(b"abc"), ref)


class TestFromSettings:
    def test_builds_configured_backend(self, settings, metrics):
        client = MagicMock()
        with patch(
            "snapbak.app.services.snapshot_uploader.build_object_store_client",
            return_value=client,
        ) as build:
            uploader = SnapshotUploader.from_settings(settings, metrics=metrics)

        build.assert_called_once_with(settings)
        uploader.close(reap=False)
        client.shutdown.assert_called_once_with()

    def test_starts_exporter_when_port_configured(self, settings):
        metrics = MagicMock()
        settings.ENABLE_METRICS = True
        settings.METRICS_PORT = 9109
        with patch(
            "snapbak.app.services.snapshot_uploader.build_object_store_client",
            return_value=MagicMock(),
        ):
            SnapshotUploader.from_settings(settings, metrics=metrics)

        metrics.start_exporter.assert_called_once_with(9109)
