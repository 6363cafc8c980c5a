"""Entry point used by the backup orchestrator.

``SnapshotUploader`` owns one backend client for the whole backup session and
exposes the per-object operations (reference resolution, freshen, upload) plus
session teardown, which reaps stale multipart uploads and then releases the
client exactly once.
"""

from __future__ import annotations

import logging
import threading
from contextlib import AbstractContextManager
from datetime import datetime
from pathlib import PurePath
from typing import BinaryIO, Callable

from snapbak.app.services.base import Interrupted, SessionClosedError
from snapbak.app.services.freshen_service import FreshenService
from snapbak.app.services.reaper_service import StaleUploadReaper
from snapbak.app.services.upload_service import UploadService
from snapbak.common.config import Settings, get_settings
from snapbak.domain.references import (
    FreshenResult,
    RemoteObjectReference,
    object_key_to_remote_reference,
)
from snapbak.infra.observability.metrics import BackupMetrics
from snapbak.infra.storage.client import ObjectStoreClient
from snapbak.infra.storage.s3_client import build_object_store_client

logger = logging.getLogger(__name__)
startup_logger = logging.getLogger("snapbak.startup")


class SnapshotUploader:
    """Remote object lifecycle for one backup session.

    Safe to share between worker threads as long as each worker handles a
    distinct remote object; concurrent writes to the same canonical path are
    not coordinated here.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        *,
        settings: Settings | None = None,
        metrics: BackupMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._metrics = metrics or BackupMetrics()
        self._freshen_service = FreshenService(
            client, settings=self._settings, metrics=self._metrics
        )
        self._upload_service = UploadService(
            client, settings=self._settings, metrics=self._metrics
        )
        self._reaper = StaleUploadReaper(
            client, settings=self._settings, metrics=self._metrics, clock=clock
        )
        self._cancel_event = threading.Event()
        self._close_lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        metrics: BackupMetrics | None = None,
    ) -> "SnapshotUploader":
        """Build an uploader with the provider client selected in settings."""
        settings = settings or get_settings()
        metrics = metrics or BackupMetrics()
        if settings.ENABLE_METRICS and settings.METRICS_PORT is not None:
            metrics.start_exporter(settings.METRICS_PORT)
        client = build_object_store_client(settings)
        startup_logger.info(
            "Snapshot uploader ready: backend=%s bucket=%s cluster=%s backup=%s kms=%s",
            settings.STORAGE_BACKEND,
            settings.BACKUP_BUCKET,
            settings.CLUSTER_ID,
            settings.BACKUP_ID,
            "on" if settings.KMS_KEY_ID else "off",
        )
        return cls(client, settings=settings, metrics=metrics)

    @property
    def metrics(self) -> BackupMetrics:
        return self._metrics

    @property
    def reaper(self) -> StaleUploadReaper:
        return self._reaper

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "SnapshotUploader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("snapshot uploader is closed")

    def _cancel_event_for(
        self, cancel_event: threading.Event | None
    ) -> threading.Event:
        return cancel_event if cancel_event is not None else self._cancel_event

    def cancel(self) -> None:
        """Interrupt every blocking wait of this session."""
        self._cancel_event.set()

    def object_key_to_remote_reference(
        self, local_key: PurePath | str
    ) -> RemoteObjectReference:
        return object_key_to_remote_reference(
            local_key,
            cluster_id=self._settings.CLUSTER_ID,
            backup_id=self._settings.BACKUP_ID,
        )

    def freshen_remote_object(
        self,
        ref: RemoteObjectReference,
        *,
        cancel_event: threading.Event | None = None,
    ) -> FreshenResult:
        self._ensure_open()
        return self._freshen_service.freshen(
            ref, cancel_event=self._cancel_event_for(cancel_event)
        )

    def upload_snapshot_file(
        self,
        size: int,
        stream: BinaryIO,
        ref: RemoteObjectReference,
        *,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._ensure_open()
        self._upload_service.upload(
            size, stream, ref, cancel_event=self._cancel_event_for(cancel_event)
        )

    def freshen_or_upload(
        self,
        local_key: PurePath | str,
        size: int,
        open_stream: Callable[[], AbstractContextManager[BinaryIO]],
        *,
        cancel_event: threading.Event | None = None,
    ) -> FreshenResult:
        """Back up one object: freshen it, uploading only when that is not enough.

        ``open_stream`` is only called when an upload is required.

        Returns:
            The freshen outcome; ``UPLOAD_REQUIRED`` means the object was
            uploaded.
        """
        ref = self.object_key_to_remote_reference(local_key)
        result = self.freshen_remote_object(ref, cancel_event=cancel_event)
        if result is FreshenResult.UPLOAD_REQUIRED:
            with open_stream() as stream:
                self.upload_snapshot_file(size, stream, ref, cancel_event=cancel_event)
        return result

    def cleanup(self, *, reap: bool = True) -> None:
        """Reap stale multipart uploads, then release the backend client.

        Reaper failures are logged and dropped. The client is released even
        when the reaper is interrupted, in which case ``Interrupted``
        propagates afterwards. Calling this more than once is a no-op.
        ``reap=False`` only releases the client.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            if reap and self._cancel_event.is_set():
                logger.info("Session cancelled; skipping multipart upload cleanup.")
            elif reap:
                self._reaper.reap(cancel_event=self._cancel_event)
        except Interrupted:
            raise
        except Exception:
            logger.warning("Failed to cleanup multipart uploads.", exc_info=True)
        finally:
            self._release_client()

    close = cleanup

    def _release_client(self) -> None:
        try:
            self._client.shutdown()
        except Exception:
            logger.warning("Failed to release object store client.", exc_info=True)
