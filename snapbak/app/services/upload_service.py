"""Streamed upload of snapshot files."""

from __future__ import annotations

import logging
import threading
from typing import BinaryIO

from snapbak.app.services.base import BaseService, UploadError
from snapbak.domain.references import RemoteObjectReference
from snapbak.infra.storage.client import StorageError

logger = logging.getLogger(__name__)


class UploadService(BaseService):
    """Uploads a stream of known length, one part at a time for large files."""

    def _part_completed_observer(self, ref: RemoteObjectReference):
        def observer() -> None:
            # runs on transfer threads; nothing raised here may reach them
            try:
                self._metrics.inc_part_uploaded()
                logger.debug("Successfully uploaded part for %s.", ref.canonical_path)
            except Exception:
                logger.warning(
                    "Progress observer failed for %s.", ref.canonical_path, exc_info=True
                )

        return observer

    def upload(
        self,
        size: int,
        stream: BinaryIO,
        ref: RemoteObjectReference,
        *,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Upload ``size`` bytes from ``stream`` to ``ref`` and wait for it.

        Raises:
            ValueError: If ``size`` is negative or not an integer.
            UploadError: If the backend fails to store the object.
            Interrupted: If cancelled while waiting for the upload.
        """
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValueError(f"size must be a non-negative integer, got {size!r}")

        try:
            handle = self._client.put_object(
                bucket=self.bucket,
                object_key=ref.canonical_path,
                stream=stream,
                size=size,
                kms_key_id=self.kms_key_id,
                on_part_completed=self._part_completed_observer(ref),
            )
            self._wait(handle, cancel_event, f"upload {ref.canonical_path}")
        except StorageError as exc:
            self._metrics.inc_upload_failed()
            raise UploadError(f"Failed to upload {ref.canonical_path}: {exc}") from exc

        self._metrics.inc_object_uploaded(size)
        logger.info(
            "Uploaded %s (%d bytes).",
            ref.canonical_path,
            size,
            extra={"extra": {"object": ref.canonical_path, "size_bytes": size}},
        )
