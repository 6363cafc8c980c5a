"""Freshen-or-upload decision for snapshot objects.

An object that already exists remotely is refreshed with an in-place copy
(metadata replaced, bytes untouched) instead of being uploaded again.
"""

from __future__ import annotations

import logging
import threading

from snapbak.app.services.base import (
    BaseService,
    ObjectAbsent,
    ServiceError,
    TransientBackendError,
)
from snapbak.domain.references import FreshenResult, RemoteObjectReference
from snapbak.infra.storage.client import StorageError

logger = logging.getLogger(__name__)

# Under restrictive bucket policies S3 answers AccessDenied (403) instead of
# NoSuchKey (404) for a missing key.
ABSENT_STATUS_CODES = frozenset({403, 404})


def _classify_copy_error(exc: StorageError) -> ServiceError:
    if exc.status_code in ABSENT_STATUS_CODES:
        return ObjectAbsent(str(exc))
    return TransientBackendError(str(exc))


class FreshenService(BaseService):
    """Decides whether a remote object can be freshened in place."""

    def freshen(
        self,
        ref: RemoteObjectReference,
        *,
        cancel_event: threading.Event | None = None,
    ) -> FreshenResult:
        """Refresh ``ref`` with an in-place copy.

        Returns:
            ``FRESHENED`` when the copy succeeded, ``UPLOAD_REQUIRED`` when the
            backend reports the object absent (404 or 403).

        Raises:
            TransientBackendError: For any other backend failure.
            Interrupted: If cancelled while waiting for the copy.
        """
        try:
            try:
                handle = self._client.copy_in_place(
                    bucket=self.bucket,
                    object_key=ref.canonical_path,
                    metadata_replace=True,
                    kms_key_id=self.kms_key_id,
                )
                self._wait(handle, cancel_event, f"freshen {ref.canonical_path}")
            except StorageError as exc:
                raise _classify_copy_error(exc) from exc
        except ObjectAbsent as exc:
            logger.debug(
                "Remote object %s is absent; upload required (%s).",
                ref.canonical_path,
                exc,
            )
            self._metrics.inc_upload_required()
            return FreshenResult.UPLOAD_REQUIRED

        logger.debug("Freshened remote object %s.", ref.canonical_path)
        self._metrics.inc_freshened()
        return FreshenResult.FRESHENED
