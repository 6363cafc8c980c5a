from __future__ import annotations

import threading

from snapbak.common.config import Settings, get_settings
from snapbak.infra.observability.metrics import BackupMetrics
from snapbak.infra.storage.client import ObjectStoreClient, TransferHandle


class ServiceError(Exception):
    """Base class for application service level exceptions."""


class ObjectAbsent(ServiceError):
    """The remote object does not exist, or the backend masks its absence."""


class TransientBackendError(ServiceError):
    """A backend failure the caller may retry at a higher level."""


class UploadError(TransientBackendError):
    """Raised when the backend fails to store an uploaded snapshot file."""


class Interrupted(ServiceError):
    """Raised when cancellation is observed while blocked on the backend."""


class CleanupFailure(ServiceError):
    """Raised by best-effort housekeeping; callers log and drop it."""


class SessionClosedError(ServiceError):
    """Raised when an uploader is used after its backend client was released."""


def wait_for_completion(
    handle: TransferHandle,
    *,
    cancel_event: threading.Event | None = None,
    poll_interval: float = 0.1,
    description: str = "complete transfer",
) -> None:
    """Block until ``handle`` finishes, honouring cancellation.

    Raises:
        Interrupted: If ``cancel_event`` is set or a KeyboardInterrupt arrives
            before the transfer finishes. The transfer is cancelled first.
        StorageError: If the backend reported a failure.
    """
    try:
        if cancel_event is None:
            handle.result()
            return
        while not handle.done():
            if cancel_event.is_set():
                handle.cancel()
                raise Interrupted(f"Cancelled while waiting to {description}")
            cancel_event.wait(poll_interval)
        handle.result()
    except KeyboardInterrupt as exc:
        handle.cancel()
        raise Interrupted(f"Interrupted while waiting to {description}") from exc


class BaseService:
    """Provides the backend client and helpers shared by application services."""

    def __init__(
        self,
        client: ObjectStoreClient,
        *,
        settings: Settings | None = None,
        metrics: BackupMetrics | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_settings()
        self._metrics = metrics or BackupMetrics()

    @property
    def client(self) -> ObjectStoreClient:
        return self._client

    @property
    def bucket(self) -> str:
        return self._settings.BACKUP_BUCKET

    @property
    def kms_key_id(self) -> str | None:
        return self._settings.KMS_KEY_ID

    def _wait(
        self,
        handle: TransferHandle,
        cancel_event: threading.Event | None,
        description: str,
    ) -> None:
        wait_for_completion(
            handle,
            cancel_event=cancel_event,
            poll_interval=self._settings.WAIT_POLL_INTERVAL_SECONDS,
            description=description,
        )
