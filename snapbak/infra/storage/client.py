"""Object store client protocol and data types.

This module defines the capability the backup core consumes from an object
storage backend: in-place copies, streamed uploads, multipart upload listing
and abort, and connection release. Provider specific variants live next to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable, Protocol, Sequence


class StorageError(RuntimeError):
    """Raised when object storage operations fail.

    ``status_code`` carries the HTTP status reported by the backend when one
    is available; ``error_code`` the provider's symbolic code.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


@dataclass(frozen=True, slots=True)
class MultipartUploadRecord:
    """An incomplete multipart upload as reported by the backend."""

    object_key: str
    upload_id: str
    initiated: datetime


@dataclass(frozen=True, slots=True)
class UploadCursor:
    """Continuation markers for multipart upload listings."""

    key_marker: str | None = None
    upload_id_marker: str | None = None


@dataclass(frozen=True, slots=True)
class MultipartUploadPage:
    """One page of a multipart upload listing."""

    records: Sequence[MultipartUploadRecord]
    truncated: bool
    next_cursor: UploadCursor | None = None


class TransferHandle(Protocol):
    """An in-flight copy or upload that can be waited upon."""

    def done(self) -> bool:
        """Return True once the transfer has finished, successfully or not."""
        ...

    def result(self) -> None:
        """Block until the transfer finishes.

        Raises:
            StorageError: If the backend reported a failure.
        """
        ...

    def cancel(self) -> None:
        """Request cancellation of the transfer."""
        ...


class ObjectStoreClient(Protocol):
    """Protocol defining the interface for object storage backends.

    Implementations must provide all methods defined here and be safe to
    share between worker threads.
    """

    def copy_in_place(
        self,
        *,
        bucket: str,
        object_key: str,
        metadata_replace: bool,
        kms_key_id: str | None = None,
    ) -> TransferHandle:
        """Copy an object onto itself to refresh its metadata and retention.

        Args:
            bucket: Bucket holding the object.
            object_key: Object key (path) in the bucket.
            metadata_replace: Replace rather than copy the object metadata.
            kms_key_id: Server side encryption key id, if one is configured.

        Returns:
            Handle for the in-flight copy. A missing object surfaces as a
            ``StorageError`` from ``result()``.

        Raises:
            StorageError: If the request cannot be submitted.
        """
        ...

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        stream: BinaryIO,
        size: int,
        kms_key_id: str | None = None,
        on_part_completed: Callable[[], None] | None = None,
    ) -> TransferHandle:
        """Upload ``size`` bytes read from ``stream``.

        Args:
            bucket: Target bucket name.
            object_key: Object key (path) in the bucket.
            stream: Readable binary stream positioned at the first byte.
            size: Number of bytes declared up front.
            kms_key_id: Server side encryption key id, if one is configured.
            on_part_completed: Called once per completed part.

        Returns:
            Handle for the in-flight upload.

        Raises:
            StorageError: If the request cannot be submitted.
        """
        ...

    def list_multipart_uploads(
        self,
        *,
        bucket: str,
        prefix: str,
        cursor: UploadCursor | None = None,
    ) -> MultipartUploadPage:
        """List one page of incomplete multipart uploads under ``prefix``.

        Raises:
            StorageError: If the listing fails.
        """
        ...

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and discard its uploaded parts.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def shutdown(self) -> None:
        """Release pooled connections and transfer threads."""
        ...
