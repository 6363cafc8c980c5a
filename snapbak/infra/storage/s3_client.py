"""S3-compatible object store client implementation.

This module provides the object store capability on top of boto3 and its
managed transfer layer (s3transfer). It works with AWS S3, MinIO and IBM Cloud
Object Storage through their S3-compatible APIs.

Dependencies:
    - boto3
    - botocore
    - s3transfer
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, BinaryIO, Callable

import boto3
from boto3.s3.transfer import TransferConfig, create_transfer_manager
from botocore.config import Config
from botocore.exceptions import ClientError
from s3transfer.subscribers import BaseSubscriber
from s3transfer.utils import ChunksizeAdjuster

from snapbak.infra.storage.client import (
    MultipartUploadPage,
    MultipartUploadRecord,
    ObjectStoreClient,
    StorageError,
    UploadCursor,
)

if TYPE_CHECKING:
    from snapbak.common.config import Settings

logger = logging.getLogger(__name__)


def _to_storage_error(message: str, exc: Exception) -> StorageError:
    """Translate a boto3/botocore failure, keeping the HTTP status if any."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        error_code = error.get("Code")
        status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        # HEAD requests made by the copy path carry the status as the code
        if status_code is None and error_code and str(error_code).isdigit():
            status_code = int(error_code)
        return StorageError(
            f"{message}: {exc}",
            status_code=int(status_code) if status_code is not None else None,
            error_code=error_code,
        )
    return StorageError(f"{message}: {exc}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class S3TransferHandle:
    """Wraps an s3transfer ``TransferFuture``."""

    def __init__(self, future: Any, *, description: str) -> None:
        self._future = future
        self._description = description

    def done(self) -> bool:
        return bool(self._future.done())

    def result(self) -> None:
        try:
            self._future.result()
        except Exception as exc:
            raise _to_storage_error(f"Failed to {self._description}", exc) from exc

    def cancel(self) -> None:
        self._future.cancel()


class DeclaredSizeReader:
    """Read-only view of a stream that must hold exactly ``size`` bytes.

    The view is not seekable, so the transfer manager reads it front to back
    and the reader sees both ends of the stream. Ending early or holding more
    data than declared raises ``StorageError`` inside the transfer, which
    fails it and aborts any multipart upload it started.
    """

    def __init__(self, stream: BinaryIO, size: int, *, object_key: str) -> None:
        self._stream = stream
        self._size = size
        self._remaining = size
        self._object_key = object_key
        self._checked_end = False

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def read(self, amount: int | None = -1) -> bytes:
        if amount is None or amount < 0 or amount > self._remaining:
            amount = self._remaining
        chunks: list[bytes] = []
        wanted = amount
        while wanted > 0:
            chunk = self._stream.read(wanted)
            if not chunk:
                break
            chunks.append(chunk)
            wanted -= len(chunk)
        data = b"".join(chunks)
        self._remaining -= len(data)
        if wanted > 0:
            raise StorageError(
                f"Stream for {self._object_key} ended after "
                f"{self._size - self._remaining} of {self._size} declared bytes"
            )
        if self._remaining == 0 and not self._checked_end:
            self._checked_end = True
            if self._stream.read(1):
                raise StorageError(
                    f"Stream for {self._object_key} holds more than "
                    f"{self._size} declared bytes"
                )
        return data


class ProvideSizeSubscriber(BaseSubscriber):
    """Declares the transfer size up front so the stream is never measured."""

    def __init__(self, size: int) -> None:
        self._size = size

    def on_queued(self, future, **kwargs):
        future.meta.provide_transfer_size(self._size)


class PartProgressSubscriber(BaseSubscriber):
    """Turns byte level progress into one notification per part.

    s3transfer reports bytes sent, not finished parts. A part is reported when
    the running byte total crosses its boundary, so with several worker
    threads a notification can come before the matching part request returns.
    The number of notifications always equals the number of parts.

    Progress arrives from several worker threads and is negative when a part
    is retried, so the running total is guarded by a lock and parts are only
    ever reported once. A failing callback is logged and never reaches the
    transfer.
    """

    def __init__(
        self,
        *,
        size: int,
        part_size: int,
        total_parts: int,
        callback: Callable[[], None],
    ) -> None:
        self._size = size
        self._part_size = part_size
        self._total_parts = total_parts
        self._callback = callback
        self._lock = threading.Lock()
        self._transferred = 0
        self._reported = 0

    def on_progress(self, future, bytes_transferred, **kwargs):
        with self._lock:
            self._transferred += bytes_transferred
            if self._transferred >= self._size:
                completed = self._total_parts
            else:
                completed = min(self._transferred // self._part_size, self._total_parts)
            pending = max(completed - self._reported, 0)
            self._reported += pending
        for _ in range(pending):
            try:
                self._callback()
            except Exception:
                logger.warning("Part completion callback failed.", exc_info=True)


class S3ObjectStoreClient:
    """S3-compatible object store client.

    Supports AWS S3, MinIO, and other S3-compatible services.
    Uses a boto3 client for listing/abort and a shared s3transfer manager for
    copies and uploads.
    """

    def __init__(self, *, settings: "Settings") -> None:
        """Initialize the client and its transfer manager from settings.

        Args:
            settings: Application settings containing storage configuration.
        """
        self._settings = settings
        self._transfer_config = TransferConfig(
            multipart_threshold=settings.MULTIPART_THRESHOLD_BYTES,
            multipart_chunksize=settings.MULTIPART_CHUNKSIZE_BYTES,
            max_concurrency=settings.MAX_CONCURRENCY,
            use_threads=True,
            preferred_transfer_client="classic",
        )
        self._client = self._build_client(settings)
        self._transfer_manager = self._build_transfer_manager(
            self._client, self._transfer_config
        )

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        addressing_style = (settings.S3_ADDRESSING_STYLE or "path").strip().lower()
        config = Config(
            s3={"addressing_style": addressing_style},
            max_pool_connections=max(10, settings.MAX_CONCURRENCY * 2),
        )

        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=bool(settings.S3_USE_SSL),
            config=config,
        )

    @staticmethod
    def _build_transfer_manager(client: Any, config: TransferConfig) -> Any:
        return create_transfer_manager(client, config)

    def _copy_storage_class(self) -> str | None:
        return self._settings.STORAGE_CLASS

    @staticmethod
    def _encryption_args(kms_key_id: str | None) -> dict[str, str]:
        if kms_key_id is None:
            return {}
        return {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": kms_key_id}

    def _count_parts(self, size: int) -> tuple[int, int]:
        """Return ``(part_size, total_parts)`` the transfer manager will use."""
        if size == 0:
            return 1, 0
        if size < self._transfer_config.multipart_threshold:
            return size, 1
        part_size = ChunksizeAdjuster().adjust_chunksize(
            self._transfer_config.multipart_chunksize, size
        )
        return part_size, math.ceil(size / part_size)

    def copy_in_place(
        self,
        *,
        bucket: str,
        object_key: str,
        metadata_replace: bool,
        kms_key_id: str | None = None,
    ) -> S3TransferHandle:
        """Copy an object onto itself to refresh its metadata."""
        extra_args: dict[str, Any] = {}
        if metadata_replace:
            extra_args["MetadataDirective"] = "REPLACE"
        storage_class = self._copy_storage_class()
        if storage_class:
            extra_args["StorageClass"] = storage_class
        extra_args.update(self._encryption_args(kms_key_id))

        try:
            future = self._transfer_manager.copy(
                copy_source={"Bucket": bucket, "Key": object_key},
                bucket=bucket,
                key=object_key,
                extra_args=extra_args,
            )
        except Exception as exc:
            raise _to_storage_error("Failed to submit copy request", exc) from exc

        return S3TransferHandle(future, description=f"copy {object_key}")

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        stream: BinaryIO,
        size: int,
        kms_key_id: str | None = None,
        on_part_completed: Callable[[], None] | None = None,
    ) -> S3TransferHandle:
        """Upload a stream of known length, splitting it into parts if large.

        The stream must hold exactly ``size`` bytes; the returned handle fails
        with ``StorageError`` otherwise and nothing is stored.
        """
        subscribers: list[BaseSubscriber] = [ProvideSizeSubscriber(size)]
        if on_part_completed is not None:
            part_size, total_parts = self._count_parts(size)
            subscribers.append(
                PartProgressSubscriber(
                    size=size,
                    part_size=part_size,
                    total_parts=total_parts,
                    callback=on_part_completed,
                )
            )

        try:
            future = self._transfer_manager.upload(
                DeclaredSizeReader(stream, size, object_key=object_key),
                bucket,
                object_key,
                extra_args=self._encryption_args(kms_key_id),
                subscribers=subscribers,
            )
        except Exception as exc:
            raise _to_storage_error("Failed to submit upload request", exc) from exc

        return S3TransferHandle(future, description=f"upload {object_key}")

    def list_multipart_uploads(
        self,
        *,
        bucket: str,
        prefix: str,
        cursor: UploadCursor | None = None,
    ) -> MultipartUploadPage:
        """List one page of incomplete multipart uploads."""
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if cursor is not None:
            if cursor.key_marker:
                params["KeyMarker"] = cursor.key_marker
            if cursor.upload_id_marker:
                params["UploadIdMarker"] = cursor.upload_id_marker

        try:
            response = self._client.list_multipart_uploads(**params)
        except Exception as exc:
            raise _to_storage_error("Failed to list multipart uploads", exc) from exc

        records = [
            MultipartUploadRecord(
                object_key=str(upload["Key"]),
                upload_id=str(upload["UploadId"]),
                initiated=_as_utc(upload["Initiated"]),
            )
            for upload in response.get("Uploads", [])
        ]
        truncated = bool(response.get("IsTruncated"))
        next_cursor = None
        if truncated:
            next_cursor = UploadCursor(
                key_marker=response.get("NextKeyMarker"),
                upload_id_marker=response.get("NextUploadIdMarker"),
            )
        return MultipartUploadPage(
            records=records, truncated=truncated, next_cursor=next_cursor
        )

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        try:
            self._client.abort_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
            )
        except Exception as exc:
            raise _to_storage_error("Failed to abort multipart upload", exc) from exc

    def shutdown(self) -> None:
        """Stop transfer threads and close pooled connections."""
        errors: list[Exception] = []
        for release in (self._transfer_manager.shutdown, self._client.close):
            try:
                release()
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise _to_storage_error(
                "Failed to release S3 resources", errors[0]
            ) from errors[0]


class IBMObjectStoreClient(S3ObjectStoreClient):
    """IBM Cloud Object Storage through its S3-compatible endpoint.

    IBM COS names storage classes after the bucket location, so in-place
    copies request ``<region>-standard`` unless a class is configured.
    """

    def _copy_storage_class(self) -> str | None:
        return self._settings.STORAGE_CLASS or f"{self._settings.S3_REGION}-standard"


PROVIDERS: dict[str, type[S3ObjectStoreClient]] = {
    "s3": S3ObjectStoreClient,
    "ibm": IBMObjectStoreClient,
}


def build_object_store_client(settings: "Settings") -> ObjectStoreClient:
    """Build the provider variant selected by ``STORAGE_BACKEND``."""
    try:
        provider = PROVIDERS[settings.STORAGE_BACKEND]
    except KeyError as exc:
        raise StorageError(
            f"Unsupported storage backend: {settings.STORAGE_BACKEND}"
        ) from exc
    logger.debug(
        "Building %s object store client for bucket %s",
        settings.STORAGE_BACKEND,
        settings.BACKUP_BUCKET,
    )
    return provider(settings=settings)
