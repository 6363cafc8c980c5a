"""Object storage abstraction layer.

This module provides a protocol-based abstraction for object storage backends,
enabling support for AWS S3, IBM Cloud Object Storage and other S3-compatible
services.
"""

from .client import (
    MultipartUploadPage,
    MultipartUploadRecord,
    ObjectStoreClient,
    StorageError,
    TransferHandle,
    UploadCursor,
)

__all__ = [
    "MultipartUploadPage",
    "MultipartUploadRecord",
    "ObjectStoreClient",
    "StorageError",
    "TransferHandle",
    "UploadCursor",
]
