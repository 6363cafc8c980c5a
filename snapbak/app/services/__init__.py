from .base import (
    BaseService,
    CleanupFailure,
    Interrupted,
    ObjectAbsent,
    ServiceError,
    SessionClosedError,
    TransientBackendError,
    UploadError,
    wait_for_completion,
)
from .freshen_service import FreshenService
from .reaper_service import ReapReport, StaleUploadReaper
from .snapshot_uploader import SnapshotUploader
from .upload_service import UploadService

__all__ = [
    "BaseService",
    "CleanupFailure",
    "FreshenService",
    "Interrupted",
    "ObjectAbsent",
    "ReapReport",
    "ServiceError",
    "SessionClosedError",
    "SnapshotUploader",
    "StaleUploadReaper",
    "TransientBackendError",
    "UploadError",
    "UploadService",
    "wait_for_completion",
]
