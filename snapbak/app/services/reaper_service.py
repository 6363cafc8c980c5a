"""Garbage collection of abandoned multipart uploads.

Incomplete multipart uploads keep their parts (and keep being billed) until
they are completed or aborted. The reaper aborts the ones older than a
threshold under a backup prefix. It is housekeeping: failures are logged and
never reach the backup workflow.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from snapbak.app.services.base import (
    BaseService,
    CleanupFailure,
    Interrupted,
)
from snapbak.common.config import Settings
from snapbak.infra.observability.metrics import BackupMetrics
from snapbak.infra.storage.client import (
    MultipartUploadRecord,
    ObjectStoreClient,
    StorageError,
    UploadCursor,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReapReport:
    """Summary of one reaper run."""

    pages: int = 0
    examined: int = 0
    stale: int = 0
    aborted: int = 0
    failed: int = 0
    complete: bool = True


def _cursor_advanced(previous: UploadCursor | None, current: UploadCursor | None) -> bool:
    if current is None:
        return False
    if not current.key_marker and not current.upload_id_marker:
        return False
    return current != previous


class StaleUploadReaper(BaseService):
    """Aborts incomplete multipart uploads older than a threshold."""

    def __init__(
        self,
        client: ObjectStoreClient,
        *,
        settings: Settings | None = None,
        metrics: BackupMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(client, settings=settings, metrics=metrics)
        self._clock = clock or _utcnow

    def reap(
        self,
        scope_prefix: str | None = None,
        stale_threshold: timedelta | None = None,
        *,
        dry_run: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> ReapReport:
        """Abort stale multipart uploads under ``scope_prefix``.

        Args:
            scope_prefix: Key prefix to list; defaults to the cluster id.
            stale_threshold: Minimum age of an upload to abort; defaults to
                ``STALE_UPLOAD_HOURS``.
            dry_run: Only report the uploads that would be aborted.
            cancel_event: Checked between pages and between aborts.

        Returns:
            ReapReport with the counts of the run.

        Raises:
            Interrupted: If ``cancel_event`` is set during the run. No other
                exception leaves this method.
        """
        prefix = self._settings.CLUSTER_ID if scope_prefix is None else scope_prefix
        if stale_threshold is None:
            stale_threshold = timedelta(hours=self._settings.STALE_UPLOAD_HOURS)
        cutoff = self._clock() - stale_threshold
        report = ReapReport()

        logger.info(
            "Cleaning up multipart uploads under %r older than %s.",
            prefix,
            cutoff.isoformat(),
        )
        try:
            self._reap_pages(prefix, cutoff, report, dry_run, cancel_event)
        except Interrupted:
            raise
        except KeyboardInterrupt as exc:
            raise Interrupted("Multipart upload cleanup interrupted") from exc
        except Exception:
            report.complete = False
            logger.warning(
                "Failed to clean up multipart uploads under %r.", prefix, exc_info=True
            )

        logger.info(
            "Multipart upload cleanup finished: pages=%d examined=%d stale=%d "
            "aborted=%d failed=%d complete=%s dry_run=%s",
            report.pages,
            report.examined,
            report.stale,
            report.aborted,
            report.failed,
            report.complete,
            dry_run,
            extra={"extra": {"prefix": prefix, "dry_run": dry_run, **vars(report)}},
        )
        return report

    def _reap_pages(
        self,
        prefix: str,
        cutoff: datetime,
        report: ReapReport,
        dry_run: bool,
        cancel_event: threading.Event | None,
    ) -> None:
        cursor: UploadCursor | None = None
        while True:
            self._check_cancelled(cancel_event)
            if report.pages >= self._settings.REAP_MAX_PAGES:
                report.complete = False
                logger.warning(
                    "Stopping multipart upload cleanup under %r after %d pages.",
                    prefix,
                    report.pages,
                )
                return

            try:
                page = self._client.list_multipart_uploads(
                    bucket=self.bucket, prefix=prefix, cursor=cursor
                )
            except StorageError as exc:
                raise CleanupFailure(
                    f"Failed to list multipart uploads under {prefix!r}: {exc}"
                ) from exc
            report.pages += 1

            for record in page.records:
                report.examined += 1
                if record.initiated >= cutoff:
                    continue
                report.stale += 1
                self._check_cancelled(cancel_event)
                self._abort(record, report, dry_run)

            if not page.truncated:
                return
            # the backend is trusted to advance its markers; a listing that
            # stays truncated without moving would otherwise never end
            if not _cursor_advanced(cursor, page.next_cursor):
                report.complete = False
                logger.warning(
                    "Multipart upload listing under %r is truncated but its markers "
                    "did not advance (%s); stopping.",
                    prefix,
                    page.next_cursor,
                )
                return
            cursor = page.next_cursor

    def _abort(
        self, record: MultipartUploadRecord, report: ReapReport, dry_run: bool
    ) -> None:
        if dry_run:
            logger.info(
                "[DRY-RUN] Would abort multipart upload for key %r initiated on %s.",
                record.object_key,
                record.initiated.isoformat(),
            )
            return

        logger.info(
            "Aborting multipart upload for key %r initiated on %s.",
            record.object_key,
            record.initiated.isoformat(),
        )
        try:
            self._client.abort_multipart_upload(
                bucket=self.bucket,
                object_key=record.object_key,
                upload_id=record.upload_id,
            )
        except Exception:
            report.failed += 1
            self._metrics.inc_stale_upload_abort_failed()
            logger.error(
                "Failed to abort multipart upload for key %r.",
                record.object_key,
                exc_info=True,
            )
            return
        report.aborted += 1
        self._metrics.inc_stale_upload_aborted()

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise Interrupted("Multipart upload cleanup cancelled")
