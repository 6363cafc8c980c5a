#!/usr/bin/env python3
"""Abort stale incomplete multipart uploads in the backup bucket.

Usage:
  .venv/bin/python scripts/reap_stale_uploads.py --dry-run
  .venv/bin/python scripts/reap_stale_uploads.py --hours 48 --prefix cluster-a

By default aborts uploads under the configured cluster id that were initiated
more than STALE_UPLOAD_HOURS ago. Use --dry-run to preview.
"""

from __future__ import annotations

import argparse
from datetime import timedelta

from snapbak.app.services.reaper_service import ReapReport
from snapbak.app.services.snapshot_uploader import SnapshotUploader
from snapbak.common.config import get_settings
from snapbak.common.logging import setup_logging


def reap_stale_uploads(
    *,
    uploader: SnapshotUploader | None = None,
    prefix: str | None = None,
    older_than: timedelta | None = None,
    dry_run: bool = False,
) -> ReapReport:
    uploader = uploader or SnapshotUploader.from_settings(get_settings())
    try:
        return uploader.reaper.reap(prefix, older_than, dry_run=dry_run)
    finally:
        uploader.close(reap=False)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Abort stale multipart uploads in the backup bucket"
    )
    parser.add_argument(
        "--hours",
        type=int,
        default=None,
        help="Abort uploads initiated more than N hours ago (default: STALE_UPLOAD_HOURS)",
    )
    parser.add_argument(
        "--prefix",
        default=None,
        help="Key prefix to scan (default: CLUSTER_ID)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only print the uploads that would be aborted",
    )
    args = parser.parse_args()
    setup_logging()
    older_than = timedelta(hours=args.hours) if args.hours is not None else None
    report = reap_stale_uploads(
        prefix=args.prefix, older_than=older_than, dry_run=args.dry_run
    )
    if args.dry_run:
        print(f"[DRY-RUN] {report.stale} uploads would be aborted")
    else:
        print(f"Aborted {report.aborted} uploads, {report.failed} failed")
    if not report.complete:
        print("Listing did not complete; see log for details")


if __name__ == "__main__":
    main()
