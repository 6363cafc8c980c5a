import logging

from prometheus_client import CollectorRegistry, Counter, start_http_server

logger = logging.getLogger(__name__)


class BackupMetrics:
    """Counters for the backup session, registered on a private registry.

    One instance is created at process start and handed to the services; no
    counter is reachable as module state.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._freshen_results = Counter(
            "snapbak_freshen_total",
            "In-place freshen attempts by outcome",
            ["result"],
            registry=self.registry,
        )
        self._objects_uploaded = Counter(
            "snapbak_objects_uploaded_total",
            "Snapshot files uploaded",
            registry=self.registry,
        )
        self._bytes_uploaded = Counter(
            "snapbak_uploaded_bytes_total",
            "Bytes uploaded",
            registry=self.registry,
        )
        self._parts_uploaded = Counter(
            "snapbak_upload_parts_total",
            "Upload parts completed",
            registry=self.registry,
        )
        self._upload_failures = Counter(
            "snapbak_upload_failures_total",
            "Uploads that failed",
            registry=self.registry,
        )
        self._stale_aborted = Counter(
            "snapbak_stale_uploads_aborted_total",
            "Stale multipart uploads aborted",
            registry=self.registry,
        )
        self._stale_abort_failures = Counter(
            "snapbak_stale_upload_abort_failures_total",
            "Stale multipart uploads that could not be aborted",
            registry=self.registry,
        )

    def inc_freshened(self) -> None:
        self._freshen_results.labels("freshened").inc()

    def inc_upload_required(self) -> None:
        self._freshen_results.labels("upload_required").inc()

    def inc_part_uploaded(self) -> None:
        self._parts_uploaded.inc()

    def inc_object_uploaded(self, size: int) -> None:
        self._objects_uploaded.inc()
        self._bytes_uploaded.inc(size)

    def inc_upload_failed(self) -> None:
        self._upload_failures.inc()

    def inc_stale_upload_aborted(self) -> None:
        self._stale_aborted.inc()

    def inc_stale_upload_abort_failed(self) -> None:
        self._stale_abort_failures.inc()

    def start_exporter(self, port: int) -> bool:
        """Expose the registry over HTTP; failures are logged, not raised."""
        try:
            start_http_server(port, registry=self.registry)
        except OSError:
            logger.error("Failed to start metrics exporter on port %s", port, exc_info=True)
            return False
        logger.info("Metrics exporter listening on port %s", port)
        return True
