from unittest.mock import patch

from prometheus_client import generate_latest

from snapbak.infra.observability.metrics import BackupMetrics


def test_counters_are_exposed_on_private_registry():
    metrics = BackupMetrics()
    metrics.inc_freshened()
    metrics.inc_upload_required()
    metrics.inc_object_uploaded(2048)
    metrics.inc_part_uploaded()

    metrics_text = generate_latest(metrics.registry).decode()
    assert 'snapbak_freshen_total{result="freshened"} 1.0' in metrics_text
    assert 'snapbak_freshen_total{result="upload_required"} 1.0' in metrics_text
    assert "snapbak_uploaded_bytes_total 2048.0" in metrics_text
    assert "snapbak_upload_parts_total 1.0" in metrics_text


def test_instances_do_not_share_counters():
    first = BackupMetrics()
    second = BackupMetrics()

    first.inc_stale_upload_aborted()
    first.inc_stale_upload_abort_failed()

    assert first.registry.get_sample_value("snapbak_stale_uploads_aborted_total") == 1.0
    assert second.registry.get_sample_value("snapbak_stale_uploads_aborted_total") == 0.0
    assert (
        second.registry.get_sample_value("snapbak_stale_upload_abort_failures_total")
        == 0.0
    )


def test_exporter_uses_own_registry():
    metrics = BackupMetrics()
    with patch("snapbak.infra.observability.metrics.start_http_server") as start:
        assert metrics.start_exporter(9109) is True

    start.assert_called_once_with(9109, registry=metrics.registry)


def test_exporter_failure_is_logged(caplog):
    metrics = BackupMetrics()
    with patch(
        "snapbak.infra.observability.metrics.start_http_server",
        side_effect=OSError("address in use"),
    ):
        assert metrics.start_exporter(9109) is False

    assert "Failed to start metrics exporter" in caplog.text
