"""
Unit tests for logging, metrics and alert hooks.
"""

import json
import logging

import requests

from forcam_ingest.observability import alerts, metrics
from forcam_ingest.observability.logger import CustomJsonFormatter, _build_formatter, log_operation


class TestJsonLogging:
    def test_formatter_emits_one_json_object(self):
        formatter = _build_formatter("json")
        assert isinstance(formatter, CustomJsonFormatter)

        record = logging.LogRecord("forcam_ingest.test", logging.WARNING, __file__, 10,
                                   "File moved", None, None, func="move")
        record.machine_name = "MachineX"
        payload = json.loads(formatter.format(record))

        assert payload["message"] == "File moved"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "forcam_ingest.test"
        assert payload["machine_name"] == "MachineX"
        assert "thread" in payload

    def test_log_operation_reports_status(self):
        records = []

        class ListHandler(logging.Handler):
            def emit(self, record):
                records.append(record)

        logger = logging.getLogger("forcam_ingest_tests.operation")
        logger.setLevel(logging.INFO)
        logger.propagate = False
        logger.addHandler(ListHandler())

        with log_operation("Scan", logger=logger, machine="MachineX"):
            pass

        completed = [r for r in records if r.getMessage() == "Completed: Scan"]
        assert completed[0].status == "success"
        assert completed[0].machine == "MachineX"


class TestMetrics:
    def test_record_batch_counts_outcomes(self):
        before = metrics.REGISTRY.get_sample_value(
            "forcam_records_total", {"import_type": "JSON", "outcome": "inserted"}
        ) or 0.0
        metrics.record_batch("JSON", "success", inserted=3, updated=0, skipped=0, failed=0)
        after = metrics.REGISTRY.get_sample_value(
            "forcam_records_total", {"import_type": "JSON", "outcome": "inserted"}
        )
        assert after == before + 3

    def test_generate_metrics(self):
        assert b"forcam_batches_total" in metrics.generate_metrics()


class TestAlerts:
    def test_webhook_posts_payload(self, monkeypatch):
        sent = {}

        class Response:
            def raise_for_status(self):
                pass

        def fake_post(url, json=None, timeout=None):
            sent.update(url=url, json=json, timeout=timeout)
            return Response()

        monkeypatch.setattr(alerts.requests, "post", fake_post)
        alerts.webhook_alert("https://hooks.example.com/x", timeout=3)("files_quarantined", 11, "too many")

        assert sent["url"] == "https://hooks.example.com/x"
        assert sent["json"]["counter"] == "files_quarantined"
        assert sent["json"]["value"] == 11
        assert sent["timeout"] == 3

    def test_webhook_failure_is_swallowed(self, monkeypatch):
        def failing_post(url, json=None, timeout=None):
            raise requests.ConnectionError("no route")

        monkeypatch.setattr(alerts.requests, "post", failing_post)
        alerts.webhook_alert("https://hooks.example.com/x")("batches_failed", 5, "too many")
