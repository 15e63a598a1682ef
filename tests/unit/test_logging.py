"""Unit tests for structured logging and the audit logger."""

import json
import logging
import sys

import pytest

from intake_gateway.lib.logging_config import AuditLogger, StructuredFormatter, setup_logging


def make_record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("intake_gateway.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """JSON log lines."""

    def test_basic_fields(self):
        entry = json.loads(StructuredFormatter(include_trace=False).format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "intake_gateway.test"
        assert entry["message"] == "hello"
        assert "trace_id" not in entry

    def test_extra_and_static_fields(self):
        formatter = StructuredFormatter(include_trace=False, extra_fields={"service": "intake-gateway"})
        entry = json.loads(formatter.format(make_record(message_id="m-1", attempts=2)))

        assert entry["message_id"] == "m-1"
        assert entry["attempts"] == 2
        assert entry["service"] == "intake-gateway"

    def test_exception_details(self):
        try:
            raise ValueError("bad payload")
        except ValueError:
            record = make_record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter(include_trace=False).format(record))

        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "bad payload"
        assert "Traceback" in entry["exception"]["traceback"]

    def test_non_serializable_extra(self):
        entry = json.loads(StructuredFormatter(include_trace=False).format(make_record(obj=object())))
        assert entry["obj"].startswith("<object")


class TestAuditLogger:
    """Audit events carry their type and fields."""

    def test_routing_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="intake_gateway.audit"):
            AuditLogger().log_routing_event(
                "m-1", "intake@example.com", "billing", "LOW", True, ["rule: billing"]
            )

        record = caplog.records[-1]
        assert record.audit_type == "routing"
        assert record.destination == "intake@example.com"
        assert record.reasoning == ["rule: billing"]

    def test_failed_workflow_logs_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="intake_gateway.audit"):
            AuditLogger().log_workflow_event("t-1", "case_analysis", "failed", 0.4, ["step3"])

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].failed_steps == ["step3"]

    def test_delivery_error_logs_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="intake_gateway.audit"):
            AuditLogger().log_delivery_event("m-1", "forward", "a@example.com", "error", "refused")

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].error == "refused"


class TestSetupLogging:
    """File handlers land in the configured directory."""

    @pytest.fixture(autouse=True)
    def restore_loggers(self):
        loggers = [logging.getLogger(name) for name in ("intake_gateway", "intake_gateway.audit", "opentelemetry")]
        saved = [(lg, lg.handlers[:], lg.level, lg.propagate) for lg in loggers]
        root = logging.getLogger()
        root_handlers, root_level = root.handlers[:], root.level
        yield
        for lg, handlers, level, propagate in saved:
            for handler in lg.handlers:
                if handler not in handlers:
                    handler.close()
            lg.handlers = handlers
            lg.setLevel(level)
            lg.propagate = propagate
        root.handlers = root_handlers
        root.setLevel(root_level)

    def test_creates_log_files(self, tmp_path):
        setup_logging({"level": "debug", "directory": str(tmp_path / "logs"), "format": "simple"})
        logging.getLogger("intake_gateway.test").info("written")
        AuditLogger().log_batch_event(2, 2, 0, 0, 0.0)

        assert (tmp_path / "logs" / "gateway.log").exists()
        lines = (tmp_path / "logs" / "audit.jsonl").read_text().splitlines()
        assert json.loads(lines[-1])["audit_type"] == "batch"
