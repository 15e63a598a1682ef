"""
Structured logging configuration with audit trail support.

Provides JSON-formatted logging with OpenTelemetry correlation and
audit logging for routing, workflow, state and delivery decisions.
"""

import json
import logging
import logging.config
import logging.handlers
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List
from pathlib import Path

from opentelemetry import trace


_RESERVED_RECORD_FIELDS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName"
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter with OpenTelemetry trace correlation."""

    def __init__(self, include_trace: bool = True, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.include_trace = include_trace
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if self.include_trace:
            current_span = trace.get_current_span()
            if current_span and current_span.is_recording():
                span_context = current_span.get_span_context()
                log_entry.update({
                    "trace_id": format(span_context.trace_id, "032x"),
                    "span_id": format(span_context.span_id, "016x")
                })

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS:
                log_entry[key] = value

        log_entry.update(self.extra_fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class AuditLogger:
    """Specialized logger for decision and delivery audit events."""

    def __init__(self, logger_name: str = "intake_gateway.audit"):
        self.logger = logging.getLogger(logger_name)

    def log_routing_event(
        self,
        message_id: str,
        destination: str,
        category: str,
        priority: str,
        is_fallback: bool,
        reasoning: List[str],
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a routing decision."""
        self.logger.info(
            f"Routing decision: {message_id} -> {destination}",
            extra={
                "audit_type": "routing",
                "message_id": message_id,
                "destination": destination,
                "category": category,
                "priority": priority,
                "is_fallback": is_fallback,
                "reasoning": reasoning,
                "metadata": metadata or {}
            }
        )

    def log_workflow_event(
        self,
        task_id: str,
        task_type: str,
        state: str,
        success_rate: float,
        failed_steps: List[str],
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a workflow completion."""
        log = self.logger.warning if state == "failed" else self.logger.info
        log(
            f"Workflow event: {task_type} {task_id} finished {state}",
            extra={
                "audit_type": "workflow",
                "task_id": task_id,
                "task_type": task_type,
                "state": state,
                "success_rate": success_rate,
                "failed_steps": failed_steps,
                "metadata": metadata or {}
            }
        )

    def log_state_event(
        self,
        event_type: str,
        session_id: str,
        node_id: str,
        ordering: Optional[str] = None,
        conflicts: int = 0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a session-state write or merge."""
        self.logger.info(
            f"State event: {event_type} - {session_id}",
            extra={
                "audit_type": "state",
                "event_type": event_type,
                "session_id": session_id,
                "node_id": node_id,
                "ordering": ordering,
                "conflicts": conflicts,
                "metadata": metadata or {}
            }
        )

    def log_delivery_event(
        self,
        message_id: str,
        action: str,
        destination: Optional[str],
        result: str,
        error: Optional[str] = None
    ) -> None:
        """Log a delivery adapter outcome."""
        log = self.logger.info if result == "ok" else self.logger.warning
        log(
            f"Delivery event: {action} {message_id} -> {destination} ({result})",
            extra={
                "audit_type": "delivery",
                "message_id": message_id,
                "action": action,
                "destination": destination,
                "result": result,
                "error": error
            }
        )

    def log_batch_event(
        self,
        batch_size: int,
        processed: int,
        failed: int,
        dead_lettered: int,
        total_cost: float
    ) -> None:
        """Log a batch consumer summary."""
        self.logger.info(
            f"Batch event: {processed}/{batch_size} processed, {failed} failed",
            extra={
                "audit_type": "batch",
                "batch_size": batch_size,
                "processed": processed,
                "failed": failed,
                "dead_lettered": dead_lettered,
                "total_cost": total_cost
            }
        )


def setup_logging(config: Dict[str, Any]) -> None:
    """Setup structured logging configuration."""
    log_level = config.get("level", "INFO").upper()
    log_format = config.get("format", "structured")

    log_dir = Path(config.get("directory", "~/.intake/logs")).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
                "include_trace": config.get("include_trace", True),
                "extra_fields": {
                    "service": "intake-gateway",
                    "environment": config.get("environment", "development")
                }
            },
            "simple": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "structured" if log_format == "structured" else "simple",
                "stream": sys.stderr
            },
            "application_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": log_level,
                "formatter": "structured",
                "filename": str(log_dir / "gateway.log"),
                "maxBytes": config.get("max_file_size", 10 * 1024 * 1024),
                "backupCount": config.get("backup_count", 5)
            },
            "audit_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "INFO",
                "formatter": "structured",
                "filename": str(log_dir / "audit.jsonl"),
                "maxBytes": config.get("max_file_size", 10 * 1024 * 1024),
                "backupCount": config.get("backup_count", 10)
            }
        },
        "loggers": {
            "intake_gateway": {
                "level": log_level,
                "handlers": ["console", "application_file"],
                "propagate": False
            },
            "intake_gateway.audit": {
                "level": "INFO",
                "handlers": ["audit_file"],
                "propagate": False
            },
            "opentelemetry": {
                "level": "WARNING",
                "handlers": ["console", "application_file"],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["console"]
        }
    }

    logging.config.dictConfig(logging_config)

    logger = logging.getLogger("intake_gateway.logging")
    logger.info("Structured logging initialized", extra={
        "config": {
            "level": log_level,
            "format": log_format,
            "directory": str(log_dir)
        }
    })


def get_audit_logger() -> AuditLogger:
    """Get the configured audit logger instance."""
    return AuditLogger()
