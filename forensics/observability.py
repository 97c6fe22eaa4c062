"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with ledger context
- Metrics collection (append latency, dedup hits, verification runs)
- Health check utilities

Configuration:
- FORENSICS_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- FORENSICS_LOG_FORMAT: json, text (default: json in production)
- FORENSICS_PRODUCTION: Enable production mode

Usage:
    from forensics.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Event appended", event_id=str(event.id), sequence=3)
"""

import json
import logging
import os
import sys
import threading
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Context variable identifying which ledger a log line belongs to
ledger_id_var: ContextVar[str] = ContextVar("ledger_id", default="")


# ============================================================
# CONFIGURATION
# ============================================================

def _is_production() -> bool:
    return os.environ.get("FORENSICS_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("FORENSICS_LOG_LEVEL", "INFO").upper()
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return levels.get(level_str, logging.INFO)


def _use_json_logging() -> bool:
    format_str = os.environ.get("FORENSICS_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return _is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

_STANDARD_RECORD_FIELDS = frozenset((
    "name", "msg", "args", "created", "levelname", "levelno",
    "pathname", "filename", "module", "lineno", "funcName",
    "exc_info", "exc_text", "stack_info", "message", "msecs",
    "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName",
))


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2025-01-15T10:30:00.000000+00:00",
        "level": "INFO",
        "logger": "forensics.core.ledger",
        "message": "Event appended",
        "ledger_id": "3f1c...",
        "event_id": "uuid-789",
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        ledger_id = ledger_id_var.get()
        if ledger_id:
            log_data["ledger_id"] = ledger_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        ledger_id = ledger_id_var.get()
        if ledger_id:
            prefix = f"[{ledger_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that automatically includes context fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("Attachment stored", content_hash=digest, size_bytes=12)
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextLogger instance with structured output
    """
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the application.

    Call this once at startup (the CLI does).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(_get_log_level())

    if _use_json_logging():
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger.addHandler(handler)


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    Each ledger owns one; nothing here is process-global.
    """

    # Counters
    events_appended: int = 0
    append_failures: int = 0
    attachments_stored: int = 0
    attachment_dedup_hits: int = 0
    verifications_run: int = 0
    verifications_failed: int = 0

    # Histograms (simplified as lists)
    append_latencies_ms: list = field(default_factory=list)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_append(self, latency_ms: float) -> None:
        """Record an event append."""
        with self._lock:
            self.events_appended += 1
            self.append_latencies_ms.append(latency_ms)
            # Keep only last 1000 samples
            if len(self.append_latencies_ms) > 1000:
                self.append_latencies_ms = self.append_latencies_ms[-1000:]

    def record_append_failure(self) -> None:
        with self._lock:
            self.append_failures += 1

    def record_attachment(self, deduplicated: bool) -> None:
        with self._lock:
            self.attachments_stored += 1
            if deduplicated:
                self.attachment_dedup_hits += 1

    def record_verification(self, is_valid: bool) -> None:
        with self._lock:
            self.verifications_run += 1
            if not is_valid:
                self.verifications_failed += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        with self._lock:
            latencies = list(self.append_latencies_ms)
            return {
                "events_appended": self.events_appended,
                "append_failures": self.append_failures,
                "attachments_stored": self.attachments_stored,
                "attachment_dedup_hits": self.attachment_dedup_hits,
                "verifications_run": self.verifications_run,
                "verifications_failed": self.verifications_failed,
                "append_latency_p50_ms": percentile(latencies, 0.5),
                "append_latency_p95_ms": percentile(latencies, 0.95),
                "append_latency_p99_ms": percentile(latencies, 0.99),
            }


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(ledger=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        ledger: EventLedger instance

    Returns:
        HealthStatus with all check results
    """
    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if ledger is not None:
        try:
            tail = ledger.tail
            checks["repository"] = {
                "status": "healthy",
                "event_count": ledger.event_count,
                "tail_hash": tail.content_hash[:16] + "..." if tail else None,
            }
        except Exception as e:
            checks["repository"] = {
                "status": "unhealthy",
                "error": str(e),
            }
            all_healthy = False

        # Expensive: recomputes every hash
        if ledger.event_count > 0:
            result = ledger.verify_chain()
            checks["chain_integrity"] = {
                "status": "healthy" if result.is_valid else "unhealthy",
                "valid": result.is_valid,
                "event_count": result.event_count,
                "error": result.error,
            }
            if not result.is_valid:
                all_healthy = False

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
