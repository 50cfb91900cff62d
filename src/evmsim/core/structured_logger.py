"""
evmsim - Structured Logging System

Structured logging for simulation runs with:
- JSON log format for easy parsing
- Log levels: DEBUG, INFO, WARN, ERROR, CRITICAL
- Optional daily-rotated log files (when a log directory is configured)
- Contextual logging with correlation IDs (one per simulation run)
- Performance tracking
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Dict, Any, Optional
from contextvars import ContextVar
import hashlib
import time

from evmsim.core import config


# Context variable for correlation ID (thread-safe)
correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs in JSON format

    Features:
    - Structured JSON output
    - UTC timestamps
    - Correlation ID support
    - Custom fields
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        corr_id = correlation_id.get()
        if corr_id:
            log_entry["correlation_id"] = corr_id

        log_entry["thread"] = {"id": threading.get_ident(), "name": threading.current_thread().name}

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """
    Structured logger with JSON output

    Features:
    - Multiple log levels (DEBUG, INFO, WARN, ERROR, CRITICAL)
    - JSON format output on stderr, plus rotated files when log_dir is set
    - Correlation ID tracking
    - Simulation event helpers (transactions, steps, snapshots, fatal halts)
    """

    def __init__(
        self,
        name: str = "evmsim",
        log_dir: Optional[str] = None,
        log_level: Optional[str] = None,
        backup_count: int = 30,
    ):
        """
        Initialize structured logger

        Args:
            name: Logger name
            log_dir: Directory for log files (defaults to EVMSIM_LOG_DIR; no files when empty)
            log_level: Minimum log level (defaults to EVMSIM_LOG_LEVEL)
            backup_count: Number of rotated files to keep
        """
        self.name = name
        log_dir = config.LOG_DIR if log_dir is None else log_dir
        level_name = (log_level or config.LOG_LEVEL).upper()
        if level_name == "WARN":
            level_name = "WARNING"

        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level_name))

        # Prevent duplicate handlers
        if not self.logger.handlers:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(JSONFormatter())
            self.logger.addHandler(console_handler)

            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
                json_log_path = os.path.join(log_dir, f"{name.lower()}.json.log")
                json_handler = TimedRotatingFileHandler(
                    json_log_path,
                    when="midnight",
                    interval=1,
                    backupCount=backup_count,
                    encoding="utf-8",
                    utc=True,
                )
                json_handler.setFormatter(JSONFormatter())
                self.logger.addHandler(json_handler)

        self.performance_metrics: Dict[str, float] = {}
        self.log_counts = {"DEBUG": 0, "INFO": 0, "WARN": 0, "ERROR": 0, "CRITICAL": 0}

    def _truncate_address(self, address: Optional[str]) -> str:
        """Shorten an address for log readability"""
        if not address or len(address) < 10:
            return address or "CREATE"
        return f"{address[:6]}...{address[-4:]}"

    def _log(self, level: str, message: str, **kwargs):
        """Internal logging method"""
        self.log_counts[level] += 1

        extra = {"extra_fields": kwargs} if kwargs else {}

        log_func = getattr(self.logger, "warning" if level == "WARN" else level.lower())
        log_func(message, extra=extra)

    def debug(self, message: str, **kwargs):
        """Log debug message"""
        self._log("DEBUG", message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info message"""
        self._log("INFO", message, **kwargs)

    def warn(self, message: str, **kwargs):
        """Log warning message"""
        self._log("WARN", message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message (alias for warn for Python logging compatibility)"""
        self._log("WARN", message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error message"""
        self._log("ERROR", message, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message"""
        self._log("CRITICAL", message, **kwargs)

    # Simulation-specific logging methods

    def transaction_applied(
        self,
        step: int,
        sender: str,
        target: Optional[str],
        status: str,
        gas_used: int,
        reason: Optional[str] = None,
    ):
        """Log the outcome of one applied transaction"""
        self.debug(
            f"Transaction {status}",
            step=step,
            sender=self._truncate_address(sender),
            target=self._truncate_address(target),
            status=status,
            gas_used=gas_used,
            reason=reason,
        )

    def step_settled(self, step: int, tx_count: int, failures: int, state_root: str):
        """Log a settled simulation step"""
        self.info(
            f"Step #{step} settled",
            step=step,
            transaction_count=tx_count,
            failed_transactions=failures,
            state_root=state_root[:18] + "...",
        )

    def snapshot_taken(self, step: int, handle: int):
        """Log a step-boundary snapshot"""
        self.debug(f"Snapshot {handle} taken", step=step, snapshot=handle)

    def fatal_halt(self, step: int, reason: str, **kwargs):
        """Log an invariant violation that halts the run"""
        self.critical(f"Simulation halted at step #{step}", step=step, reason=reason, **kwargs)

    def performance_event(self, metric_name: str, value: float, unit: str = ""):
        """Log performance metric"""
        self.performance_metrics[metric_name] = value
        self.debug(
            f"Performance: {metric_name}",
            metric_name=metric_name,
            value=value,
            unit=unit,
            performance_metric=True,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get logger statistics"""
        return {
            "log_counts": self.log_counts.copy(),
            "total_logs": sum(self.log_counts.values()),
            "performance_metrics": self.performance_metrics.copy(),
        }


class LogContext:
    """
    Context manager for correlation ID tracking

    Usage:
        with LogContext() as ctx:
            logger.info("This log will have a correlation ID")
    """

    def __init__(self, custom_id: str = None):
        """
        Initialize log context

        Args:
            custom_id: Custom correlation ID (auto-generated if not provided)
        """
        self.correlation_id = custom_id or self._generate_correlation_id()

    def _generate_correlation_id(self) -> str:
        """Generate unique correlation ID"""
        timestamp = str(time.time()).encode()
        thread_id = str(threading.get_ident()).encode()
        random_data = os.urandom(8)

        hash_input = timestamp + thread_id + random_data
        return hashlib.sha256(hash_input).hexdigest()[:16]

    def __enter__(self):
        """Set correlation ID on context entry"""
        self.token = correlation_id.set(self.correlation_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Clear correlation ID on context exit"""
        correlation_id.reset(self.token)


class PerformanceTimer:
    """
    Context manager for performance timing

    Usage:
        with PerformanceTimer(logger, 'operation_name'):
            # Code to time
            pass
    """

    def __init__(self, logger: StructuredLogger, operation_name: str):
        self.logger = logger
        self.operation_name = operation_name
        self.start_time = None
        self.duration_ms = 0.0

    def __enter__(self):
        """Start timer"""
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop timer and log duration"""
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        self.logger.performance_event(self.operation_name, self.duration_ms, "ms")


# Global logger instance
_global_structured_logger = None


def get_structured_logger(name: str = "evmsim") -> StructuredLogger:
    """
    Get global structured logger instance

    Args:
        name: Logger name

    Returns:
        StructuredLogger instance
    """
    global _global_structured_logger
    if _global_structured_logger is None:
        _global_structured_logger = StructuredLogger(name)
    return _global_structured_logger
