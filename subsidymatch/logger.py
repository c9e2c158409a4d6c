"""
Structured logging system for SubsidyMatch.

Provides centralized logging with console and file outputs, log levels,
and metrics tracking for monitoring matching health (candidates scored or
dropped, baseline cache behaviour).
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring pipeline performance.
    """

    def __init__(
        self,
        name: str = "subsidymatch",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers
        self.logger.propagate = False

        # Worker threads record metrics concurrently
        self._lock = threading.Lock()
        self.metrics = {
            "invocations": 0,
            "candidates_scored": 0,
            "candidates_failed": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "cache_errors": 0,
            "errors_by_type": {},
        }

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"subsidymatch_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def set_level(self, level: str):
        """Change the logger and console threshold; the file handler keeps DEBUG."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in self.logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(getattr(logging, level.upper()))

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, ensure_ascii=False, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_invocation(self):
        """Increment the pipeline invocation counter."""
        with self._lock:
            self.metrics["invocations"] += 1

    def record_candidate_scored(self):
        """Record a candidate that made it through the pipeline."""
        with self._lock:
            self.metrics["candidates_scored"] += 1

    def record_candidate_failure(self, error_type: str):
        """Record a candidate dropped because of a compute error."""
        with self._lock:
            self.metrics["candidates_failed"] += 1
            self._count_error(error_type)

    def record_cache_hit(self):
        with self._lock:
            self.metrics["cache_hits"] += 1

    def record_cache_miss(self):
        with self._lock:
            self.metrics["cache_misses"] += 1

    def record_cache_error(self, error_type: str):
        """Record a failed baseline cache round trip."""
        with self._lock:
            self.metrics["cache_errors"] += 1
            self._count_error(error_type)

    def _count_error(self, error_type: str):
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        with self._lock:
            metrics_copy = dict(self.metrics)
            metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])

        # Calculate rates
        lookups = metrics_copy["cache_hits"] + metrics_copy["cache_misses"]
        if lookups > 0:
            metrics_copy["cache_hit_rate"] = round(metrics_copy["cache_hits"] / lookups, 3)

        attempted = metrics_copy["candidates_scored"] + metrics_copy["candidates_failed"]
        if attempted > 0:
            metrics_copy["candidate_success_rate"] = round(
                metrics_copy["candidates_scored"] / attempted, 3
            )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        scored = metrics["candidates_scored"]
        attempted = scored + metrics["candidates_failed"]
        overall_rate = 0
        if attempted > 0:
            overall_rate = round(scored / attempted * 100, 1)

        self.info("=== Matching Session Metrics ===")
        self.info(f"Invocations: {metrics['invocations']}")
        self.info(f"Candidates: {scored}/{attempted} ({overall_rate}% scored)")
        self.info(
            f"Baseline cache: {metrics['cache_hits']} hits, "
            f"{metrics['cache_misses']} misses, {metrics['cache_errors']} errors"
        )

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "subsidymatch",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
