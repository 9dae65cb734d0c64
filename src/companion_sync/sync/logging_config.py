"""Logging configuration for integration sync events."""

import logging
import sys
import time
from datetime import datetime
from typing import Optional


class SyncEventFormatter(logging.Formatter):
    """Custom formatter that appends sync context to each line."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with sync-specific information."""
        if not hasattr(record, 'timestamp'):
            record.timestamp = datetime.now().isoformat()

        sync_fields = []
        for field in ['user_id', 'integration', 'event_type', 'root_cause']:
            if hasattr(record, field):
                sync_fields.append(f"{field}={getattr(record, field)}")

        base_msg = super().format(record)

        if sync_fields:
            return f"{base_msg} [{', '.join(sync_fields)}]"

        return base_msg


def setup_sync_logging(log_level: str = "INFO") -> logging.Logger:
    """Set up logging for the companion sync components.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    logger = logging.getLogger("companion_sync")

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, log_level.upper()))

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level.upper()))

    formatter = SyncEventFormatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    return logger


def log_sync_attempt(logger: logging.Logger, user_id: str, integration: str,
                     status: str, latency_ms: float, message: str,
                     root_cause: Optional[str] = None, **kwargs) -> None:
    """Log the outcome of a sync attempt with structured data.

    Args:
        logger: Logger instance
        user_id: User whose integration was synced
        integration: Integration name
        status: success, failure or skipped
        latency_ms: Attempt duration in milliseconds
        message: Human-readable message
        root_cause: Root cause bucket for failures
        **kwargs: Additional fields to include in log
    """
    extra = {
        'user_id': user_id,
        'integration': integration,
        'event_type': f"sync_{status}",
        'latency_ms': round(latency_ms, 2),
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    if root_cause:
        extra['root_cause'] = root_cause

    if status == "failure":
        logger.warning(message, extra=extra)
    elif status == "skipped":
        logger.debug(message, extra=extra)
    else:
        logger.info(message, extra=extra)


def log_bridge_result(logger: logging.Logger, user_id: str, integration: str,
                      created: int, updated: int, removed: int, skipped: int) -> None:
    """Log the counts produced by a deadline or schedule bridge."""
    extra = {
        'user_id': user_id,
        'integration': integration,
        'event_type': 'bridge_applied',
        'created': created,
        'updated': updated,
        'removed': removed,
        'skipped': skipped,
    }
    if created or updated or removed:
        logger.info(
            f"{integration} bridge applied: {created} created, {updated} updated, "
            f"{removed} removed, {skipped} skipped",
            extra=extra
        )
    else:
        logger.debug(f"{integration} bridge found no changes ({skipped} skipped)", extra=extra)


def log_performance_metrics(logger: logging.Logger, operation: str,
                            latency_ms: float, **kwargs) -> None:
    """Log performance metrics for sync operations.

    Args:
        logger: Logger instance
        operation: Name of the operation being measured
        latency_ms: Operation latency in milliseconds
        **kwargs: Additional performance metrics
    """
    extra = {
        'event_type': 'performance_metrics',
        'operation': operation,
        'latency_ms': round(latency_ms, 2),
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }

    # Remote APIs are slow; only flag really slow calls
    if latency_ms > 10000:
        logger.warning(f"Slow operation detected: {operation} took {latency_ms:.2f}ms", extra=extra)
    elif latency_ms > 2000:
        logger.info(f"Performance: {operation} took {latency_ms:.2f}ms", extra=extra)
    else:
        logger.debug(f"Performance: {operation} took {latency_ms:.2f}ms", extra=extra)


class PerformanceTimer:
    """Context manager for measuring operation performance."""

    def __init__(self, logger: logging.Logger, operation: str, **kwargs):
        self.logger = logger
        self.operation = operation
        self.kwargs = kwargs
        self.start_time = None
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000

            if exc_type:
                self.kwargs['error'] = str(exc_val)
                self.kwargs['error_type'] = exc_type.__name__

            log_performance_metrics(
                self.logger, self.operation, self.elapsed_ms, **self.kwargs
            )


def get_logger(name: str, log_level: str = "INFO") -> logging.Logger:
    """Get a configured logger for sync components.

    Args:
        name: Logger name (usually __name__)
        log_level: Logging level

    Returns:
        Configured logger instance
    """
    setup_sync_logging(log_level)
    return logging.getLogger(name)
