"""Centralized logging configuration for the order scan workflow.

This module provides structured logging with context fields for scan operations.
Logs are written to both console and rotating files.

Usage:
    from order_checker.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Starting scan", extra={'scan_id': scan_id, 'user': email})
"""

import logging
import os
from logging.handlers import RotatingFileHandler

# Log directory from environment or default
LOG_DIR = os.getenv("LOG_DIR", ".logs")


class StructuredFormatter(logging.Formatter):
    """Custom formatter that adds context fields to log records.

    Supports the following context fields via extra={} parameter:
    - scan_id: Scan identifier
    - user: Mailbox owner being scanned
    - message_id: Upstream Gmail message ID
    - kind: Message kind from the subject classifier
    """

    def format(self, record):
        """Format log record with context fields."""
        record.scan_id = getattr(record, "scan_id", None)
        record.user = getattr(record, "user", None)
        record.message_id = getattr(record, "message_id", None)
        record.kind = getattr(record, "kind", None)

        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """Get configured logger for scan operations.

    Creates a logger with:
    - Console handler (INFO level)
    - Rotating file handler for all logs (DEBUG level)
    - Separate error file handler (ERROR level)

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logging.Logger instance
    """
    logger = logging.getLogger(name)

    # Skip if already configured (prevents duplicate handlers)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    log_dir = os.getenv("LOG_DIR", LOG_DIR)
    os.makedirs(log_dir, exist_ok=True)

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(
        StructuredFormatter("[%(levelname)s] [scan:%(scan_id)s] %(message)s")
    )
    logger.addHandler(console)

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "order_scan.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB per file
        backupCount=10,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        StructuredFormatter(
            "[%(asctime)s] [%(levelname)s] [%(name)s] "
            "[scan:%(scan_id)s msg:%(message_id)s kind:%(kind)s] %(message)s"
        )
    )
    logger.addHandler(file_handler)

    error_handler = RotatingFileHandler(
        os.path.join(log_dir, "order_scan_errors.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(
        StructuredFormatter(
            "[%(asctime)s] [%(levelname)s] [%(name)s] "
            "[scan:%(scan_id)s user:%(user)s msg:%(message_id)s] %(message)s"
        )
    )
    logger.addHandler(error_handler)

    return logger
