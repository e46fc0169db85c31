"""Error types and structured error tracking for the order scan workflow.

This module provides:
- The exception hierarchy raised by the mail client, extractors and pipeline
- Automatic error classification by stage and type
- Integration with structured logging

Usage:
    from order_checker.error_tracking import ScanErrorRecord, ErrorStage

    try:
        client.get_message(message_id)
    except MailClientError as e:
        record = ScanErrorRecord.from_exception(
            e, ErrorStage.FETCH, context={'message_id': message_id}
        )
        record.log(scan_id=scan_id)
"""

import traceback
from enum import Enum
from typing import Any

from order_checker.logging_config import get_logger

logger = get_logger(__name__)


class OrderCheckerError(Exception):
    """Base class for all order checker errors."""


class AuthError(OrderCheckerError):
    """No authenticated mail client could be obtained for the user."""


class MailClientError(OrderCheckerError):
    """Gmail API call failed."""

    def __init__(self, message: str, status_code: int | None = None, reason: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class TransientMailError(MailClientError):
    """Rate limit or backend error; safe to retry with backoff."""


class PermanentMailError(MailClientError):
    """Any non-retryable Gmail API failure."""


class ExtractionError(OrderCheckerError):
    """Message body could not be turned into order data."""


class ListingError(OrderCheckerError):
    """Messages could not be enumerated; fatal to the scan."""


class ScanTimeoutError(OrderCheckerError):
    """The scan made no progress within the stall threshold."""


class ScanCancelledError(OrderCheckerError):
    """The scan was cancelled before all messages were processed."""


class ScanAlreadyRunningError(OrderCheckerError):
    """A scan start was requested while another scan is running."""


class CacheError(OrderCheckerError):
    """The result cache could not be read or written."""


class ErrorStage(Enum):
    """Where in the scan workflow an error occurred."""

    LIST = "list"  # Message enumeration
    FETCH = "fetch"  # Gmail API message fetch
    DECODE = "decode"  # MIME / base64 decoding
    EXTRACT = "extract"  # HTML extraction
    CACHE = "cache"  # Result cache read/write
    WATCHDOG = "watchdog"  # Stall detection


class ErrorType(Enum):
    """Error type classification for retry and debugging."""

    RATE_LIMIT = "rate_limit"  # Retryable
    BACKEND = "backend"  # Retryable
    NETWORK = "network"  # Retryable
    API_ERROR = "api_error"
    AUTH_ERROR = "auth_error"
    PARSE_ERROR = "parse_error"
    DB_ERROR = "db_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ScanErrorRecord:
    """Structured error with logging.

    Attributes:
        stage: Error stage (where in workflow error occurred)
        error_type: Error type (for retry and debugging decisions)
        message: Human-readable error message
        exception: Original exception (if any)
        context: Additional context (message_id, kind, etc.)
        is_retryable: Whether error should be retried
        stack_trace: Full stack trace string
    """

    def __init__(
        self,
        stage: ErrorStage,
        error_type: ErrorType,
        message: str,
        exception: Exception | None = None,
        context: dict[str, Any] | None = None,
        is_retryable: bool = False,
    ):
        self.stage = stage
        self.error_type = error_type
        self.message = message
        self.exception = exception
        self.context = context or {}
        self.is_retryable = is_retryable
        self.stack_trace = None

        if exception:
            self.stack_trace = "".join(
                traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            )

    def log(self, scan_id: str | None = None, user: str | None = None) -> None:
        """Log the error with scan context.

        Per-message failures are warnings since the scan continues; scan-level
        failures are logged as errors.
        """
        extra = {
            "scan_id": scan_id,
            "user": user,
            "message_id": self.context.get("message_id"),
            "kind": self.context.get("kind"),
        }
        text = f"[{self.stage.value}:{self.error_type.value}] {self.message}"
        if self.stage in (ErrorStage.LIST, ErrorStage.WATCHDOG):
            logger.error(text, extra=extra)
        else:
            logger.warning(text, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "error_type": self.error_type.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
        }

    @classmethod
    def from_exception(
        cls,
        exception: Exception,
        stage: ErrorStage,
        context: dict[str, Any] | None = None,
    ) -> "ScanErrorRecord":
        """Auto-classify error from exception.

        Args:
            exception: Exception object to classify
            stage: Error stage where exception occurred
            context: Additional context dict

        Returns:
            ScanErrorRecord with auto-classified type and retry flag
        """
        error_type = ErrorType.UNKNOWN
        is_retryable = False

        if isinstance(exception, TransientMailError):
            is_retryable = True
            if exception.status_code == 429 or exception.reason == "rateLimitExceeded":
                error_type = ErrorType.RATE_LIMIT
            elif exception.status_code is None:
                error_type = ErrorType.NETWORK
            else:
                error_type = ErrorType.BACKEND
        elif isinstance(exception, AuthError) or (
            isinstance(exception, MailClientError) and exception.status_code in (401, 403)
        ):
            error_type = ErrorType.AUTH_ERROR
        elif isinstance(exception, MailClientError):
            error_type = ErrorType.API_ERROR
        elif isinstance(exception, ExtractionError) or stage in (
            ErrorStage.DECODE,
            ErrorStage.EXTRACT,
        ):
            error_type = ErrorType.PARSE_ERROR
        elif isinstance(exception, CacheError) or stage == ErrorStage.CACHE:
            error_type = ErrorType.DB_ERROR
        elif isinstance(exception, (ScanTimeoutError, TimeoutError)):
            error_type = ErrorType.TIMEOUT

        return cls(
            stage=stage,
            error_type=error_type,
            message=str(exception),
            exception=exception,
            context=context,
            is_retryable=is_retryable,
        )
