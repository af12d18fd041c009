"""
Exception hierarchy for the upload handling layer with structured error reporting.

Two families of errors live here. Errors that fail an operation outright
(ConfigError at setup time, UsageError for lifecycle misuse, DecoderError for
malformed multipart input) are raised to the caller. Per-file errors
(SizeExceededError, ExtensionRejectedError, FilesystemError,
CustomValidationFailed) describe error kinds whose messages are recorded on the
uploaded file instead of being raised, so one bad part never fails the request.

Key Features:
- Hierarchical exception classes for consistent error categorization
- Structured logging of every constructed error with structlog
- Prometheus error counter updated on construction
- Dictionary rendering for JSON responses and log records
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog
from flask import has_request_context, request

from bodyparser.monitoring.metrics import upload_errors_total

# Get structured logger
logger = structlog.get_logger(__name__)


class ErrorCategory(Enum):
    """Error categories for hierarchical classification."""

    CONFIGURATION = "configuration"
    USAGE = "usage"
    VALIDATION = "validation"
    DECODING = "decoding"
    FILESYSTEM = "filesystem"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BaseApplicationError(Exception):
    """
    Base exception class for all upload layer errors.

    Attributes:
        message: Human-readable error message
        code: Application-specific error code
        category: Error category for classification
        severity: Error severity level
        details: Additional error context
        correlation_id: Unique identifier for error tracking
        recoverable: Whether the error condition can be retried
        http_status: Suggested HTTP status when surfaced by a view
    """

    def __init__(
        self,
        message: str,
        code: str = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        recoverable: bool = False,
        http_status: int = 500
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.correlation_id = correlation_id or str(uuid4())
        self.recoverable = recoverable
        self.http_status = http_status
        self.timestamp = datetime.utcnow().isoformat()

        # Extract request context if available
        if has_request_context():
            self.endpoint = request.endpoint
            self.path = request.path
        else:
            self.endpoint = None
            self.path = None

        self._log_error()
        self._update_metrics()

    def _log_error(self) -> None:
        """Log error with structured logging."""
        log_data = {
            'error_code': self.code,
            'error_category': self.category.value,
            'error_severity': self.severity.value,
            'correlation_id': self.correlation_id,
            'recoverable': self.recoverable,
            'endpoint': self.endpoint,
            'path': self.path,
            'details': self.details,
        }

        if self.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]:
            logger.error(self.message, **log_data)
        elif self.severity == ErrorSeverity.MEDIUM:
            logger.warning(self.message, **log_data)
        else:
            logger.info(self.message, **log_data)

    def _update_metrics(self) -> None:
        upload_errors_total.labels(
            error_type=self.code,
            error_category=self.category.value
        ).inc()

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary format for JSON responses.

        Returns:
            Dictionary representation of the error
        """
        return {
            'error': True,
            'message': self.message,
            'code': self.code,
            'category': self.category.value,
            'correlation_id': self.correlation_id,
            'timestamp': self.timestamp,
            'recoverable': self.recoverable,
            'details': self.details
        }


class ConfigError(BaseApplicationError):
    """
    Invalid size spec or conflicting options.

    Raised synchronously while settings or validation options are being
    resolved, before any upload is touched.
    """

    def __init__(
        self,
        message: str = "Invalid upload configuration",
        option: Optional[str] = None,
        value: Any = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            http_status=500,
            **kwargs
        )
        if option:
            self.details['option'] = option
        if value is not None:
            self.details['value'] = safe_str(value, max_length=200)


class UsageError(BaseApplicationError):
    """Lifecycle misuse, e.g. setting options on or moving a file in a terminal state."""

    def __init__(
        self,
        message: str = "Invalid operation for the current upload state",
        state: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.USAGE,
            severity=ErrorSeverity.MEDIUM,
            http_status=500,
            **kwargs
        )
        if state:
            self.details['state'] = state


class DecoderError(BaseApplicationError):
    """Malformed multipart input such as a missing boundary."""

    def __init__(self, message: str = "Unable to decode multipart body", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.DECODING,
            severity=ErrorSeverity.LOW,
            http_status=400,
            **kwargs
        )


class UploadFileError(BaseApplicationError):
    """
    Base class for per-file error kinds.

    Instances are built to produce the message recorded on an uploaded file;
    the move protocol never lets them escape to the caller.
    """

    def __init__(
        self,
        message: str,
        client_name: Optional[str] = None,
        field_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.VALIDATION,
        severity: ErrorSeverity = ErrorSeverity.LOW,
        **kwargs
    ):
        super().__init__(
            message=message,
            category=category,
            severity=severity,
            http_status=kwargs.pop('http_status', 400),
            **kwargs
        )
        if client_name:
            self.details['client_name'] = client_name
        if field_name:
            self.details['field_name'] = field_name


class SizeExceededError(UploadFileError):
    """Per-file size limit or aggregate request ceiling breach."""

    def __init__(self, message: str, limit: Optional[int] = None, **kwargs):
        super().__init__(message=message, http_status=413, **kwargs)
        if limit is not None:
            self.details['limit_bytes'] = limit


class ExtensionRejectedError(UploadFileError):
    """File extension outside the allowed set."""

    def __init__(self, message: str, extension: Optional[str] = None, **kwargs):
        super().__init__(message=message, **kwargs)
        if extension is not None:
            self.details['extension'] = extension


class TypeRejectedError(UploadFileError):
    """Declared content type outside the allowed set."""


class CustomValidationFailed(UploadFileError):
    """Caller supplied predicate rejected the file."""


class FilesystemError(UploadFileError):
    """Move or delete I/O failure. The source temp file is left in place."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.FILESYSTEM,
            severity=ErrorSeverity.HIGH,
            http_status=500,
            **kwargs
        )
        if operation:
            self.details['storage_operation'] = operation
        if path:
            self.details['storage_path'] = path


def safe_str(value: Any, max_length: int = 1000) -> str:
    """
    Safely convert value to string with length limits for error messages.

    Args:
        value: Value to convert to string
        max_length: Maximum string length

    Returns:
        Safe string representation
    """
    try:
        str_value = str(value)
    except Exception:
        return "<unable to convert to string>"
    if len(str_value) > max_length:
        return str_value[:max_length] + "..."
    return str_value


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'BaseApplicationError',
    'ConfigError',
    'UsageError',
    'DecoderError',
    'UploadFileError',
    'SizeExceededError',
    'ExtensionRejectedError',
    'TypeRejectedError',
    'CustomValidationFailed',
    'FilesystemError',
    'safe_str',
]
