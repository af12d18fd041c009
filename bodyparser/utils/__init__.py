"""Shared utilities: exception hierarchy and size spec parsing."""

from bodyparser.utils.exceptions import (
    BaseApplicationError,
    ConfigError,
    CustomValidationFailed,
    DecoderError,
    ErrorCategory,
    ErrorSeverity,
    ExtensionRejectedError,
    FilesystemError,
    SizeExceededError,
    TypeRejectedError,
    UploadFileError,
    UsageError,
)
from bodyparser.utils.size import format_size, parse_size

__all__ = [
    'BaseApplicationError',
    'ConfigError',
    'CustomValidationFailed',
    'DecoderError',
    'ErrorCategory',
    'ErrorSeverity',
    'ExtensionRejectedError',
    'FilesystemError',
    'SizeExceededError',
    'TypeRejectedError',
    'UploadFileError',
    'UsageError',
    'format_size',
    'parse_size',
]
