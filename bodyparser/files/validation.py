"""
Validation policy for uploaded files.

Validation options attached to a file take one of two forms. A
BuiltInValidator checks the extension, the size and optionally the declared
mime type, stopping at the first failure. A CustomValidator hands the whole
decision to a caller predicate which records its own messages on the file;
built-in checks are then never evaluated. A file without options always
passes, validation is opt-in.

Key Features:
- Explicit validator variants instead of per-file method overrides
- First failing built-in check wins, one message per failure
- Sync or async custom predicates
- Prometheus counter and structured log line per evaluation
"""

import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, FrozenSet, Iterable, Optional, Union

import structlog

from bodyparser.monitoring.metrics import upload_validation_total
from bodyparser.utils.exceptions import (
    ConfigError,
    CustomValidationFailed,
    ExtensionRejectedError,
    SizeExceededError,
    TypeRejectedError,
    UploadFileError,
)
from bodyparser.utils.size import parse_size

if TYPE_CHECKING:
    from bodyparser.files.entity import UploadedFile

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ValidationOutcome:
    """
    Transient result of one evaluation.

    ``message`` is the text to record on the file. It is None for a pass and
    for custom failures whose predicate already recorded its own messages.
    """

    passed: bool
    message: Optional[str] = None
    reason: str = 'ok'

    @classmethod
    def success(cls) -> 'ValidationOutcome':
        return cls(True)

    @classmethod
    def failure(cls, error: Optional[UploadFileError], reason: str) -> 'ValidationOutcome':
        return cls(False, error.message if error else None, reason)


class Validator:
    """Base class of the validation option variants."""

    kind = 'none'


@dataclass(frozen=True)
class BuiltInValidator(Validator):
    """
    Extension, size and mime type rules.

    Attributes:
        allowed_extensions: Lower-cased extensions without dots; empty allows any
        max_size_bytes: Per-file limit compared against ``client_size``
        allowed_types: Accepted mime types, majors or subtypes ("image", "png",
            "image/png"); empty allows any
    """

    allowed_extensions: FrozenSet[str] = frozenset()
    max_size_bytes: Optional[int] = None
    allowed_types: FrozenSet[str] = frozenset()

    kind = 'builtin'

    def check(self, file: 'UploadedFile') -> ValidationOutcome:
        if self.allowed_extensions and file.extension.lower() not in self.allowed_extensions:
            error = ExtensionRejectedError(
                f"{file.extension} is not a valid extension",
                extension=file.extension,
                client_name=file.client_name,
                field_name=file.field_name
            )
            return ValidationOutcome.failure(error, 'extension')

        if self.max_size_bytes is not None and file.client_size > self.max_size_bytes:
            error = SizeExceededError(
                f"File size exceeds the target size of {self.max_size_bytes} bytes",
                limit=self.max_size_bytes,
                client_name=file.client_name,
                field_name=file.field_name
            )
            return ValidationOutcome.failure(error, 'size')

        if self.allowed_types and not (
            file.type in self.allowed_types
            or file.subtype in self.allowed_types
            or f"{file.type}/{file.subtype}" in self.allowed_types
        ):
            error = TypeRejectedError(
                f"Invalid file type {file.subtype} or {file.type}",
                client_name=file.client_name,
                field_name=file.field_name
            )
            return ValidationOutcome.failure(error, 'type')

        return ValidationOutcome.success()


@dataclass(frozen=True)
class CustomValidator(Validator):
    """Caller predicate fully replacing the built-in checks."""

    predicate: Callable[['UploadedFile'], Any] = field(compare=False)

    kind = 'custom'


def build_validator(
    max_size: Union[str, int, None] = None,
    extensions: Optional[Iterable[str]] = None,
    types: Optional[Iterable[str]] = None,
    validator: Optional[Callable[['UploadedFile'], Any]] = None
) -> Optional[Validator]:
    """
    Resolve retrieval options into a validator variant.

    Args:
        max_size: Per-file size spec ("2mb") or byte count
        extensions: Allowed extensions, case-insensitive, dots optional
        types: Allowed mime types, majors or subtypes
        validator: Custom predicate replacing every built-in rule

    Returns:
        The validator, or None when no option was given

    Raises:
        ConfigError: For bad size specs or a predicate combined with built-in options
    """
    has_builtin = max_size is not None or extensions is not None or types is not None

    if validator is not None:
        if has_builtin:
            raise ConfigError(
                "A custom validator replaces built-in validation and cannot be combined "
                "with max_size, extensions or types",
                option='validator'
            )
        if not callable(validator):
            raise ConfigError("validator must be callable", option='validator', value=validator)
        return CustomValidator(validator)

    if not has_builtin:
        return None

    if isinstance(extensions, str) or isinstance(types, str):
        raise ConfigError("extensions and types must be sequences of strings", option='extensions')

    return BuiltInValidator(
        allowed_extensions=frozenset(ext.lower().lstrip('.') for ext in (extensions or ())),
        max_size_bytes=parse_size(max_size) if max_size is not None else None,
        allowed_types=frozenset(kind.lower() for kind in (types or ())),
    )


class ValidationPolicy:
    """Evaluates a file's validation options."""

    async def evaluate(self, file: 'UploadedFile') -> ValidationOutcome:
        validator = file.validator

        if validator is None:
            outcome = ValidationOutcome.success()
        elif isinstance(validator, CustomValidator):
            outcome = await self._run_custom(file, validator)
        else:
            outcome = validator.check(file)

        upload_validation_total.labels(
            validator=validator.kind if validator else 'none',
            result='passed' if outcome.passed else 'failed',
            reason=outcome.reason
        ).inc()

        logger.debug(
            "Uploaded file evaluated",
            field_name=file.field_name,
            client_name=file.client_name,
            passed=outcome.passed,
            reason=outcome.reason
        )
        return outcome

    async def _run_custom(self, file: 'UploadedFile', validator: CustomValidator) -> ValidationOutcome:
        errors_before = len(file.errors)
        file._begin_validation()
        try:
            result = validator.predicate(file)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            error = CustomValidationFailed(
                f"Custom validation raised {e.__class__.__name__}: {e}",
                client_name=file.client_name,
                field_name=file.field_name
            )
            return ValidationOutcome.failure(error, 'custom')
        finally:
            file._end_validation()

        recorded = len(file.errors) > errors_before
        if result and not recorded:
            return ValidationOutcome.success()

        if recorded:
            return ValidationOutcome(False, None, 'custom')

        # Predicate rejected the file without saying why
        error = CustomValidationFailed(
            f"{file.client_name} failed custom validation",
            client_name=file.client_name,
            field_name=file.field_name
        )
        return ValidationOutcome.failure(error, 'custom')


__all__ = [
    'ValidationOutcome',
    'Validator',
    'BuiltInValidator',
    'CustomValidator',
    'ValidationPolicy',
    'build_validator',
]
