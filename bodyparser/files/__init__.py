"""Uploaded file entities, validation, moving and the request registry."""

from bodyparser.files.entity import FileState, UploadedFile
from bodyparser.files.jar import FileJar
from bodyparser.files.mover import MoveExecutor
from bodyparser.files.registry import (
    CEILING_MESSAGE,
    PartMetadata,
    ReadDecision,
    UploadRegistry,
    is_array_field,
)
from bodyparser.files.validation import (
    BuiltInValidator,
    CustomValidator,
    ValidationOutcome,
    ValidationPolicy,
    Validator,
    build_validator,
)

__all__ = [
    'FileState',
    'UploadedFile',
    'FileJar',
    'MoveExecutor',
    'UploadRegistry',
    'PartMetadata',
    'ReadDecision',
    'CEILING_MESSAGE',
    'is_array_field',
    'Validator',
    'BuiltInValidator',
    'CustomValidator',
    'ValidationOutcome',
    'ValidationPolicy',
    'build_validator',
]
