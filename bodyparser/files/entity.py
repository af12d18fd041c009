"""
Uploaded file entity and its lifecycle state machine.

An UploadedFile represents one multipart file part: where its bytes were
staged, what the client claimed about it, which validation options apply and
how the move ended. Every accessor is a plain read of state set by an earlier
transition, so repeated calls never have side effects.

Lifecycle:
    PENDING -> VALIDATED -> MOVED
    PENDING -> VALIDATED -> ERRORED
    PENDING -> ERRORED

MOVED and ERRORED are terminal. ``upload_path``/``upload_name`` are set only
in MOVED and ``errors`` is non-empty only in ERRORED.
"""

import json
from enum import Enum
from pathlib import PurePath
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

import structlog

from bodyparser.utils.exceptions import UsageError

if TYPE_CHECKING:
    from bodyparser.files.mover import MoveExecutor
    from bodyparser.files.validation import Validator

logger = structlog.get_logger(__name__)

DEFAULT_MIME_TYPE = 'application/octet-stream'


class FileState(Enum):
    """Lifecycle states of an uploaded file."""

    PENDING = "pending"
    VALIDATED = "validated"
    MOVED = "moved"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (FileState.MOVED, FileState.ERRORED)


class UploadedFile:
    """
    One uploaded multipart file part.

    Client supplied values (``client_name``, ``client_size``, ``mime_type``)
    are untrusted. ``client_size`` starts at the declared size (0 when
    unknown) and grows with the bytes actually written while the part is
    streamed to temporary storage.
    """

    def __init__(
        self,
        field_name: str,
        client_name: str,
        tmp_path: Optional[str],
        mime_type: Optional[str] = None,
        client_size: int = 0,
        headers: Optional[Mapping[str, str]] = None,
        executor: Optional['MoveExecutor'] = None
    ):
        self._field_name = field_name
        self._client_name = client_name
        self._tmp_path = tmp_path
        self._mime_type = mime_type or DEFAULT_MIME_TYPE
        self._client_size = client_size
        self._headers = {key.lower(): value for key, value in (headers or {}).items()}
        self._extension = PurePath(client_name).suffix.lower().lstrip('.')
        self._executor = executor

        self._state = FileState.PENDING
        self._validator: Optional['Validator'] = None
        self._errors: List[str] = []
        self._upload_path: Optional[str] = None
        self._upload_name: Optional[str] = None
        self._complete = False
        self._tmp_deleted = False
        self._validating = False

    # Client metadata

    @property
    def field_name(self) -> str:
        return self._field_name

    @property
    def client_name(self) -> str:
        return self._client_name

    @property
    def client_size(self) -> int:
        return self._client_size

    @property
    def mime_type(self) -> str:
        return self._mime_type

    @property
    def type(self) -> str:
        """Major part of the mime type, e.g. ``image``."""
        return self._mime_type.split('/', 1)[0].lower()

    @property
    def subtype(self) -> str:
        """Minor part of the mime type without parameters, e.g. ``png``."""
        if '/' not in self._mime_type:
            return ''
        return self._mime_type.split('/', 1)[1].split(';', 1)[0].strip().lower()

    @property
    def extension(self) -> str:
        return self._extension

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._headers)

    @property
    def tmp_path(self) -> Optional[str]:
        return self._tmp_path

    # Lifecycle state

    @property
    def state(self) -> FileState:
        return self._state

    @property
    def validator(self) -> Optional['Validator']:
        return self._validator

    @property
    def moved(self) -> bool:
        return self._state is FileState.MOVED

    @property
    def errors(self) -> List[str]:
        return list(self._errors)

    @property
    def has_errors(self) -> bool:
        return bool(self._errors)

    @property
    def upload_path(self) -> Optional[str]:
        return self._upload_path

    @property
    def upload_name(self) -> Optional[str]:
        return self._upload_name

    @property
    def complete(self) -> bool:
        """Whether the decoder finished writing this part."""
        return self._complete

    @property
    def deleted(self) -> bool:
        """Whether the temporary file was removed through ``delete()``."""
        return self._tmp_deleted

    def set_validator(self, validator: Optional['Validator']) -> None:
        """
        Attach validation options, replacing any previous ones.

        Raises:
            UsageError: If the file already left the PENDING state
        """
        if self._state is not FileState.PENDING:
            raise UsageError(
                f"Cannot set validation options on a {self._state.value} file",
                state=self._state.value,
                details={'client_name': self._client_name}
            )
        self._validator = validator

    def validate_with(self, predicate: Callable[['UploadedFile'], Any]) -> 'UploadedFile':
        """
        Replace built-in validation with a caller predicate.

        The predicate receives this file, returns a truthy value to accept it
        and reports its own messages through ``add_error()``. It may be a
        coroutine function.
        """
        from bodyparser.files.validation import CustomValidator

        self.set_validator(CustomValidator(predicate))
        return self

    def add_error(self, message: str) -> None:
        """
        Record a human readable error.

        Called by custom validators while validation runs. Outside validation
        a PENDING file is rejected right away so the error list and the state
        never disagree.
        """
        if self._state.terminal:
            raise UsageError(
                f"Cannot add errors to a {self._state.value} file",
                state=self._state.value,
                details={'client_name': self._client_name}
            )
        self._errors.append(message)
        if not self._validating:
            self._state = FileState.ERRORED

    # Transitions driven by the registry, the validation policy and the mover

    def _record_bytes(self, nbytes: int) -> None:
        self._client_size += nbytes

    def _mark_complete(self) -> None:
        self._complete = True

    def _begin_validation(self) -> None:
        self._validating = True

    def _end_validation(self) -> None:
        self._validating = False

    def _mark_validated(self) -> None:
        self._state = FileState.VALIDATED

    def _mark_errored(self, message: Optional[str] = None) -> None:
        if message:
            self._errors.append(message)
        self._state = FileState.ERRORED
        self._upload_path = None
        self._upload_name = None
        logger.info(
            "Uploaded file errored",
            field_name=self._field_name,
            client_name=self._client_name,
            errors=self._errors
        )

    def _mark_moved(self, upload_path: str, upload_name: str) -> None:
        self._state = FileState.MOVED
        self._upload_path = upload_path
        self._upload_name = upload_name

    def _mark_deleted(self) -> None:
        self._tmp_deleted = True

    # Operations

    def _get_executor(self) -> 'MoveExecutor':
        if self._executor is None:
            from bodyparser.files.mover import MoveExecutor

            self._executor = MoveExecutor()
        return self._executor

    async def move(
        self,
        destination_dir: str,
        name: Optional[str] = None,
        overwrite: bool = True
    ) -> None:
        """
        Validate and move the temporary file into ``destination_dir``.

        Never raises for validation or filesystem failures; inspect ``moved``
        and ``errors`` afterwards.
        """
        await self._get_executor().move(self, destination_dir, name=name, overwrite=overwrite)

    async def delete(self) -> None:
        """Remove the temporary file without changing the lifecycle state."""
        await self._get_executor().delete(self)

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the public fields for serialization and logging."""
        return {
            'field_name': self._field_name,
            'client_name': self._client_name,
            'client_size': self._client_size,
            'mime_type': self._mime_type,
            'extension': self._extension,
            'tmp_path': self._tmp_path,
            'upload_path': self._upload_path,
            'upload_name': self._upload_name,
            'state': self._state.value,
            'errors': list(self._errors),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def __repr__(self) -> str:
        return (
            f"<UploadedFile field={self._field_name!r} client_name={self._client_name!r} "
            f"state={self._state.value}>"
        )
