"""
Request scoped registry of uploaded files.

The multipart decoder registers one UploadedFile per file part and asks the
registry, before persisting every chunk, whether reading may continue. The
registry keeps a running total of accepted bytes across all parts and, as soon
as the next chunk would push it past the configured ceiling, aborts the
request: the offending part and every part still being written are marked
ERRORED and the decoder is told to stop reading.

Callers retrieve files by field name. Names ending in ``[]`` always resolve to
a FileJar (possibly empty); other names resolve to a single file or None.
Validation options passed to ``get`` are attached to every matching file.

Key Features:
- Incremental aggregate ceiling with a continue/abort decision per chunk
- Array style field support gated by the ``multiple`` setting
- Per-call validation options layered over resolved settings
- Cleanup of unmoved temporary files at the end of the request
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

import structlog

from bodyparser.config.settings import UploadSettings
from bodyparser.files.entity import FileState, UploadedFile
from bodyparser.files.jar import FileJar
from bodyparser.files.mover import MoveExecutor
from bodyparser.files.validation import build_validator
from bodyparser.monitoring.metrics import (
    upload_bytes_received_total,
    upload_ceiling_aborts_total,
    upload_parts_registered_total,
)
from bodyparser.utils.exceptions import SizeExceededError
from bodyparser.utils.size import format_size

logger = structlog.get_logger(__name__)

CEILING_MESSAGE = "upload size exceeds configured limit"
ARRAY_SUFFIX = '[]'


class ReadDecision(Enum):
    """Answer to the decoder after each chunk."""

    CONTINUE = "continue"
    ABORT = "abort"


@dataclass(frozen=True)
class PartMetadata:
    """
    Client supplied metadata of one file part.

    ``size`` is set when the part was fully written before registration; a
    streaming decoder leaves it None and reports bytes through ``account``.
    """

    client_name: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    headers: Mapping[str, str] = field(default_factory=dict)


def is_array_field(field_name: str) -> bool:
    return field_name.endswith(ARRAY_SUFFIX)


class UploadRegistry:
    """Owns every uploaded file of one request."""

    def __init__(
        self,
        settings: Optional[UploadSettings] = None,
        executor: Optional[MoveExecutor] = None
    ):
        self.settings = settings or UploadSettings()
        self.executor = executor or MoveExecutor()
        self._fields: Dict[str, List[UploadedFile]] = {}
        self._files: List[UploadedFile] = []
        self._total_bytes = 0
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def register(
        self,
        field_name: str,
        part: PartMetadata,
        tmp_path: Optional[str]
    ) -> UploadedFile:
        """
        Register one decoded file part.

        Args:
            field_name: Form field the part was submitted under
            part: Client metadata; a known ``size`` is accounted immediately
            tmp_path: Temporary file the decoder writes the part to

        Returns:
            The new file. It is already ERRORED when the request was aborted or
            when array style fields are disabled.
        """
        file = UploadedFile(
            field_name=field_name,
            client_name=part.client_name,
            tmp_path=tmp_path,
            mime_type=part.mime_type,
            headers=part.headers,
            executor=self.executor
        )
        self._files.append(file)
        self._fields.setdefault(field_name, []).append(file)

        array_field = is_array_field(field_name)
        upload_parts_registered_total.labels(field_kind='array' if array_field else 'single').inc()

        if self._aborted:
            file._mark_errored(CEILING_MESSAGE)
            return file

        if array_field and not self.settings.multiple:
            file._mark_errored(f"multiple file uploads are not allowed for field {field_name}")
            return file

        if part.size is not None:
            if self.account(file, part.size) is ReadDecision.CONTINUE:
                self.complete(file)

        logger.debug(
            "Upload part registered",
            field_name=field_name,
            client_name=part.client_name,
            mime_type=part.mime_type,
            tmp_path=tmp_path
        )
        return file

    def account(self, file: UploadedFile, nbytes: int) -> ReadDecision:
        """
        Check the ceiling before ``nbytes`` more bytes of ``file`` are persisted.

        Returns:
            CONTINUE when the bytes fit, in which case they are counted;
            ABORT when they do not, in which case nothing is counted and the
            decoder must neither write the chunk nor read further.
        """
        if self._aborted:
            return ReadDecision.ABORT

        if self._total_bytes + nbytes > self.settings.max_size:
            self._abort(file, nbytes)
            return ReadDecision.ABORT

        self._total_bytes += nbytes
        file._record_bytes(nbytes)
        upload_bytes_received_total.inc(nbytes)
        return ReadDecision.CONTINUE

    def complete(self, file: UploadedFile) -> None:
        """Mark ``file`` as fully written by the decoder."""
        file._mark_complete()

    def _abort(self, offending: UploadedFile, nbytes: int) -> None:
        self._aborted = True
        upload_ceiling_aborts_total.inc()

        SizeExceededError(
            CEILING_MESSAGE,
            limit=self.settings.max_size,
            client_name=offending.client_name,
            field_name=offending.field_name,
            details={
                'received_bytes': self._total_bytes,
                'rejected_chunk_bytes': nbytes,
                'limit': format_size(self.settings.max_size)
            }
        )

        for file in self._files:
            if file.state is FileState.PENDING and (file is offending or not file.complete):
                file._mark_errored(CEILING_MESSAGE)

    def get(
        self,
        field_name: str,
        *,
        max_size: Union[str, int, None] = None,
        extensions: Optional[Iterable[str]] = None,
        types: Optional[Iterable[str]] = None,
        validator: Optional[Callable[[UploadedFile], Any]] = None
    ) -> Union[UploadedFile, FileJar, None]:
        """
        Retrieve the file(s) submitted under ``field_name``.

        Args:
            field_name: Form field name; a ``[]`` suffix selects a FileJar
            max_size: Per-file size limit ("2mb" or bytes)
            extensions: Allowed extensions
            types: Allowed mime types, majors or subtypes
            validator: Custom predicate replacing the built-in checks

        Returns:
            A FileJar for array fields, otherwise the first file registered
            under the name, or None when the field is unknown

        Raises:
            ConfigError: For bad size specs or conflicting options
        """
        new_validator = build_validator(
            max_size=max_size,
            extensions=extensions,
            types=types,
            validator=validator
        )
        files = self._fields.get(field_name, [])

        if new_validator is not None:
            for file in files:
                if file.state is FileState.PENDING:
                    file.set_validator(new_validator)
                else:
                    logger.debug(
                        "Validation options ignored for settled file",
                        field_name=field_name,
                        client_name=file.client_name,
                        state=file.state.value
                    )

        if is_array_field(field_name):
            return FileJar(field_name, files)
        return files[0] if files else None

    def all(self) -> List[UploadedFile]:
        """Every registered file in registration order."""
        return list(self._files)

    def __contains__(self, field_name: object) -> bool:
        return field_name in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._files)

    def __bool__(self) -> bool:
        # A processed body without file parts is still a registry
        return True

    def cleanup(self) -> int:
        """
        Remove temporary files that were never moved.

        Called when the request completes. Returns the number of files removed.
        """
        removed = 0
        for file in self._files:
            if file.moved or file.deleted or not file.tmp_path:
                continue
            try:
                os.unlink(file.tmp_path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(
                    "Unable to remove temporary upload",
                    client_name=file.client_name,
                    tmp_path=file.tmp_path,
                    error=str(e)
                )
                continue
            file._mark_deleted()
            removed += 1

        if removed:
            logger.debug("Temporary uploads cleaned up", removed=removed)
        return removed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'aborted': self._aborted,
            'total_bytes': self._total_bytes,
            'files': [file.to_dict() for file in self._files],
        }


__all__ = [
    'UploadRegistry',
    'PartMetadata',
    'ReadDecision',
    'CEILING_MESSAGE',
    'is_array_field',
]
