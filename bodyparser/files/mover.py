"""
Move protocol for uploaded files.

``move`` always validates first. A rejected file is marked ERRORED without
touching the filesystem. An accepted file is renamed into the destination
directory, falling back to copy-then-delete across filesystems. Without
``overwrite`` the destination name is claimed atomically, so two concurrent
moves can never both succeed onto the same path. Filesystem
failures are recorded on the file and leave the temporary file in place; no
destination file survives a failed move and no directories are created.

Blocking filesystem calls run in worker threads through ``asyncio.to_thread``
so several files of one request can be moved concurrently. The executor keeps
no per-move state.
"""

import asyncio
import errno
import os
import shutil
import time
from typing import Optional

import structlog
from werkzeug.security import safe_join

from bodyparser.files.entity import FileState, UploadedFile
from bodyparser.files.validation import ValidationPolicy
from bodyparser.monitoring.metrics import upload_move_duration_seconds, upload_moves_total
from bodyparser.utils.exceptions import FilesystemError, UsageError

logger = structlog.get_logger(__name__)

# Hard links unavailable: fall back to an exclusive create plus copy
LINK_FALLBACK_ERRNOS = frozenset({errno.EXDEV, errno.EPERM, errno.EMLINK, errno.ENOTSUP, errno.EOPNOTSUPP})


class MoveExecutor:
    """Validates and relocates uploaded files."""

    def __init__(self, policy: Optional[ValidationPolicy] = None):
        self.policy = policy or ValidationPolicy()

    async def move(
        self,
        file: UploadedFile,
        destination_dir: str,
        name: Optional[str] = None,
        overwrite: bool = True
    ) -> None:
        """
        Validate ``file`` and move it to ``destination_dir/(name or client_name)``.

        Args:
            file: A PENDING uploaded file
            destination_dir: Existing directory to move into
            name: Final file name, defaults to the client supplied name
            overwrite: Replace an existing destination file

        Raises:
            UsageError: If the file is not PENDING
        """
        if file.state is not FileState.PENDING:
            raise UsageError(
                f"Cannot move a {file.state.value} file",
                state=file.state.value,
                details={'client_name': file.client_name}
            )

        start_time = time.perf_counter()

        outcome = await self.policy.evaluate(file)
        if not outcome.passed:
            file._mark_errored(outcome.message)
            self._record(file, 'rejected', start_time)
            return

        file._mark_validated()

        final_name = name or file.client_name
        base_dir = os.path.abspath(os.fspath(destination_dir))
        destination = safe_join(base_dir, final_name) if final_name else None

        if destination is None:
            self._fail(file, f"{final_name} is not a valid file name", 'resolve_destination', None)
            self._record(file, 'failed', start_time)
            return

        if file.tmp_path is None or file.deleted:
            self._fail(file, "Temporary file is no longer available", 'file_move', file.tmp_path)
            self._record(file, 'failed', start_time)
            return

        try:
            await asyncio.to_thread(self._relocate, file.tmp_path, destination, overwrite)
        except OSError as e:
            self._fail(file, str(e), 'file_move', destination)
            self._record(file, 'failed', start_time)
            return

        file._mark_moved(destination, final_name)
        self._record(file, 'moved', start_time)

        logger.info(
            "Uploaded file moved",
            field_name=file.field_name,
            client_name=file.client_name,
            upload_name=final_name,
            upload_path=destination,
            file_size=file.client_size
        )

    async def delete(self, file: UploadedFile) -> None:
        """
        Remove the temporary file of a file that was not moved.

        A missing temporary file is not an error. The lifecycle state is left
        alone unless removal fails, in which case the failure is recorded and
        a PENDING file becomes ERRORED.

        Raises:
            UsageError: If the file was already moved
        """
        if file.state is FileState.MOVED:
            raise UsageError(
                "Cannot delete the temporary file of a moved upload",
                state=file.state.value,
                details={'client_name': file.client_name}
            )

        if file.tmp_path is None or file.deleted:
            return

        try:
            await asyncio.to_thread(_remove_if_exists, file.tmp_path)
        except OSError as e:
            error = FilesystemError(
                str(e),
                operation='file_delete',
                path=file.tmp_path,
                client_name=file.client_name,
                field_name=file.field_name
            )
            file._mark_errored(error.message)
            return

        file._mark_deleted()
        logger.debug("Temporary upload removed", client_name=file.client_name, tmp_path=file.tmp_path)

    @staticmethod
    def _relocate(source: str, destination: str, overwrite: bool) -> None:
        if os.path.isdir(destination):
            raise IsADirectoryError(errno.EISDIR, "Destination is a directory", destination)

        if overwrite:
            try:
                os.replace(source, destination)
                return
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
            _copy_then_remove(source, destination, exclusive=False)
            return

        # The link claims the destination name atomically, failing if it exists
        try:
            os.link(source, destination)
        except FileExistsError:
            raise _destination_exists(destination) from None
        except OSError as e:
            if e.errno not in LINK_FALLBACK_ERRNOS:
                raise
            _copy_then_remove(source, destination, exclusive=True)
            return

        try:
            os.unlink(source)
        except OSError:
            _remove_if_exists(destination)
            raise

    @staticmethod
    def _fail(file: UploadedFile, message: str, operation: str, path: Optional[str]) -> None:
        error = FilesystemError(
            message,
            operation=operation,
            path=path,
            client_name=file.client_name,
            field_name=file.field_name
        )
        file._mark_errored(error.message)

    @staticmethod
    def _record(file: UploadedFile, status: str, start_time: float) -> None:
        upload_moves_total.labels(status=status).inc()
        upload_move_duration_seconds.labels(status=status).observe(time.perf_counter() - start_time)


def _destination_exists(destination: str) -> FileExistsError:
    return FileExistsError(errno.EEXIST, "Destination file already exists", destination)


def _copy_then_remove(source: str, destination: str, exclusive: bool) -> None:
    """Copy across filesystems; the source goes only after a complete copy."""
    if exclusive:
        try:
            fd = os.open(destination, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise _destination_exists(destination) from None
        os.close(fd)

    try:
        shutil.copy2(source, destination)
        os.unlink(source)
    except OSError:
        _remove_if_exists(destination)
        raise


def _remove_if_exists(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


__all__ = ['MoveExecutor']
