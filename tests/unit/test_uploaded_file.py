"""
Unit tests for the uploaded file state machine and the move protocol.

Covers successful moves with and without an explicit name, validation
short-circuiting, filesystem failures preserving the temporary file, delete
semantics, lifecycle misuse and serialization.
"""

import asyncio
import errno
import json
import os

import pytest

from bodyparser.files.entity import FileState, UploadedFile
from bodyparser.files.mover import MoveExecutor
from bodyparser.utils.exceptions import UsageError


class TestUploadedFileMetadata:
    """Client metadata derived at construction."""

    def test_extension_is_lowercased_without_dot(self):
        file = UploadedFile('avatar', 'Holiday.Photo.JPEG', '/tmp/x')
        assert file.extension == 'jpeg'

    def test_missing_extension(self):
        assert UploadedFile('doc', 'README', '/tmp/x').extension == ''

    def test_mime_type_parts(self):
        file = UploadedFile('doc', 'a.txt', '/tmp/x', mime_type='text/plain; charset=utf-8')
        assert file.type == 'text'
        assert file.subtype == 'plain'

    def test_default_mime_type(self):
        assert UploadedFile('doc', 'a.bin', '/tmp/x').mime_type == 'application/octet-stream'

    def test_headers_are_lowercased_copies(self):
        file = UploadedFile('doc', 'a.bin', '/tmp/x', headers={'Content-Type': 'image/png'})
        headers = file.headers
        headers['x'] = 'y'
        assert file.headers == {'content-type': 'image/png'}

    def test_new_file_is_pending_without_results(self):
        file = UploadedFile('avatar', 'selfie.png', '/tmp/x')
        assert file.state is FileState.PENDING
        assert not file.moved
        assert file.errors == []
        assert file.upload_path is None
        assert file.upload_name is None


class TestMove:
    """Successful and rejected moves."""

    @pytest.mark.asyncio
    async def test_move_keeps_client_name(self, register_upload, destination_dir):
        file = register_upload(client_name='selfie.png')
        tmp_path = file.tmp_path

        await file.move(str(destination_dir))

        assert file.moved
        assert file.state is FileState.MOVED
        assert file.upload_name == file.client_name == 'selfie.png'
        assert file.upload_path == os.path.join(str(destination_dir), 'selfie.png')
        assert os.path.exists(file.upload_path)
        assert not os.path.exists(tmp_path)
        assert file.errors == []

    @pytest.mark.asyncio
    async def test_move_with_explicit_name(self, register_upload, destination_dir):
        file = register_upload(client_name='selfie.png')
        await file.move(str(destination_dir), name='user-42.png')

        assert file.moved
        assert file.upload_name == 'user-42.png'
        assert file.client_name == 'selfie.png'
        assert file.upload_path == os.path.join(str(destination_dir), 'user-42.png')

    @pytest.mark.asyncio
    async def test_move_preserves_content(self, register_upload, destination_dir):
        file = register_upload(content=b'hello world', client_name='hello.txt', mime_type='text/plain')
        await file.move(str(destination_dir))
        with open(file.upload_path, 'rb') as fh:
            assert fh.read() == b'hello world'

    @pytest.mark.asyncio
    async def test_rejected_extension_leaves_temp_file(self, registry, register_upload, destination_dir):
        file = register_upload(client_name='payload.exe')
        registry.get('avatar', extensions=['png', 'jpg'])

        await file.move(str(destination_dir))

        assert not file.moved
        assert file.state is FileState.ERRORED
        assert file.errors == ['exe is not a valid extension']
        assert os.path.exists(file.tmp_path)
        assert os.listdir(destination_dir) == []
        assert file.upload_path is None

    @pytest.mark.asyncio
    async def test_size_exceeded_leaves_temp_file(self, registry, register_upload, destination_dir):
        file = register_upload(content=b'0' * 2048)
        registry.get('avatar', max_size='1kb')

        await file.move(str(destination_dir))

        assert not file.moved
        assert file.errors == ['File size exceeds the target size of 1024 bytes']
        assert os.path.exists(file.tmp_path)

    @pytest.mark.asyncio
    async def test_custom_rejection_keeps_only_custom_messages(self, register_upload, destination_dir):
        def reject(file):
            file.add_error('avatar must be square')
            return False

        file = register_upload()
        file.validate_with(reject)
        await file.move(str(destination_dir))

        assert file.state is FileState.ERRORED
        assert file.errors == ['avatar must be square']

    @pytest.mark.asyncio
    async def test_accessors_are_idempotent(self, register_upload, destination_dir):
        file = register_upload(client_name='payload.exe')
        file.set_validator(None)
        file.validate_with(lambda f: False)
        await file.move(str(destination_dir))

        first = (file.moved, file.errors, file.state)
        for _ in range(3):
            assert (file.moved, file.errors, file.state) == first
        assert len(file.errors) == 1

    @pytest.mark.asyncio
    async def test_overwrite_replaces_existing_destination(self, register_upload, destination_dir):
        (destination_dir / 'selfie.png').write_bytes(b'old')
        file = register_upload(content=b'new')
        await file.move(str(destination_dir))
        assert file.moved
        assert (destination_dir / 'selfie.png').read_bytes() == b'new'

    @pytest.mark.asyncio
    async def test_no_overwrite_rejects_existing_destination(self, register_upload, destination_dir):
        (destination_dir / 'selfie.png').write_bytes(b'old')
        file = register_upload(content=b'new')

        await file.move(str(destination_dir), overwrite=False)

        assert not file.moved
        assert file.state is FileState.ERRORED
        assert 'Destination file already exists' in file.errors[0]
        assert (destination_dir / 'selfie.png').read_bytes() == b'old'
        assert os.path.exists(file.tmp_path)

    @pytest.mark.asyncio
    async def test_concurrent_no_overwrite_moves_claim_name_once(self, register_upload, destination_dir):
        first = register_upload(client_name='a.png', content=b'first')
        second = register_upload(client_name='a.png', content=b'second')

        await asyncio.gather(
            first.move(str(destination_dir), overwrite=False),
            second.move(str(destination_dir), overwrite=False)
        )

        winners = [file for file in (first, second) if file.moved]
        losers = [file for file in (first, second) if not file.moved]
        assert len(winners) == 1
        assert 'Destination file already exists' in losers[0].errors[0]
        assert os.path.exists(losers[0].tmp_path)
        assert os.listdir(destination_dir) == ['a.png']
        assert (destination_dir / 'a.png').read_bytes() == (b'first' if winners[0] is first else b'second')

    @pytest.mark.asyncio
    async def test_relative_destination_gives_absolute_upload_path(
        self, register_upload, destination_dir, tmp_path, monkeypatch
    ):
        file = register_upload()
        monkeypatch.chdir(tmp_path)

        await file.move('uploads')

        assert file.moved
        assert os.path.isabs(file.upload_path)
        assert os.path.samefile(file.upload_path, destination_dir / 'selfie.png')


class TestMoveFilesystemFailures:
    """Filesystem errors are recorded and never destroy the source."""

    @pytest.mark.asyncio
    async def test_missing_destination_directory(self, register_upload, tmp_path):
        file = register_upload()
        missing = tmp_path / 'does' / 'not' / 'exist'

        await file.move(str(missing))

        assert not file.moved
        assert file.state is FileState.ERRORED
        assert len(file.errors) == 1
        assert 'No such file or directory' in file.errors[0]
        assert os.path.exists(file.tmp_path)
        assert not missing.exists()

    @pytest.mark.asyncio
    async def test_path_traversal_name_is_rejected(self, register_upload, destination_dir):
        file = register_upload(client_name='../../etc/passwd.png')

        await file.move(str(destination_dir))

        assert not file.moved
        assert file.errors == ['../../etc/passwd.png is not a valid file name']
        assert os.path.exists(file.tmp_path)

    @pytest.mark.asyncio
    async def test_destination_is_directory(self, register_upload, destination_dir):
        (destination_dir / 'selfie.png').mkdir()
        file = register_upload()

        await file.move(str(destination_dir))

        assert not file.moved
        assert 'Destination is a directory' in file.errors[0]

    @pytest.mark.asyncio
    async def test_cross_device_move_copies_then_removes_source(self, register_upload, destination_dir, mocker):
        file = register_upload(content=b'cross device')
        tmp_path = file.tmp_path
        mocker.patch(
            'bodyparser.files.mover.os.replace',
            side_effect=OSError(errno.EXDEV, 'Invalid cross-device link')
        )

        await file.move(str(destination_dir))

        assert file.moved
        assert (destination_dir / 'selfie.png').read_bytes() == b'cross device'
        assert not os.path.exists(tmp_path)

    @pytest.mark.asyncio
    async def test_failed_cross_device_copy_leaves_no_destination(self, register_upload, destination_dir, mocker):
        file = register_upload()
        mocker.patch(
            'bodyparser.files.mover.os.replace',
            side_effect=OSError(errno.EXDEV, 'Invalid cross-device link')
        )
        mocker.patch(
            'bodyparser.files.mover.shutil.copy2',
            side_effect=OSError(errno.ENOSPC, 'No space left on device')
        )

        await file.move(str(destination_dir))

        assert not file.moved
        assert 'No space left on device' in file.errors[0]
        assert os.path.exists(file.tmp_path)
        assert os.listdir(destination_dir) == []

    @pytest.mark.asyncio
    async def test_failed_source_removal_after_copy_leaves_no_destination(
        self, register_upload, destination_dir, mocker
    ):
        file = register_upload()
        real_unlink = os.unlink

        def unlink(path, *args, **kwargs):
            if os.fspath(path) == file.tmp_path:
                raise PermissionError(errno.EACCES, 'Permission denied')
            return real_unlink(path, *args, **kwargs)

        mocker.patch(
            'bodyparser.files.mover.os.replace',
            side_effect=OSError(errno.EXDEV, 'Invalid cross-device link')
        )
        mocker.patch('bodyparser.files.mover.os.unlink', side_effect=unlink)

        await file.move(str(destination_dir))

        assert not file.moved
        assert 'Permission denied' in file.errors[0]
        assert os.path.exists(file.tmp_path)
        assert os.listdir(destination_dir) == []

    @pytest.mark.asyncio
    async def test_failed_source_removal_after_link_leaves_no_destination(
        self, register_upload, destination_dir, mocker
    ):
        file = register_upload()
        real_unlink = os.unlink

        def unlink(path, *args, **kwargs):
            if os.fspath(path) == file.tmp_path:
                raise PermissionError(errno.EACCES, 'Permission denied')
            return real_unlink(path, *args, **kwargs)

        mocker.patch('bodyparser.files.mover.os.unlink', side_effect=unlink)

        await file.move(str(destination_dir), overwrite=False)

        assert not file.moved
        assert 'Permission denied' in file.errors[0]
        assert os.path.exists(file.tmp_path)
        assert os.listdir(destination_dir) == []


class TestLifecycleMisuse:
    """Operations outside the PENDING state."""

    @pytest.mark.asyncio
    async def test_move_twice_raises_usage_error(self, register_upload, destination_dir):
        file = register_upload()
        await file.move(str(destination_dir))
        with pytest.raises(UsageError):
            await file.move(str(destination_dir))

    @pytest.mark.asyncio
    async def test_move_errored_file_raises_usage_error(self, register_upload, destination_dir):
        file = register_upload(client_name='payload.exe')
        file.validate_with(lambda f: False)
        await file.move(str(destination_dir))
        with pytest.raises(UsageError):
            await file.move(str(destination_dir))

    @pytest.mark.asyncio
    async def test_set_validator_after_move_raises_usage_error(self, register_upload, destination_dir):
        file = register_upload()
        await file.move(str(destination_dir))
        with pytest.raises(UsageError):
            file.validate_with(lambda f: True)

    def test_add_error_outside_validation_rejects_file(self, register_upload):
        file = register_upload()
        file.add_error('duplicate upload')
        assert file.state is FileState.ERRORED
        assert file.errors == ['duplicate upload']

    def test_add_error_on_terminal_file_raises(self, register_upload):
        file = register_upload()
        file.add_error('duplicate upload')
        with pytest.raises(UsageError):
            file.add_error('again')


class TestDelete:
    """Explicit temporary file removal."""

    @pytest.mark.asyncio
    async def test_delete_pending_file_keeps_state(self, register_upload):
        file = register_upload()
        await file.delete()

        assert not os.path.exists(file.tmp_path)
        assert file.deleted
        assert file.state is FileState.PENDING
        assert file.errors == []

    @pytest.mark.asyncio
    async def test_delete_rejected_file(self, register_upload, destination_dir):
        file = register_upload(client_name='payload.exe')
        file.validate_with(lambda f: False)
        await file.move(str(destination_dir))

        await file.delete()

        assert not os.path.exists(file.tmp_path)
        assert file.state is FileState.ERRORED
        assert len(file.errors) == 1

    @pytest.mark.asyncio
    async def test_delete_is_repeatable(self, register_upload):
        file = register_upload()
        await file.delete()
        await file.delete()
        assert file.state is FileState.PENDING

    @pytest.mark.asyncio
    async def test_delete_missing_temp_file_is_noop(self, register_upload):
        file = register_upload()
        os.unlink(file.tmp_path)
        await file.delete()
        assert file.state is FileState.PENDING

    @pytest.mark.asyncio
    async def test_delete_moved_file_raises_usage_error(self, register_upload, destination_dir):
        file = register_upload()
        await file.move(str(destination_dir))
        with pytest.raises(UsageError):
            await file.delete()

    @pytest.mark.asyncio
    async def test_move_after_delete_records_missing_temp_file(self, register_upload, destination_dir):
        file = register_upload()
        await file.delete()
        await file.move(str(destination_dir))

        assert not file.moved
        assert file.errors == ['Temporary file is no longer available']

    @pytest.mark.asyncio
    async def test_delete_failure_is_recorded(self, register_upload, mocker):
        file = register_upload()
        mocker.patch(
            'bodyparser.files.mover._remove_if_exists',
            side_effect=PermissionError(errno.EACCES, 'Permission denied')
        )

        await file.delete()

        assert file.state is FileState.ERRORED
        assert 'Permission denied' in file.errors[0]
        assert not file.deleted


class TestSerialization:
    """Public snapshot for logging and JSON responses."""

    @pytest.mark.asyncio
    async def test_to_dict_after_move(self, register_upload, destination_dir):
        file = register_upload(content=b'abc')
        tmp_path = file.tmp_path
        file.validate_with(lambda f: True)
        await file.move(str(destination_dir))

        snapshot = file.to_dict()
        assert snapshot == {
            'field_name': 'avatar',
            'client_name': 'selfie.png',
            'client_size': 3,
            'mime_type': 'image/png',
            'extension': 'png',
            'tmp_path': tmp_path,
            'upload_path': os.path.join(str(destination_dir), 'selfie.png'),
            'upload_name': 'selfie.png',
            'state': 'moved',
            'errors': [],
        }
        assert 'validator' not in snapshot

    def test_to_json_round_trips(self, register_upload):
        file = register_upload()
        assert json.loads(file.to_json()) == file.to_dict()


class TestMoveExecutorDirect:
    """The executor can be driven without going through the entity."""

    @pytest.mark.asyncio
    async def test_executor_move(self, register_upload, destination_dir):
        file = register_upload()
        await MoveExecutor().move(file, str(destination_dir), name='direct.png')
        assert file.upload_name == 'direct.png'
