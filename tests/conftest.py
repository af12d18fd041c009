"""
Global pytest Configuration and Fixtures

Shared fixtures for the body parser test suite: isolated temporary and
destination directories, a factory writing staged uploads the way the decoder
does, registry factories and a Flask application with the extension installed.

Dependencies:
- pytest with pytest-asyncio for coroutine based move/delete operations
- pytest-mock for filesystem failure injection
- Flask test client for request cycle tests
"""

import os
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple

import pytest
from flask import Flask

from bodyparser.config.settings import UploadSettings
from bodyparser.extension import BodyParser
from bodyparser.files.entity import UploadedFile
from bodyparser.files.registry import PartMetadata, UploadRegistry

TEST_BOUNDARY = 'bodyparser-test-boundary'


@pytest.fixture
def tmp_upload_dir(tmp_path) -> Path:
    """Directory standing in for the decoder's temporary storage."""
    directory = tmp_path / 'tmp'
    directory.mkdir()
    return directory


@pytest.fixture
def destination_dir(tmp_path) -> Path:
    """Existing destination directory for moves."""
    directory = tmp_path / 'uploads'
    directory.mkdir()
    return directory


@pytest.fixture
def upload_settings(tmp_upload_dir) -> UploadSettings:
    return UploadSettings(max_size=1024 * 1024, tmp_dir=str(tmp_upload_dir))


@pytest.fixture
def registry(upload_settings) -> UploadRegistry:
    return UploadRegistry(upload_settings)


@pytest.fixture
def make_registry(tmp_upload_dir) -> Callable[..., UploadRegistry]:
    """Factory building registries with custom settings."""
    def factory(**overrides) -> UploadRegistry:
        overrides.setdefault('tmp_dir', str(tmp_upload_dir))
        return UploadRegistry(UploadSettings.from_mapping(overrides))
    return factory


@pytest.fixture
def write_temp_file(tmp_upload_dir) -> Callable[[bytes], str]:
    """Write bytes to a fresh staged temporary file and return its path."""
    counter = {'value': 0}

    def factory(content: bytes = b'') -> str:
        counter['value'] += 1
        path = tmp_upload_dir / f"bodyparser-part-{counter['value']}"
        path.write_bytes(content)
        return str(path)
    return factory


@pytest.fixture
def register_upload(registry, write_temp_file) -> Callable[..., UploadedFile]:
    """Register a fully written part on the default registry."""
    def factory(
        field_name: str = 'avatar',
        client_name: str = 'selfie.png',
        content: bytes = b'\x89PNG\r\n\x1a\n' + b'0' * 120,
        mime_type: Optional[str] = 'image/png',
        target: Optional[UploadRegistry] = None
    ) -> UploadedFile:
        tmp_path = write_temp_file(content)
        part = PartMetadata(client_name=client_name, mime_type=mime_type, size=len(content))
        owner = target if target is not None else registry
        return owner.register(field_name, part, tmp_path)
    return factory


def build_multipart_body(
    parts: Iterable[Tuple[str, Optional[str], Optional[str], bytes]],
    boundary: str = TEST_BOUNDARY
) -> bytes:
    """
    Encode ``(field_name, file_name, content_type, data)`` tuples as multipart/form-data.

    A ``file_name`` of None produces a plain form field.
    """
    body = b''
    for field_name, file_name, content_type, data in parts:
        disposition = f'form-data; name="{field_name}"'
        if file_name is not None:
            disposition += f'; filename="{file_name}"'
        head = f'--{boundary}\r\nContent-Disposition: {disposition}\r\n'
        if content_type:
            head += f'Content-Type: {content_type}\r\n'
        body += head.encode('utf-8') + b'\r\n' + data + b'\r\n'
    return body + f'--{boundary}--\r\n'.encode('utf-8')


@pytest.fixture
def multipart_body() -> Callable[..., bytes]:
    return build_multipart_body


@pytest.fixture
def flask_app(tmp_upload_dir, destination_dir) -> Flask:
    """Flask application with the body parser installed and a small ceiling."""
    app = Flask(__name__)
    app.config.update(
        TESTING=True,
        BODYPARSER_MAX_SIZE='1kb',
        BODYPARSER_TMP_DIR=str(tmp_upload_dir),
        DESTINATION_DIR=str(destination_dir),
    )
    BodyParser(app)
    return app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def staged_files(tmp_upload_dir) -> Callable[[], list]:
    """Names of temporary part files currently left in the temporary directory."""
    def listing() -> list:
        return sorted(name for name in os.listdir(tmp_upload_dir) if name.startswith('bodyparser-'))
    return listing
