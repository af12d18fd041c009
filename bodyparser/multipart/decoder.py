"""
Streaming multipart decoder driver built on python-multipart.

python-multipart's MultipartParser does the byte level work and reports parts
through callbacks. This driver turns those callbacks into registry calls:
every file part gets a temporary file and an UploadedFile, and every chunk of
file data is checked against the registry's ceiling *before* it is written.
Once the registry answers ABORT nothing more is written and ``feed`` returns
False so the caller stops reading the request body.

Plain (non-file) fields are collected in memory as decoded strings.
"""

import os
import tempfile
from typing import IO, BinaryIO, Dict, List, Optional, Union

import structlog
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from bodyparser.files.entity import FileState, UploadedFile
from bodyparser.files.registry import PartMetadata, ReadDecision, UploadRegistry
from bodyparser.utils.exceptions import DecoderError

logger = structlog.get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
TMP_FILE_PREFIX = 'bodyparser-'


def boundary_from_content_type(content_type: Optional[str]) -> bytes:
    """
    Extract the multipart boundary from a Content-Type header value.

    Raises:
        DecoderError: When the header is not multipart/form-data or has no boundary
    """
    mimetype, params = parse_options_header(content_type)
    if mimetype.lower() != b'multipart/form-data':
        raise DecoderError(
            f"Expected multipart/form-data, got {mimetype.decode('latin-1') or 'no content type'}"
        )
    boundary = params.get(b'boundary')
    if not boundary:
        raise DecoderError("No boundary given in multipart Content-Type")
    return boundary


def _decode_header(value: bytes) -> str:
    try:
        return value.decode('utf-8')
    except UnicodeDecodeError:
        return value.decode('latin-1')


class MultipartDecoder:
    """
    Feed a multipart body chunk by chunk into an UploadRegistry.

    Usage::

        decoder = MultipartDecoder.from_content_type(registry, request.content_type)
        decoder.consume(request.stream)
        form = decoder.fields
    """

    def __init__(
        self,
        registry: UploadRegistry,
        boundary: Union[str, bytes],
        tmp_dir: Optional[str] = None
    ):
        self.registry = registry
        self.tmp_dir = tmp_dir or registry.settings.tmp_dir
        self.fields: Dict[str, List[str]] = {}
        self.aborted = False
        self.finished = False

        self._headers: Dict[str, str] = {}
        self._raw_disposition: Optional[bytes] = None
        self._header_name: List[bytes] = []
        self._header_value: List[bytes] = []
        self._file: Optional[UploadedFile] = None
        self._handle: Optional[IO[bytes]] = None
        self._field_name: Optional[str] = None
        self._field_data: List[bytes] = []
        self._in_file_part = False

        self._parser = MultipartParser(
            boundary,
            callbacks={
                'on_part_begin': self._on_part_begin,
                'on_part_data': self._on_part_data,
                'on_part_end': self._on_part_end,
                'on_header_field': self._on_header_field,
                'on_header_value': self._on_header_value,
                'on_header_end': self._on_header_end,
                'on_headers_finished': self._on_headers_finished,
            }
        )

    @classmethod
    def from_content_type(
        cls,
        registry: UploadRegistry,
        content_type: Optional[str],
        tmp_dir: Optional[str] = None
    ) -> 'MultipartDecoder':
        return cls(registry, boundary_from_content_type(content_type), tmp_dir=tmp_dir)

    def feed(self, chunk: bytes) -> bool:
        """
        Decode one chunk of the body.

        Returns:
            False once the registry aborted the request; the caller must stop
            reading the body.

        Raises:
            DecoderError: For malformed multipart data
        """
        if self.aborted:
            return False
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            self.close()
            raise DecoderError(f"Malformed multipart body: {e}") from e
        return not self.aborted

    def finish(self) -> None:
        """Signal the end of the body and release any open temporary file."""
        if not self.aborted and not self.finished:
            self._parser.finalize()
        self.finished = True
        self.close()

    def consume(self, stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bool:
        """
        Read ``stream`` until EOF or until the registry aborts.

        Returns:
            True when the whole body was decoded, False when reading stopped
            at the ceiling
        """
        try:
            while True:
                chunk = stream.read(chunk_size)
                if not chunk:
                    break
                if not self.feed(chunk):
                    logger.warning(
                        "Multipart body reading aborted at size ceiling",
                        total_bytes=self.registry.total_bytes,
                        max_size=self.registry.settings.max_size
                    )
                    return False
        finally:
            self.finish()
        return True

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    # python-multipart callbacks

    def _on_part_begin(self) -> None:
        self._headers = {}
        self._raw_disposition = None
        self._file = None
        self._field_name = None
        self._field_data = []
        self._in_file_part = False

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_name.append(data[start:end])

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value.append(data[start:end])

    def _on_header_end(self) -> None:
        name = _decode_header(b''.join(self._header_name)).lower()
        raw_value = b''.join(self._header_value)
        if name == 'content-disposition':
            self._raw_disposition = raw_value
        self._headers[name] = _decode_header(raw_value)
        del self._header_name[:]
        del self._header_value[:]

    def _on_headers_finished(self) -> None:
        _, options = parse_options_header(self._raw_disposition)
        field_name = _decode_header(options.get(b'name', b''))
        file_name = options.get(b'filename')

        if file_name is None:
            self._field_name = field_name
            return

        self._in_file_part = True
        if not file_name:
            # Empty file input submitted without a selection
            return

        part = PartMetadata(
            client_name=_decode_header(file_name),
            mime_type=self._headers.get('content-type'),
            headers=dict(self._headers)
        )

        if self.aborted or self.registry.aborted:
            self._file = self.registry.register(field_name, part, None)
            return

        fd, tmp_path = tempfile.mkstemp(prefix=TMP_FILE_PREFIX, dir=self.tmp_dir)
        file = self.registry.register(field_name, part, tmp_path)
        if file.state is FileState.ERRORED:
            os.close(fd)
            os.unlink(tmp_path)
            file._mark_deleted()
        else:
            self._handle = os.fdopen(fd, 'wb')
        self._file = file

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if not self._in_file_part:
            if self._field_name is not None:
                self._field_data.append(data[start:end])
            return

        if self._file is None or self._handle is None or self.aborted:
            return

        if self.registry.account(self._file, end - start) is ReadDecision.ABORT:
            self.aborted = True
            self.close()
            return

        self._handle.write(data[start:end])

    def _on_part_end(self) -> None:
        if not self._in_file_part:
            if self._field_name is not None:
                value = _decode_header(b''.join(self._field_data))
                self.fields.setdefault(self._field_name, []).append(value)
            return

        if self._handle is not None:
            self.close()
            if self._file is not None and not self.aborted:
                self.registry.complete(self._file)


__all__ = ['MultipartDecoder', 'boundary_from_content_type', 'DEFAULT_CHUNK_SIZE']
