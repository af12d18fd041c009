"""Multipart body decoding."""

from bodyparser.multipart.decoder import (
    DEFAULT_CHUNK_SIZE,
    MultipartDecoder,
    boundary_from_content_type,
)

__all__ = ['MultipartDecoder', 'boundary_from_content_type', 'DEFAULT_CHUNK_SIZE']
