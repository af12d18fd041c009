"""
Flask Body Parser Package
=========================

Request-scoped multipart file upload handling for Flask applications. Incoming
multipart bodies are streamed through python-multipart into temporary files,
registered per form field with an aggregate size ceiling enforced while the
body is still being read, validated against per-field policy and finally moved
into caller-chosen destinations.

Package Structure:
- bodyparser.files: uploaded file state machine, validation policy, move executor,
  upload registry and multi-file jars
- bodyparser.multipart: streaming decoder driver around python-multipart
- bodyparser.extension: Flask extension wiring the decoder into the request cycle
- bodyparser.config: environment driven configuration classes and resolved settings
- bodyparser.monitoring: structlog setup and Prometheus metrics
- bodyparser.utils: exception hierarchy and size spec parsing
"""

__version__ = "1.0.0"
__title__ = "flask-bodyparser"
__description__ = "Multipart file upload handling layer for Flask"
__license__ = "Proprietary"

PACKAGE_NAME = "bodyparser"

from bodyparser.config.settings import UploadSettings, get_config
from bodyparser.extension import BodyParser, get_form_fields, get_uploads
from bodyparser.files import (
    BuiltInValidator,
    CustomValidator,
    FileJar,
    FileState,
    MoveExecutor,
    PartMetadata,
    ReadDecision,
    UploadedFile,
    UploadRegistry,
    ValidationOutcome,
    ValidationPolicy,
)
from bodyparser.multipart import MultipartDecoder
from bodyparser.utils.exceptions import (
    BaseApplicationError,
    ConfigError,
    DecoderError,
    UsageError,
)
from bodyparser.utils.size import format_size, parse_size

__all__ = [
    '__version__',
    'BodyParser',
    'get_uploads',
    'get_form_fields',
    'UploadSettings',
    'get_config',
    'UploadedFile',
    'FileState',
    'FileJar',
    'UploadRegistry',
    'PartMetadata',
    'ReadDecision',
    'ValidationPolicy',
    'ValidationOutcome',
    'BuiltInValidator',
    'CustomValidator',
    'MoveExecutor',
    'MultipartDecoder',
    'BaseApplicationError',
    'ConfigError',
    'UsageError',
    'DecoderError',
    'parse_size',
    'format_size',
]
