"""
Flask extension wiring multipart decoding into the request cycle.

For every request whose method is listed in ``BODYPARSER_PROCESS_METHODS``
and whose body is multipart/form-data, the extension streams
``request.stream`` through a MultipartDecoder into a fresh UploadRegistry
before the view runs. Reading stops as soon as the registry aborts at the
size ceiling. Views then use ``get_uploads()`` and ``get_form_fields()``;
temporary files that were not moved are removed when the request tears down.

Example::

    app = Flask(__name__)
    BodyParser(app)

    @app.post('/avatar')
    async def upload_avatar():
        avatar = get_uploads().get('avatar', max_size='2mb', extensions=['png', 'jpg'])
        await avatar.move(app.config['AVATAR_DIR'])
        if not avatar.moved:
            return {'errors': avatar.errors}, 422
        return avatar.to_dict(), 201
"""

from typing import Dict, List, Optional

import structlog
from flask import Flask, current_app, g, jsonify, request

from bodyparser.config.settings import BaseConfig, UploadSettings
from bodyparser.files.registry import UploadRegistry
from bodyparser.monitoring.logging import setup_structured_logging
from bodyparser.multipart.decoder import MultipartDecoder
from bodyparser.utils.exceptions import BaseApplicationError

logger = structlog.get_logger(__name__)

EXTENSION_NAME = 'bodyparser'
REGISTRY_KEY = 'bodyparser_registry'
FIELDS_KEY = 'bodyparser_fields'


class BodyParser:
    """Flask extension processing multipart uploads."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """
        Register request hooks and resolve settings from ``app.config``.

        Raises:
            ConfigError: For invalid BODYPARSER_* settings
        """
        for key, value in BaseConfig.to_dict().items():
            app.config.setdefault(key, value)

        if app.config.get('BODYPARSER_SETUP_LOGGING'):
            setup_structured_logging(
                log_level=app.config.get('LOG_LEVEL'),
                log_format=app.config.get('LOG_FORMAT')
            )

        settings = UploadSettings.from_mapping(app.config, strict=False)
        app.extensions[EXTENSION_NAME] = settings

        app.before_request(self._process_request)
        app.teardown_request(self._cleanup_request)
        app.register_error_handler(BaseApplicationError, _handle_application_error)

        logger.info("Body parser initialized", app=app.import_name, **settings.to_dict())

    @staticmethod
    def settings() -> UploadSettings:
        return current_app.extensions[EXTENSION_NAME]

    def _process_request(self) -> None:
        settings = self.settings()
        if not settings.autoprocess:
            return
        if request.method not in settings.process_methods:
            return
        if request.mimetype != 'multipart/form-data':
            return
        self.process()

    def process(self) -> UploadRegistry:
        """
        Decode the current request body into a new registry stored on ``g``.

        Raises:
            DecoderError: For a missing boundary or malformed body
        """
        settings = self.settings()
        registry = UploadRegistry(settings)
        # Stored before decoding so teardown still cleans up after a decoder error
        setattr(g, REGISTRY_KEY, registry)

        decoder = MultipartDecoder.from_content_type(registry, request.content_type)
        completed = decoder.consume(request.stream)
        setattr(g, FIELDS_KEY, decoder.fields)

        logger.info(
            "Multipart body processed",
            endpoint=request.endpoint,
            files=len(registry),
            total_bytes=registry.total_bytes,
            completed=completed
        )
        return registry

    @staticmethod
    def _cleanup_request(exc: Optional[BaseException]) -> None:
        registry = g.pop(REGISTRY_KEY, None)
        if registry is not None:
            registry.cleanup()


def get_uploads() -> Optional[UploadRegistry]:
    """Registry of the current request, or None when no multipart body was processed."""
    return g.get(REGISTRY_KEY)


def get_form_fields() -> Dict[str, List[str]]:
    """Plain form fields decoded alongside the files of the current request."""
    return g.get(FIELDS_KEY, {})


def _handle_application_error(error: BaseApplicationError):
    response = jsonify(error.to_dict())
    response.status_code = error.http_status
    return response


__all__ = ['BodyParser', 'get_uploads', 'get_form_fields']
