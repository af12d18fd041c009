"""
Structured Logging Implementation using structlog

Configures structlog on top of the standard logging module so every module's
``structlog.get_logger(__name__)`` emits JSON (or console) records with a
timestamp, level and logger name.

Key Features:
- Environment driven configuration (level, format, colors)
- JSON rendering for log aggregation, console rendering for development
- Standard library logging wired through logging.config.dictConfig
"""

import logging
import logging.config
import os
from typing import Optional

import structlog


class LoggingConfig:
    """Logging configuration read from the environment."""

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')  # json, console
    COLORED_CONSOLE_OUTPUT = os.getenv('COLORED_CONSOLE_OUTPUT', 'false').lower() == 'true'
    APPLICATION_NAME = os.getenv('APPLICATION_NAME', 'bodyparser')


def setup_structured_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None
) -> structlog.stdlib.BoundLogger:
    """
    Setup structured logging.

    Args:
        log_level: Overrides LOG_LEVEL
        log_format: Overrides LOG_FORMAT ("json" or "console")

    Returns:
        Configured structured logger instance
    """
    level = (log_level or LoggingConfig.LOG_LEVEL).upper()
    fmt = log_format or LoggingConfig.LOG_FORMAT

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if fmt == 'console':
        processors.append(structlog.dev.ConsoleRenderer(colors=LoggingConfig.COLORED_CONSOLE_OUTPUT))
    else:
        # Default to JSON for log aggregation
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'plain': {'format': '%(message)s'},
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'plain',
                'stream': 'ext://sys.stdout',
            },
        },
        'loggers': {
            '': {
                'handlers': ['console'],
                'level': level,
                'propagate': False,
            },
        },
    })

    logger = structlog.get_logger(LoggingConfig.APPLICATION_NAME)
    logger.info("Structured logging initialized", log_level=level, log_format=fmt)
    return logger


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance with optional name.

    Args:
        name: Logger name, defaults to application name

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name or LoggingConfig.APPLICATION_NAME)


__all__ = ['LoggingConfig', 'setup_structured_logging', 'get_logger']
