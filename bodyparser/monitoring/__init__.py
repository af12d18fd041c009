"""Logging and metrics for the body parser."""

from bodyparser.monitoring.logging import LoggingConfig, get_logger, setup_structured_logging

__all__ = ['LoggingConfig', 'get_logger', 'setup_structured_logging']
