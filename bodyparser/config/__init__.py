"""Configuration package for the body parser."""

from bodyparser.config.settings import (
    BaseConfig,
    DevelopmentConfig,
    ProductionConfig,
    TestingConfig,
    UploadSettings,
    config_map,
    get_config,
    validate_configuration,
)

__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'UploadSettings',
    'config_map',
    'get_config',
    'validate_configuration',
]
