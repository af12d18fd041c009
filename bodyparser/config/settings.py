"""
Upload Configuration Classes

Environment-specific configuration (Development, Testing, Production) for the
body parser, loaded from environment variables via python-dotenv, plus the
immutable UploadSettings resolved once per registry.

Key Components:
- BaseConfig and environment subclasses exposing BODYPARSER_* settings
- config_map / get_config() environment lookup
- UploadSettings: frozen settings with size specs already parsed, built from a
  config class, a Flask app.config or any mapping
- validate_configuration() returning human readable issues

Environment Variables:
- BODYPARSER_MULTIPLE: allow array style ("files[]") fields (default true)
- BODYPARSER_HASH: content-hashed destination names, pass-through flag (default false)
- BODYPARSER_MAX_SIZE: aggregate ceiling per request (default "20mb")
- BODYPARSER_TMP_DIR: directory for temporary part files (default system temp dir)
- BODYPARSER_AUTOPROCESS: stream multipart bodies before the view runs (default true)
- BODYPARSER_PROCESS_METHODS: comma separated methods to process (default POST,PUT,PATCH)
"""

import os
import logging
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Type, Union

from dotenv import load_dotenv

from bodyparser.utils.exceptions import ConfigError
from bodyparser.utils.size import parse_size

# Load environment variables early
load_dotenv()

# Configure module logger
logger = logging.getLogger(__name__)

CONFIG_PREFIX = 'BODYPARSER_'


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 'yes', 'on')


class BaseConfig:
    """
    Base configuration shared by every environment.

    Values are read from the environment at import time. Subclasses override
    only what differs for their environment.
    """

    BODYPARSER_MULTIPLE = _env_flag('BODYPARSER_MULTIPLE', 'true')
    BODYPARSER_HASH = _env_flag('BODYPARSER_HASH', 'false')
    BODYPARSER_MAX_SIZE = os.getenv('BODYPARSER_MAX_SIZE', '20mb')
    BODYPARSER_TMP_DIR = os.getenv('BODYPARSER_TMP_DIR', tempfile.gettempdir())
    BODYPARSER_AUTOPROCESS = _env_flag('BODYPARSER_AUTOPROCESS', 'true')
    BODYPARSER_PROCESS_METHODS = [
        method.strip().upper()
        for method in os.getenv('BODYPARSER_PROCESS_METHODS', 'POST,PUT,PATCH').split(',')
        if method.strip()
    ]

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Return every BODYPARSER_* setting of this configuration class."""
        return {
            name: getattr(cls, name)
            for name in dir(cls)
            if name.startswith(CONFIG_PREFIX)
        }


class DevelopmentConfig(BaseConfig):
    """Development environment: generous limits."""

    BODYPARSER_MAX_SIZE = os.getenv('BODYPARSER_MAX_SIZE', '50mb')


class TestingConfig(BaseConfig):
    """Testing environment: small ceiling so limit handling is easy to exercise."""

    BODYPARSER_MAX_SIZE = '2mb'
    BODYPARSER_AUTOPROCESS = True


class ProductionConfig(BaseConfig):
    """Production environment: conservative ceiling unless configured."""

    BODYPARSER_MAX_SIZE = os.getenv('BODYPARSER_MAX_SIZE', '10mb')


config_map: Dict[str, Type[BaseConfig]] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}


def get_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Get configuration class for the specified environment.

    Args:
        environment: Target environment name (defaults to FLASK_ENV)

    Returns:
        Configuration class for the specified environment

    Raises:
        ConfigError: If environment is not supported
    """
    if environment is None:
        environment = os.getenv('FLASK_ENV', 'development')

    environment = environment.lower()

    if environment not in config_map:
        raise ConfigError(
            f"Unsupported environment '{environment}'. "
            f"Supported environments: {list(config_map.keys())}",
            option='environment',
            value=environment
        )

    config_class = config_map[environment]

    logger.info(
        "Configuration class selected",
        extra={
            'environment': environment,
            'config_class': config_class.__name__
        }
    )

    return config_class


@dataclass(frozen=True)
class UploadSettings:
    """
    Settings resolved once per registry.

    Attributes:
        multiple: Whether array style fields ("photos[]") are permitted
        hash: Pass-through flag for content-hashed destination names
        max_size: Aggregate byte ceiling across all parts of one request
        tmp_dir: Directory temporary part files are written to
        autoprocess: Whether the Flask extension streams bodies before the view
        process_methods: HTTP methods whose multipart bodies are processed
    """

    multiple: bool = True
    hash: bool = False
    max_size: int = parse_size('20mb')
    tmp_dir: str = field(default_factory=tempfile.gettempdir)
    autoprocess: bool = True
    process_methods: FrozenSet[str] = frozenset({'POST', 'PUT', 'PATCH'})

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], strict: bool = True) -> 'UploadSettings':
        """
        Build settings from BODYPARSER_* keys (Flask app.config style) or plain keys.

        Args:
            values: Mapping such as ``app.config`` or ``{'max_size': '2mb'}``
            strict: Reject unknown plain keys; pass False for a host's ``app.config``,
                which may carry unrelated entries of any case

        Returns:
            Resolved UploadSettings

        Raises:
            ConfigError: For invalid size specs, or unknown plain keys when ``strict``
        """
        known = {'multiple', 'hash', 'max_size', 'tmp_dir', 'autoprocess', 'process_methods'}
        resolved: Dict[str, Any] = {}

        for key, value in values.items():
            if key.startswith(CONFIG_PREFIX):
                name = key[len(CONFIG_PREFIX):].lower()
                if name not in known:
                    continue
            elif key in known:
                name = key
            elif key.isupper() or not strict:
                # Unrelated host config key
                continue
            else:
                raise ConfigError(f"Unknown upload setting '{key}'", option=key)
            resolved[name] = value

        if 'max_size' in resolved:
            resolved['max_size'] = parse_size(resolved['max_size'])
        if 'process_methods' in resolved:
            resolved['process_methods'] = _normalize_methods(resolved['process_methods'])
        for flag in ('multiple', 'hash', 'autoprocess'):
            if flag in resolved and isinstance(resolved[flag], str):
                resolved[flag] = resolved[flag].lower() in ('true', '1', 'yes', 'on')

        settings = cls(**resolved)
        issues = validate_configuration(settings)
        if issues:
            raise ConfigError(
                f"Upload configuration validation failed: {'; '.join(issues)}",
                details={'issues': issues}
            )
        return settings

    @classmethod
    def from_config(cls, config_class: Type[BaseConfig]) -> 'UploadSettings':
        """Build settings from one of the environment configuration classes."""
        return cls.from_mapping(config_class.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'multiple': self.multiple,
            'hash': self.hash,
            'max_size': self.max_size,
            'tmp_dir': self.tmp_dir,
            'autoprocess': self.autoprocess,
            'process_methods': sorted(self.process_methods),
        }


def _normalize_methods(methods: Union[str, List[str], FrozenSet[str]]) -> FrozenSet[str]:
    if isinstance(methods, str):
        methods = methods.split(',')
    return frozenset(method.strip().upper() for method in methods if method.strip())


def validate_configuration(settings: UploadSettings) -> List[str]:
    """
    Validate resolved settings and return list of issues.

    Args:
        settings: Settings instance to validate

    Returns:
        List of validation error messages (empty if valid)
    """
    issues = []

    if settings.max_size <= 0:
        issues.append("max_size must be greater than zero")

    if not settings.tmp_dir:
        issues.append("tmp_dir is required")

    if not settings.process_methods:
        issues.append("process_methods must name at least one HTTP method")

    return issues


__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'ProductionConfig',
    'config_map',
    'get_config',
    'UploadSettings',
    'validate_configuration',
]
