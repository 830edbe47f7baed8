"""Configuration loaders for CRKD."""

from .email_config import ConfigurationError, EmailConfig, load_email_config
from .retention_config import RetentionConfig, load_retention_config
from .settings import ServerConfig, load_server_config

__all__ = [
    'ConfigurationError',
    'EmailConfig',
    'load_email_config',
    'RetentionConfig',
    'load_retention_config',
    'ServerConfig',
    'load_server_config',
]
