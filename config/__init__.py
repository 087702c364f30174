"""Daemon API proxy configuration."""

from .logging import configure_logging, log_error
from .settings import ProxySettings, get_settings

__all__ = ['ProxySettings', 'get_settings', 'configure_logging', 'log_error']
