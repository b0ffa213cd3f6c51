"""Core utilities for configuration, logging, and dependency wiring."""

from .config import AppSettings, LoggingSettings, StorageSettings, load_app_settings
from .configuration import Configuration, ConfigurationManager
from .container import ServiceContainer
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "Configuration",
    "ConfigurationManager",
    "LoggingSettings",
    "ServiceContainer",
    "StorageSettings",
    "configure_logging",
    "load_app_settings",
]
